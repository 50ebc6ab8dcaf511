"""Interactive authorize handshake backed by ConsentSession rows.

authorize -> (login binds member) -> approve | deny

The session id is opaque and travels in a cookie or query parameter. A
session is consumed by approve or deny and cannot be replayed. Approve and
deny act only for the logged-in member bound to the session; knowing the
session id is not enough.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlencode

from libs.common.config import get_settings
from libs.common.datetime_utils import ensure_utc, utc_now
from libs.common.logging import get_logger, mask_token
from services.points_bank_service.errors import (
    ConsentSessionExpired,
    Forbidden,
    InvalidRedirect,
    LoginRequired,
    NotFound,
    UnsupportedResponseType,
)
from services.points_bank_service.models import ConsentSession, Member, PartnerClient
from services.points_bank_service.services.client_registry import (
    get_client_by_pk,
    validate_client,
)
from services.points_bank_service.services.grant_engine import issue_authorization_code
from services.points_bank_service.services.members import get_member
from services.points_bank_service.services.tokens import (
    ensure_scopes_allowed,
    generate_session_id,
    parse_scope,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

DENIED_DESCRIPTION = "The user denied access"


@dataclass
class ConsentView:
    session: ConsentSession
    client: PartnerClient
    member: Optional[Member]


def append_query(url: str, params: dict[str, Optional[str]]) -> str:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    if not query:
        return url
    return f"{url}{'&' if '?' in url else '?'}{query}"


async def begin_authorization(
    db: AsyncSession,
    *,
    client_id: str,
    redirect_uri: str,
    response_type: str,
    scope: Optional[str] = None,
    state: Optional[str] = None,
    member_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> tuple[ConsentSession, PartnerClient]:
    """Validate an authorize request and open a ConsentSession for it."""
    client = await validate_client(db, client_id)
    if redirect_uri not in (client.redirect_uris or []):
        logger.warning("Invalid redirect URI %s for client %s", redirect_uri, client_id)
        raise InvalidRedirect()
    if response_type != "code":
        raise UnsupportedResponseType()

    settings = get_settings()
    scopes = ensure_scopes_allowed(
        parse_scope(scope, default=settings.OAUTH_DEFAULT_SCOPE),
        client.allowed_scopes or [],
    )

    now = now or utc_now()
    session = ConsentSession(
        id=generate_session_id(),
        client_pk=client.id,
        redirect_uri=redirect_uri,
        scope=scopes,
        state=state,
        member_id=member_id,
        expires_at=now + timedelta(seconds=settings.CONSENT_SESSION_TTL_SECONDS),
        created_at=now,
    )
    db.add(session)
    await db.commit()

    logger.info(
        "Authorization started for client %s (session %s, member bound=%s)",
        client_id,
        mask_token(session.id),
        member_id is not None,
    )
    return session, client


async def get_consent_session(
    db: AsyncSession, session_id: Optional[str], now: Optional[datetime] = None
) -> ConsentSession:
    if not session_id:
        raise NotFound("Authorization session not found")
    session = await db.get(ConsentSession, session_id)
    if not session:
        raise NotFound("Authorization session not found")
    if ensure_utc(session.expires_at) < (now or utc_now()):
        raise ConsentSessionExpired()
    return session


async def bind_member(
    db: AsyncSession, session_id: Optional[str], member: Member, now: Optional[datetime] = None
) -> ConsentSession:
    """Attach the authenticated member to a pending handshake."""
    session = await get_consent_session(db, session_id, now)
    session.member_id = member.id
    await db.commit()
    return session


async def consent_view(
    db: AsyncSession,
    session_id: Optional[str],
    member_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> ConsentView:
    session = await get_consent_session(db, session_id, now)
    owner = _resolve_owner(session, member_id)
    client = await get_client_by_pk(db, session.client_pk)
    member = await get_member(db, owner) if owner else None
    return ConsentView(session=session, client=client, member=member)


async def approve_consent(
    db: AsyncSession,
    *,
    session_id: Optional[str],
    member_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> str:
    """Issue the authorization code and return the client redirect URL."""
    session = await get_consent_session(db, session_id, now)
    owner = _acting_member(session, member_id)

    client = await get_client_by_pk(db, session.client_pk)
    member = await get_member(db, owner)
    redirect_uri, state, scope = session.redirect_uri, session.state, list(session.scope)

    # Consumed in the same commit that persists the code.
    await db.delete(session)
    auth_code = await issue_authorization_code(
        db,
        client=client,
        member=member,
        redirect_uri=redirect_uri,
        scope=scope,
        now=now,
    )
    return append_query(redirect_uri, {"code": auth_code.code, "state": state})


async def deny_consent(
    db: AsyncSession,
    *,
    session_id: Optional[str],
    member_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> str:
    session = await get_consent_session(db, session_id, now)
    _acting_member(session, member_id)
    redirect_uri, state = session.redirect_uri, session.state

    await db.delete(session)
    await db.commit()

    logger.info("Member denied consent (session %s)", mask_token(session_id))
    return append_query(
        redirect_uri,
        {
            "error": "access_denied",
            "error_description": DENIED_DESCRIPTION,
            "state": state,
        },
    )


def _resolve_owner(
    session: ConsentSession, member_id: Optional[uuid.UUID]
) -> Optional[uuid.UUID]:
    """The member acting on the session; a different logged-in member is refused."""
    if member_id is not None and not isinstance(member_id, uuid.UUID):
        member_id = uuid.UUID(str(member_id))
    if session.member_id is None:
        return member_id
    if member_id is not None and member_id != session.member_id:
        raise Forbidden("Authorization session belongs to another member")
    return session.member_id


def _acting_member(session: ConsentSession, member_id: Optional[uuid.UUID]) -> uuid.UUID:
    """Approve and deny need the logged-in member, and it must be the bound one."""
    if member_id is None:
        logger.warning(
            "Consent decision without a member session (session %s)", mask_token(session.id)
        )
        raise LoginRequired()
    return _resolve_owner(session, member_id)
