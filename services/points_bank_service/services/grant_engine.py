"""OAuth grant engine: authorization codes, token exchange, refresh, validation.

State machines
--------------
Authorization code: ``issued -> consumed`` (exchange) or ``issued -> expired``
(time; enforced lazily at exchange). Tokens: ``active -> revoked`` is the only
stored transition; expiry is evaluated lazily at validation time.

Concurrency
-----------
Code consumption is a single ``DELETE ... RETURNING`` and refresh-token
rotation a single ``UPDATE ... WHERE revoked = false RETURNING``. The row
write lock taken by that statement is held until the transaction that also
inserts the new tokens commits, so of N concurrent attempts on the same
code/token exactly one gets a row back; the others see nothing and fail
with InvalidGrant.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import ensure_utc, seconds_until, utc_now
from libs.common.logging import get_logger, mask_token
from services.points_bank_service.errors import (
    ClientMismatch,
    CodeExpired,
    InvalidGrant,
    InvalidRedirect,
    InvalidToken,
    RedirectMismatch,
    RefreshTokenExpired,
    ScopeDenied,
    TokenExpired,
)
from services.points_bank_service.models import (
    AccessToken,
    AuthorizationCode,
    GrantKind,
    Member,
    PartnerClient,
    RefreshToken,
)
from services.points_bank_service.services.client_registry import (
    authenticate_client,
    ensure_grant_allowed,
)
from services.points_bank_service.services.tokens import (
    ensure_scopes_allowed,
    generate_token,
)
from sqlalchemy import delete, desc, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class TokenPair:
    access_token: AccessToken
    refresh_token: RefreshToken

    @property
    def scope(self) -> list[str]:
        return list(self.access_token.scope or [])

    def expires_in(self, now: Optional[datetime] = None) -> Optional[int]:
        """Seconds until the access token expires; None for non-expiring tokens."""
        return seconds_until(self.access_token.expires_at, now)


# ---------------------------------------------------------------------------
# Authorization codes
# ---------------------------------------------------------------------------


async def issue_authorization_code(
    db: AsyncSession,
    *,
    client: PartnerClient,
    member: Member,
    redirect_uri: str,
    scope: list[str],
    now: Optional[datetime] = None,
) -> AuthorizationCode:
    """Persist a fresh one-time code bound to client, member, redirect and scope."""
    if redirect_uri not in (client.redirect_uris or []):
        logger.warning(
            "Invalid redirect URI %s for client %s", redirect_uri, client.client_id
        )
        raise InvalidRedirect()
    ensure_scopes_allowed(scope, client.allowed_scopes or [])

    settings = get_settings()
    now = now or utc_now()
    auth_code = AuthorizationCode(
        code=generate_token(),
        member_id=member.id,
        client_pk=client.id,
        redirect_uri=redirect_uri,
        scope=list(scope),
        expires_at=now + timedelta(seconds=settings.OAUTH_AUTHORIZATION_CODE_LIFETIME),
        created_at=now,
    )
    db.add(auth_code)
    await db.commit()
    await db.refresh(auth_code)

    logger.info(
        "Issued authorization code %s for member %s client %s scope=%s",
        mask_token(auth_code.code),
        member.id,
        client.client_id,
        " ".join(scope),
    )
    return auth_code


async def exchange_code(
    db: AsyncSession,
    *,
    code: str,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    now: Optional[datetime] = None,
) -> TokenPair:
    """Trade an authorization code for an access + refresh token pair."""
    client = await authenticate_client(db, client_id, client_secret)
    ensure_grant_allowed(client, GrantKind.AUTHORIZATION_CODE)
    now = now or utc_now()

    # Compare-and-delete: only one concurrent caller can receive the row.
    result = await db.execute(
        delete(AuthorizationCode)
        .where(AuthorizationCode.code == code)
        .returning(
            AuthorizationCode.member_id,
            AuthorizationCode.client_pk,
            AuthorizationCode.redirect_uri,
            AuthorizationCode.scope,
            AuthorizationCode.expires_at,
        )
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    if row is None:
        await db.rollback()
        logger.warning("Invalid or already used authorization code %s", mask_token(code))
        raise InvalidGrant()

    try:
        if ensure_utc(row.expires_at) < now:
            logger.warning("Authorization code expired at %s", row.expires_at)
            raise CodeExpired()
        if row.redirect_uri != redirect_uri:
            logger.warning(
                "Redirect URI mismatch. Expected: %s, Got: %s", row.redirect_uri, redirect_uri
            )
            raise RedirectMismatch()
        if row.client_pk != client.id:
            logger.warning("Client mismatch on code exchange for %s", client.client_id)
            raise ClientMismatch()
        member = await _active_member(db, row.member_id)
    except Exception:
        # Nothing is consumed when the exchange is refused.
        await db.rollback()
        raise

    pair = _new_token_pair(db, client=client, member=member, scope=row.scope, now=now)
    await db.commit()

    logger.info(
        "Exchanged authorization code %s for tokens (member %s, client %s)",
        mask_token(code),
        member.id,
        client.client_id,
    )
    return pair


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


async def refresh(
    db: AsyncSession,
    *,
    refresh_token: str,
    client_id: str,
    client_secret: str,
    now: Optional[datetime] = None,
) -> TokenPair:
    """Rotate a refresh token: revoke the presented one and mint a new pair."""
    client = await authenticate_client(db, client_id, client_secret)
    ensure_grant_allowed(client, GrantKind.REFRESH_TOKEN)
    now = now or utc_now()

    result = await db.execute(
        update(RefreshToken)
        .where(RefreshToken.token == refresh_token, RefreshToken.revoked.is_(False))
        .values(revoked=True)
        .returning(
            RefreshToken.member_id,
            RefreshToken.client_pk,
            RefreshToken.scope,
            RefreshToken.expires_at,
        )
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    if row is None:
        await db.rollback()
        logger.warning("Invalid or revoked refresh token %s", mask_token(refresh_token))
        raise InvalidGrant("Invalid refresh token")

    try:
        if ensure_utc(row.expires_at) < now:
            raise RefreshTokenExpired()
        if row.client_pk != client.id:
            logger.warning("Client mismatch on refresh for %s", client.client_id)
            raise ClientMismatch()
        member = await _active_member(db, row.member_id)
    except Exception:
        await db.rollback()
        raise

    pair = _new_token_pair(db, client=client, member=member, scope=row.scope, now=now)
    await db.commit()

    logger.info(
        "Rotated refresh token %s (member %s, client %s)",
        mask_token(refresh_token),
        member.id,
        client.client_id,
    )
    return pair


# ---------------------------------------------------------------------------
# Access token validation
# ---------------------------------------------------------------------------


async def validate_access_token(
    db: AsyncSession, token: str, now: Optional[datetime] = None
) -> AccessToken:
    """Return the live token of an active member or raise InvalidToken / TokenExpired."""
    result = await db.execute(select(AccessToken).where(AccessToken.token == token))
    access_token = result.scalar_one_or_none()
    if not access_token or access_token.revoked:
        logger.warning("Invalid access token %s", mask_token(token))
        raise InvalidToken()

    # Non-expiring tokens skip the check; only revocation ends them.
    if access_token.expires_at is not None:
        if access_token.expires_at < (now or utc_now()):
            logger.warning("Access token expired at %s", access_token.expires_at)
            raise TokenExpired()

    member = await db.get(Member, access_token.member_id)
    if not member or not member.active:
        logger.warning(
            "Access token %s belongs to inactive member %s",
            mask_token(token),
            access_token.member_id,
        )
        raise InvalidToken("Member account is deactivated")

    return access_token


def require_scope(access_token: AccessToken, scope: str) -> None:
    if scope not in (access_token.scope or []):
        logger.warning(
            "Access token %s lacks scope %s", access_token.id, scope
        )
        raise ScopeDenied(
            f"Access token does not have permission for this operation. Required scope: {scope}"
        )


# ---------------------------------------------------------------------------
# Revocation & housekeeping
# ---------------------------------------------------------------------------


async def list_active_grants(
    db: AsyncSession, member_id: uuid.UUID, now: Optional[datetime] = None
) -> list[tuple[AccessToken, PartnerClient]]:
    """Unrevoked, unexpired (or non-expiring) access tokens of a member."""
    now = now or utc_now()
    result = await db.execute(
        select(AccessToken, PartnerClient)
        .join(PartnerClient, PartnerClient.id == AccessToken.client_pk)
        .where(
            AccessToken.member_id == member_id,
            AccessToken.revoked.is_(False),
            or_(AccessToken.expires_at.is_(None), AccessToken.expires_at > now),
        )
        .order_by(desc(AccessToken.created_at))
    )
    return [(token, client) for token, client in result.all()]


async def revoke_member_client_grants(
    db: AsyncSession, *, member_id: uuid.UUID, client_pk: uuid.UUID
) -> int:
    """Revoke every refresh token of one member+client pairing. Does not commit."""
    result = await db.execute(
        update(RefreshToken)
        .where(
            RefreshToken.member_id == member_id,
            RefreshToken.client_pk == client_pk,
            RefreshToken.revoked.is_(False),
        )
        .values(revoked=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def revoke_access_token(
    db: AsyncSession, *, member_id: uuid.UUID, access_token_id: uuid.UUID
) -> bool:
    """Revoke one access token of the member together with that client's refresh tokens."""
    result = await db.execute(
        select(AccessToken).where(
            AccessToken.id == access_token_id, AccessToken.member_id == member_id
        )
    )
    access_token = result.scalar_one_or_none()
    if not access_token:
        return False

    access_token.revoked = True
    revoked_refresh = await revoke_member_client_grants(
        db, member_id=member_id, client_pk=access_token.client_pk
    )
    await db.commit()
    logger.info(
        "Member %s revoked access token %s (%d refresh tokens revoked)",
        member_id,
        access_token_id,
        revoked_refresh,
    )
    return True


async def cleanup_expired_tokens(
    db: AsyncSession, now: Optional[datetime] = None
) -> dict[str, int]:
    """Delete expired codes and tokens. Non-expiring access tokens are kept."""
    now = now or utc_now()
    codes = await db.execute(
        delete(AuthorizationCode)
        .where(AuthorizationCode.expires_at < now)
        .execution_options(synchronize_session=False)
    )
    access = await db.execute(
        delete(AccessToken)
        .where(AccessToken.expires_at.is_not(None), AccessToken.expires_at < now)
        .execution_options(synchronize_session=False)
    )
    refresh_tokens = await db.execute(
        delete(RefreshToken)
        .where(RefreshToken.expires_at < now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    counts = {
        "authorization_codes": codes.rowcount or 0,
        "access_tokens": access.rowcount or 0,
        "refresh_tokens": refresh_tokens.rowcount or 0,
    }
    logger.info("Expired token cleanup: %s", counts)
    return counts


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _active_member(db: AsyncSession, member_id: uuid.UUID) -> Member:
    member = await db.get(Member, member_id)
    if not member or not member.active:
        raise InvalidGrant("Member account is not active")
    return member


def _new_token_pair(
    db: AsyncSession,
    *,
    client: PartnerClient,
    member: Member,
    scope: list[str],
    now: datetime,
) -> TokenPair:
    """Stage a new access + refresh token in the current transaction."""
    settings = get_settings()
    scope = list(scope or [])

    if settings.NON_EXPIRING_SCOPE in scope:
        logger.info(
            "Scope %s present: issuing NON-EXPIRING access token for member %s",
            settings.NON_EXPIRING_SCOPE,
            member.id,
        )
        access_expires_at = None
    else:
        access_expires_at = now + timedelta(seconds=settings.OAUTH_ACCESS_TOKEN_LIFETIME)

    access_token = AccessToken(
        id=uuid.uuid4(),
        token=generate_token(),
        member_id=member.id,
        client_pk=client.id,
        scope=scope,
        expires_at=access_expires_at,
        revoked=False,
        created_at=now,
    )
    refresh_token = RefreshToken(
        id=uuid.uuid4(),
        token=generate_token(),
        member_id=member.id,
        client_pk=client.id,
        scope=scope,
        expires_at=now + timedelta(seconds=settings.OAUTH_REFRESH_TOKEN_LIFETIME),
        revoked=False,
        created_at=now,
    )
    db.add_all([access_token, refresh_token])
    return TokenPair(access_token=access_token, refresh_token=refresh_token)
