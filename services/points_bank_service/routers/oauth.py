"""OAuth 2.0 endpoints: authorize handshake, token, userinfo.

Errors on these paths render as ``{"error", "error_description"}``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Form, Query, Request, Response
from fastapi.responses import RedirectResponse
from libs.auth.dependencies import (
    create_member_session_token,
    get_bearer_token,
    get_optional_member,
)
from libs.auth.models import AuthMember
from libs.common.config import get_settings
from libs.common.errors import AppError
from libs.common.logging import get_logger
from libs.common.rate_limit import LOGIN_LIMIT, TOKEN_LIMIT, limiter
from libs.db.session import get_async_db
from services.points_bank_service.errors import UnsupportedGrantType
from services.points_bank_service.models import GrantKind, Scope
from services.points_bank_service.routers.deps import member_uuid, set_session_cookie
from services.points_bank_service.schemas import (
    ConsentDecisionRequest,
    ConsentViewResponse,
    OAuthLoginRequest,
    OAuthLoginResponse,
    TokenResponse,
    UserInfoResponse,
)
from services.points_bank_service.services import consent as consent_service
from services.points_bank_service.services import grant_engine
from services.points_bank_service.services.members import authenticate_member, get_member
from services.points_bank_service.services.tokens import format_scope
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/oauth", tags=["oauth"])

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _consent_session_id(request: Request, body: Optional[ConsentDecisionRequest]) -> Optional[str]:
    if body and body.session_id:
        return body.session_id
    return request.cookies.get(get_settings().CONSENT_SESSION_COOKIE)


def _require(value: Optional[str], name: str) -> str:
    if not value:
        raise AppError(f"Missing required parameter: {name}")
    return value


# ---------------------------------------------------------------------------
# Interactive handshake
# ---------------------------------------------------------------------------


@router.get("/authorize")
async def authorize(
    request: Request,
    client_id: str = Query(...),
    redirect_uri: str = Query(...),
    response_type: str = Query("code"),
    scope: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    auth: Optional[AuthMember] = Depends(get_optional_member),
    db: AsyncSession = Depends(get_async_db),
):
    """Open a consent session and send the member to login or consent."""
    settings = get_settings()
    member_id = member_uuid(auth)
    session, client = await consent_service.begin_authorization(
        db,
        client_id=client_id,
        redirect_uri=redirect_uri,
        response_type=response_type,
        scope=scope,
        state=state,
        member_id=member_id,
    )

    if member_id is not None:
        target = consent_service.append_query(settings.CONSENT_URL, {"session_id": session.id})
    else:
        target = consent_service.append_query(
            settings.LOGIN_URL,
            {"session_id": session.id, "client_name": client.client_name},
        )

    response = RedirectResponse(target, status_code=303)
    set_session_cookie(
        response,
        settings.CONSENT_SESSION_COOKIE,
        session.id,
        settings.CONSENT_SESSION_TTL_SECONDS,
    )
    return response


@router.post("/login", response_model=OAuthLoginResponse)
@limiter.limit(LOGIN_LIMIT)
async def oauth_login(
    request: Request,
    response: Response,
    body: OAuthLoginRequest,
    db: AsyncSession = Depends(get_async_db),
):
    """Authenticate the member and bind them to the pending consent session."""
    settings = get_settings()
    member = await authenticate_member(db, body.email, body.password)

    session_id = body.session_id or request.cookies.get(settings.CONSENT_SESSION_COOKIE)
    redirect_to = None
    if session_id:
        await consent_service.bind_member(db, session_id, member)
        redirect_to = consent_service.append_query(
            settings.CONSENT_URL, {"session_id": session_id}
        )

    token = create_member_session_token(str(member.id), member.email)
    set_session_cookie(
        response,
        settings.MEMBER_SESSION_COOKIE,
        token,
        settings.MEMBER_SESSION_TTL_SECONDS,
    )
    return OAuthLoginResponse(redirect_to=redirect_to, access_token=token)


@router.get("/consent/{session_id}", response_model=ConsentViewResponse)
async def get_consent(
    session_id: str,
    auth: Optional[AuthMember] = Depends(get_optional_member),
    db: AsyncSession = Depends(get_async_db),
):
    """What the member is being asked to grant."""
    view = await consent_service.consent_view(db, session_id, member_uuid(auth))
    return ConsentViewResponse(
        session_id=view.session.id,
        client_id=view.client.client_id,
        client_name=view.client.client_name,
        client_description=view.client.description,
        logo_url=view.client.logo_url,
        redirect_uri=view.session.redirect_uri,
        scopes=list(view.session.scope),
        member_email=view.member.email if view.member else None,
    )


@router.post("/consent")
async def approve_consent(
    request: Request,
    body: Optional[ConsentDecisionRequest] = None,
    auth: Optional[AuthMember] = Depends(get_optional_member),
    db: AsyncSession = Depends(get_async_db),
):
    """Grant access: issue the code and redirect back to the partner."""
    target = await consent_service.approve_consent(
        db,
        session_id=_consent_session_id(request, body),
        member_id=member_uuid(auth),
    )
    response = RedirectResponse(target, status_code=303)
    response.delete_cookie(get_settings().CONSENT_SESSION_COOKIE)
    return response


@router.post("/deny")
async def deny_consent(
    request: Request,
    body: Optional[ConsentDecisionRequest] = None,
    auth: Optional[AuthMember] = Depends(get_optional_member),
    db: AsyncSession = Depends(get_async_db),
):
    target = await consent_service.deny_consent(
        db,
        session_id=_consent_session_id(request, body),
        member_id=member_uuid(auth),
    )
    response = RedirectResponse(target, status_code=303)
    response.delete_cookie(get_settings().CONSENT_SESSION_COOKIE)
    return response


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


@router.post("/token", response_model=TokenResponse)
@limiter.limit(TOKEN_LIMIT)
async def token(
    request: Request,
    response: Response,
    grant_type: str = Form(...),
    client_id: str = Form(...),
    client_secret: Optional[str] = Form(None),
    code: Optional[str] = Form(None),
    redirect_uri: Optional[str] = Form(None),
    refresh_token: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_async_db),
):
    """RFC 6749 token endpoint (form-encoded)."""
    if grant_type == GrantKind.AUTHORIZATION_CODE.value:
        pair = await grant_engine.exchange_code(
            db,
            code=_require(code, "code"),
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=_require(redirect_uri, "redirect_uri"),
        )
    elif grant_type == GrantKind.REFRESH_TOKEN.value:
        pair = await grant_engine.refresh(
            db,
            refresh_token=_require(refresh_token, "refresh_token"),
            client_id=client_id,
            client_secret=client_secret,
        )
    else:
        raise UnsupportedGrantType()

    response.headers.update(NO_STORE_HEADERS)
    return TokenResponse(
        access_token=pair.access_token.token,
        expires_in=pair.expires_in(),
        refresh_token=pair.refresh_token.token,
        scope=format_scope(pair.scope),
    )


@router.get(
    "/userinfo", response_model=UserInfoResponse, response_model_exclude_none=True
)
async def userinfo(
    bearer: str = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_async_db),
):
    """Member claims gated by the token's scopes."""
    access_token = await grant_engine.validate_access_token(db, bearer)
    member = await get_member(db, access_token.member_id)

    info = UserInfoResponse()
    if Scope.PROFILE.value in access_token.scope:
        info.id = str(member.id)
        info.email = member.email
        info.first_name = member.first_name
        info.last_name = member.last_name
    if Scope.POINTS.value in access_token.scope:
        info.points = float(member.points)
    return info
