"""First-party member registration and login."""

from fastapi import APIRouter, Depends, Request, Response, status
from libs.auth.dependencies import create_member_session_token
from libs.common.config import get_settings
from libs.common.envelope import DataEnvelope
from libs.common.rate_limit import LOGIN_LIMIT, limiter
from libs.db.session import get_async_db
from services.points_bank_service.routers.deps import set_session_cookie
from services.points_bank_service.schemas import (
    LoginRequest,
    MemberResponse,
    RegisterRequest,
    SessionTokenResponse,
)
from services.points_bank_service.services.members import (
    authenticate_member,
    register_member,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/register",
    response_model=DataEnvelope[MemberResponse],
    status_code=status.HTTP_201_CREATED,
)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_async_db),
):
    member = await register_member(
        db,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return {"data": MemberResponse.model_validate(member)}


@router.post("/login", response_model=DataEnvelope[SessionTokenResponse])
@limiter.limit(LOGIN_LIMIT)
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: AsyncSession = Depends(get_async_db),
):
    """Exchange email + password for a member session token (also set as a cookie)."""
    settings = get_settings()
    member = await authenticate_member(db, body.email, body.password)
    token = create_member_session_token(str(member.id), member.email)
    set_session_cookie(
        response,
        settings.MEMBER_SESSION_COOKIE,
        token,
        settings.MEMBER_SESSION_TTL_SECONDS,
    )
    return {
        "data": SessionTokenResponse(
            access_token=token,
            expires_in=settings.MEMBER_SESSION_TTL_SECONDS,
            member=MemberResponse.model_validate(member),
        )
    }


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(response: Response):
    response.delete_cookie(get_settings().MEMBER_SESSION_COOKIE)
