from datetime import timedelta
from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import ValidationError

from libs.auth.models import AuthMember
from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.errors import Unauthorized

security = HTTPBearer(auto_error=False)


def create_member_session_token(member_id: str, email: Optional[str] = None) -> str:
    """Mint the signed session token handed to a member after login."""
    settings = get_settings()
    expires_at = utc_now() + timedelta(seconds=settings.MEMBER_SESSION_TTL_SECONDS)
    payload = {
        "sub": member_id,
        "email": email,
        "exp": int(expires_at.timestamp()),
        "typ": "member_session",
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_member_session_token(token: str) -> AuthMember:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM]
        )
        if payload.get("typ") != "member_session":
            raise Unauthorized("Not a member session token")
        return AuthMember(**payload)
    except (JWTError, ValidationError):
        raise Unauthorized("Invalid or expired member session")


def _session_token_from_request(
    request: Request, credentials: Optional[HTTPAuthorizationCredentials]
) -> Optional[str]:
    if credentials and credentials.scheme.lower() == "bearer":
        return credentials.credentials
    return request.cookies.get(get_settings().MEMBER_SESSION_COOKIE)


async def get_current_member(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> AuthMember:
    """
    Resolve the logged-in member from a Bearer header or the session cookie.
    """
    token = _session_token_from_request(request, credentials)
    if not token:
        raise Unauthorized("Member session required")
    return decode_member_session_token(token)


async def get_optional_member(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Optional[AuthMember]:
    """Like ``get_current_member`` but returns None instead of failing."""
    token = _session_token_from_request(request, credentials)
    if not token:
        return None
    try:
        return decode_member_session_token(token)
    except Unauthorized:
        return None


async def get_bearer_token(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> str:
    """Raw bearer credential (used for OAuth access tokens, which are opaque)."""
    if not credentials or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise Unauthorized("Missing or invalid authorization header")
    return credentials.credentials
