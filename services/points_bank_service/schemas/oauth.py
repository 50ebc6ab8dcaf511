"""OAuth protocol request/response schemas (RFC 6749 field names)."""

from typing import Optional

from pydantic import BaseModel, EmailStr, Field
from services.points_bank_service.schemas.base import CamelModel


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    # None for access tokens issued under the non-expiring scope
    expires_in: Optional[int] = None
    refresh_token: str
    scope: str


class UserInfoResponse(CamelModel):
    """Fields are present only when the token carries the matching scope."""

    id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    points: Optional[float] = None


class OAuthLoginRequest(BaseModel):
    session_id: Optional[str] = None
    email: EmailStr
    password: str = Field(..., min_length=1)


class OAuthLoginResponse(BaseModel):
    redirect_to: Optional[str] = None
    access_token: str
    token_type: str = "Bearer"


class ConsentDecisionRequest(BaseModel):
    session_id: Optional[str] = None


class ConsentViewResponse(BaseModel):
    session_id: str
    client_id: str
    client_name: str
    client_description: Optional[str] = None
    logo_url: Optional[str] = None
    redirect_uri: str
    scopes: list[str]
    member_email: Optional[str] = None
