"""Member account and portal schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field
from services.points_bank_service.models.enums import LedgerDirection, WorkflowStatus
from services.points_bank_service.schemas.base import CamelModel


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: Optional[str] = Field(None, max_length=128)
    last_name: Optional[str] = Field(None, max_length=128)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class MemberResponse(CamelModel):
    id: uuid.UUID
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    points: float
    active: bool
    created_at: datetime


class SessionTokenResponse(CamelModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    member: MemberResponse


class TransactionResponse(CamelModel):
    id: uuid.UUID
    direction: LedgerDirection
    method: str
    # Signed: negative for debits
    amount: float
    description: Optional[str] = None
    status: Optional[WorkflowStatus] = None
    client_name: str
    balance_after: Optional[float] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class ActiveSessionResponse(CamelModel):
    id: uuid.UUID
    client_id: str
    client_name: str
    logo_url: Optional[str] = None
    scope: list[str]
    created_at: datetime
    expires_at: Optional[datetime] = None
    non_expiring: bool


class RevokeSessionResponse(CamelModel):
    revoked: bool
