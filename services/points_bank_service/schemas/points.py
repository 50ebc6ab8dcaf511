"""Points ledger request/response schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field
from services.points_bank_service.models.enums import WorkflowStatus
from services.points_bank_service.schemas.base import CamelModel

# Amounts are not range-checked here; the ledger raises InvalidAmount so the
# failure carries the ledger's error code rather than a generic 422.


class RedeemRequest(BaseModel):
    amount: Decimal
    description: Optional[str] = None


class RedeemResponse(CamelModel):
    success: bool = True
    new_balance: float
    transaction_id: uuid.UUID
    redeemed_amount: float
    client: str


class ClientCredentials(BaseModel):
    client_id: str
    client_secret: str


class RedemptionRequestCreate(ClientCredentials):
    member_id: str
    amount: Decimal
    description: Optional[str] = None


class RedemptionRequestResponse(CamelModel):
    request_id: uuid.UUID
    # Omitted unless the deployment exposes OTPs to partners
    otp: Optional[str] = None
    expires_at: datetime
    amount: float
    status: WorkflowStatus


class RedemptionDecisionRequest(BaseModel):
    request_id: str
    otp: Optional[str] = None


class RedemptionDecisionResponse(CamelModel):
    success: bool = True
    status: WorkflowStatus
    new_balance: Optional[float] = None
    transaction_id: Optional[uuid.UUID] = None


class PendingRedemptionResponse(CamelModel):
    request_id: uuid.UUID
    client_name: str
    amount: float
    description: Optional[str] = None
    created_at: datetime
    expires_at: Optional[datetime] = None


class CreditRequest(ClientCredentials):
    member_id: str
    amount: Decimal
    description: Optional[str] = None
    reason: Optional[str] = Field(None, max_length=64)


class CreditResponse(CamelModel):
    success: bool = True
    new_balance: float
    transaction_id: uuid.UUID


class ExpirePendingResponse(CamelModel):
    expired: int
