"""Points ledger endpoints. Successful responses are wrapped in ``{"data": ...}``."""

from fastapi import APIRouter, Depends, Request
from libs.auth.dependencies import get_bearer_token
from libs.common.config import get_settings
from libs.common.envelope import DataEnvelope
from libs.common.logging import get_logger
from libs.common.rate_limit import OTP_LIMIT, limiter
from libs.db.session import get_async_db
from services.points_bank_service.models import Member
from services.points_bank_service.routers.deps import get_member_record
from services.points_bank_service.schemas import (
    ClientCredentials,
    CreditRequest,
    CreditResponse,
    ExpirePendingResponse,
    PendingRedemptionResponse,
    RedeemRequest,
    RedeemResponse,
    RedemptionDecisionRequest,
    RedemptionDecisionResponse,
    RedemptionRequestCreate,
    RedemptionRequestResponse,
)
from services.points_bank_service.services import ledger
from services.points_bank_service.services.client_registry import authenticate_client
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/points", tags=["points"])


@router.post("/redeem", response_model=DataEnvelope[RedeemResponse])
async def redeem(
    body: RedeemRequest,
    bearer: str = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_async_db),
):
    """Instant debit authorised by the partner's access token."""
    result = await ledger.apply_instant_debit(
        db, access_token=bearer, amount=body.amount, description=body.description
    )
    return {
        "data": RedeemResponse(
            new_balance=result.new_balance,
            transaction_id=result.entry.id,
            redeemed_amount=result.entry.amount,
            client=result.client.client_name,
        )
    }


@router.post(
    "/redemption-request",
    response_model=DataEnvelope[RedemptionRequestResponse],
    response_model_exclude_none=True,
)
async def create_redemption_request(
    body: RedemptionRequestCreate,
    db: AsyncSession = Depends(get_async_db),
):
    """Open an OTP-gated debit on behalf of a partner."""
    entry = await ledger.request_gated_debit(
        db,
        client_id=body.client_id,
        client_secret=body.client_secret,
        member_id=body.member_id,
        amount=body.amount,
        description=body.description,
    )
    return {
        "data": RedemptionRequestResponse(
            request_id=entry.id,
            otp=entry.otp if get_settings().otp_visible else None,
            expires_at=entry.otp_expires_at,
            amount=entry.amount,
            status=entry.status,
        )
    }


@router.post(
    "/redemption/approve", response_model=DataEnvelope[RedemptionDecisionResponse]
)
@limiter.limit(OTP_LIMIT)
async def approve_redemption(
    request: Request,
    body: RedemptionDecisionRequest,
    member: Member = Depends(get_member_record),
    db: AsyncSession = Depends(get_async_db),
):
    result = await ledger.approve_gated_debit(
        db, member_id=member.id, request_id=body.request_id, otp=body.otp
    )
    return {
        "data": RedemptionDecisionResponse(
            status=result.entry.status,
            new_balance=result.new_balance,
            transaction_id=result.entry.id,
        )
    }


@router.post(
    "/redemption/reject", response_model=DataEnvelope[RedemptionDecisionResponse]
)
async def reject_redemption(
    body: RedemptionDecisionRequest,
    member: Member = Depends(get_member_record),
    db: AsyncSession = Depends(get_async_db),
):
    entry = await ledger.reject_gated_debit(
        db, member_id=member.id, request_id=body.request_id
    )
    return {
        "data": RedemptionDecisionResponse(
            status=entry.status, new_balance=member.points, transaction_id=entry.id
        )
    }


@router.get(
    "/redemption/pending", response_model=DataEnvelope[list[PendingRedemptionResponse]]
)
async def pending_redemptions(
    member: Member = Depends(get_member_record),
    db: AsyncSession = Depends(get_async_db),
):
    """Redemption requests awaiting the member's OTP."""
    rows = await ledger.list_pending_requests(db, member.id)
    return {
        "data": [
            PendingRedemptionResponse(
                request_id=entry.id,
                client_name=client.client_name,
                amount=entry.amount,
                description=entry.description,
                created_at=entry.created_at,
                expires_at=entry.otp_expires_at,
            )
            for entry, client in rows
        ]
    }


@router.post("/credit", response_model=DataEnvelope[CreditResponse])
async def credit(
    body: CreditRequest,
    db: AsyncSession = Depends(get_async_db),
):
    """Partner credits points to a member (client credentials)."""
    result = await ledger.apply_instant_credit(
        db,
        client_id=body.client_id,
        client_secret=body.client_secret,
        member_id=body.member_id,
        amount=body.amount,
        description=body.description,
        reason=body.reason,
    )
    return {
        "data": CreditResponse(
            new_balance=result.new_balance, transaction_id=result.entry.id
        )
    }


@router.post("/expire-pending", response_model=DataEnvelope[ExpirePendingResponse])
async def expire_pending(
    body: ClientCredentials,
    db: AsyncSession = Depends(get_async_db),
):
    """Run the pending-request expiry sweep."""
    client = await authenticate_client(db, body.client_id, body.client_secret)
    expired = await ledger.expire_pending_requests(db)
    logger.info("Expiry sweep triggered by client %s", client.client_id)
    return {"data": ExpirePendingResponse(expired=expired)}
