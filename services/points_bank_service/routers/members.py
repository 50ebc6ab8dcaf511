"""Member portal: profile, ledger history, connected applications."""

import uuid

from fastapi import APIRouter, Depends, Query
from libs.common.envelope import DataEnvelope
from libs.db.session import get_async_db
from services.points_bank_service.errors import NotFound
from services.points_bank_service.models import Member
from services.points_bank_service.routers.deps import get_member_record
from services.points_bank_service.schemas import (
    ActiveSessionResponse,
    MemberResponse,
    RevokeSessionResponse,
    TransactionResponse,
)
from services.points_bank_service.services import grant_engine, ledger
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/members", tags=["members"])


@router.get("/me", response_model=DataEnvelope[MemberResponse])
async def get_me(member: Member = Depends(get_member_record)):
    return {"data": MemberResponse.model_validate(member)}


@router.get("/me/transactions", response_model=DataEnvelope[list[TransactionResponse]])
async def my_transactions(
    limit: int = Query(50, ge=1, le=200),
    member: Member = Depends(get_member_record),
    db: AsyncSession = Depends(get_async_db),
):
    """Ledger history, newest first. Debits carry a negative amount."""
    rows = await ledger.member_history(db, member.id, limit=limit)
    return {
        "data": [
            TransactionResponse(
                id=entry.id,
                direction=entry.direction,
                method=entry.method,
                amount=entry.signed_amount,
                description=entry.description,
                status=entry.status,
                client_name=client.client_name,
                balance_after=entry.balance_after,
                created_at=entry.created_at,
                completed_at=entry.completed_at,
            )
            for entry, client in rows
        ]
    }


@router.get("/me/sessions", response_model=DataEnvelope[list[ActiveSessionResponse]])
async def my_sessions(
    member: Member = Depends(get_member_record),
    db: AsyncSession = Depends(get_async_db),
):
    """Partner applications currently holding a live access token."""
    grants = await grant_engine.list_active_grants(db, member.id)
    return {
        "data": [
            ActiveSessionResponse(
                id=token.id,
                client_id=client.client_id,
                client_name=client.client_name,
                logo_url=client.logo_url,
                scope=list(token.scope),
                created_at=token.created_at,
                expires_at=token.expires_at,
                non_expiring=token.is_non_expiring,
            )
            for token, client in grants
        ]
    }


@router.delete("/me/sessions/{session_id}", response_model=DataEnvelope[RevokeSessionResponse])
async def revoke_session(
    session_id: uuid.UUID,
    member: Member = Depends(get_member_record),
    db: AsyncSession = Depends(get_async_db),
):
    revoked = await grant_engine.revoke_access_token(
        db, member_id=member.id, access_token_id=session_id
    )
    if not revoked:
        raise NotFound("Session not found")
    return {"data": RevokeSessionResponse(revoked=True)}
