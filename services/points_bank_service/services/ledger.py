"""Points ledger: atomic balance mutations and the OTP-gated debit workflow.

Every balance mutation follows the same unit of work:

1. SELECT ... FOR UPDATE on the member row
2. Validate (active member, sufficient balance)
3. Append / transition the LedgerEntry with balance snapshots
4. Update the member balance (the mapper bumps ``Member.version``)
5. Commit

``run_balance_mutation`` repeats the whole unit when the version check
fails (StaleDataError) and gives up with ConcurrencyConflict after
``LEDGER_MAX_RETRIES`` attempts. Business-rule failures are never retried.

Gated-debit transitions are conditional UPDATEs on ``status = 'pending'``
so an entry leaves ``pending`` at most once, whichever path gets there first.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Optional, TypeVar

from libs.common.config import get_settings
from libs.common.datetime_utils import ensure_utc, utc_now
from libs.common.logging import get_logger
from services.points_bank_service.errors import (
    AlreadyProcessed,
    ConcurrencyConflict,
    Forbidden,
    InsufficientBalance,
    InvalidAmount,
    InvalidOtp,
    MemberNotFound,
    OtpExpired,
    RequestNotFound,
)
from services.points_bank_service.models import (
    LedgerDirection,
    LedgerEntry,
    LedgerMethod,
    Member,
    PartnerClient,
    Scope,
    WorkflowStatus,
)
from services.points_bank_service.services.client_registry import (
    authenticate_client,
    get_client_by_pk,
)
from services.points_bank_service.services.grant_engine import (
    require_scope,
    validate_access_token,
)
from services.points_bank_service.services.tokens import (
    MAX_POINTS,
    generate_otp,
    normalize_amount,
    secrets_match,
)
from sqlalchemy import desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

logger = get_logger(__name__)

T = TypeVar("T")

# Scope an access token must carry to spend points directly.
SPEND_SCOPE = Scope.POINTS.value


@dataclass
class LedgerResult:
    entry: LedgerEntry
    member: Member
    client: PartnerClient

    @property
    def new_balance(self) -> Decimal:
        return self.member.points


@dataclass
class Reconciliation:
    member_id: uuid.UUID
    ledger_sum: Decimal
    stored_balance: Decimal

    @property
    def consistent(self) -> bool:
        return self.ledger_sum == self.stored_balance


# ---------------------------------------------------------------------------
# Unit-of-work plumbing
# ---------------------------------------------------------------------------


async def run_balance_mutation(
    db: AsyncSession, operation: Callable[[], Awaitable[T]]
) -> T:
    """Run ``operation`` (which commits) with bounded retries on version conflicts."""
    attempts = max(get_settings().LEDGER_MAX_RETRIES, 1)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except StaleDataError:
            await db.rollback()
            logger.warning(
                "Balance version conflict, retrying (attempt %d/%d)", attempt, attempts
            )
        except Exception:
            await db.rollback()
            raise
    logger.error("Balance mutation abandoned after %d attempts", attempts)
    raise ConcurrencyConflict()


async def _lock_member(db: AsyncSession, member_id: uuid.UUID) -> Member:
    result = await db.execute(
        select(Member)
        .where(Member.id == member_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    member = result.scalar_one_or_none()
    if not member or not member.active:
        raise MemberNotFound()
    return member


async def _get_member(db: AsyncSession, member_id: uuid.UUID) -> Member:
    member = await db.get(Member, member_id)
    if not member or not member.active:
        raise MemberNotFound()
    return member


def _as_uuid(value: uuid.UUID | str, error: type[Exception]) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise error()


# ---------------------------------------------------------------------------
# Instant debit (pre-authorized by an access token)
# ---------------------------------------------------------------------------


async def apply_instant_debit(
    db: AsyncSession,
    *,
    access_token: str,
    amount,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LedgerResult:
    """Spend points on behalf of the token's member, for the token's client."""
    token = await validate_access_token(db, access_token, now)
    require_scope(token, SPEND_SCOPE)
    value = normalize_amount(amount)
    client_pk = token.client_pk
    member_id = token.member_id

    async def _apply() -> LedgerResult:
        client = await get_client_by_pk(db, client_pk)
        member = await _lock_member(db, member_id)
        if member.points < value:
            logger.warning(
                "Insufficient points for member %s: balance=%s amount=%s",
                member.id,
                member.points,
                value,
            )
            raise InsufficientBalance()

        balance_before = member.points
        balance_after = balance_before - value
        entry = LedgerEntry(
            member_id=member.id,
            client_pk=client.id,
            direction=LedgerDirection.DEBIT,
            method=LedgerMethod.OAUTH_DIRECT.value,
            amount=value,
            description=description or f"Redeemed at {client.client_name}",
            balance_before=balance_before,
            balance_after=balance_after,
            completed_at=now or utc_now(),
        )
        db.add(entry)
        member.points = balance_after
        await db.commit()
        return LedgerResult(entry=entry, member=member, client=client)

    result = await run_balance_mutation(db, _apply)
    logger.info(
        "Debited member %s amount=%s via %s (balance %s -> %s)",
        member_id,
        value,
        result.client.client_id,
        result.entry.balance_before,
        result.entry.balance_after,
    )
    return result


# ---------------------------------------------------------------------------
# Credit (client credentials)
# ---------------------------------------------------------------------------


async def apply_instant_credit(
    db: AsyncSession,
    *,
    client_id: str,
    client_secret: str,
    member_id: uuid.UUID | str,
    amount,
    description: Optional[str] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LedgerResult:
    """Partner-to-bank credit. Never authorized by a member's access token."""
    client_pk = (await authenticate_client(db, client_id, client_secret)).id
    value = normalize_amount(amount)
    member_pk = _as_uuid(member_id, MemberNotFound)
    method = reason or LedgerMethod.PARTNER_CREDIT.value

    async def _apply() -> LedgerResult:
        client = await get_client_by_pk(db, client_pk)
        member = await _lock_member(db, member_pk)
        balance_before = member.points
        balance_after = balance_before + value
        if balance_after > MAX_POINTS:
            raise InvalidAmount(f"Credit would take the balance above {MAX_POINTS}")
        entry = LedgerEntry(
            member_id=member.id,
            client_pk=client.id,
            direction=LedgerDirection.CREDIT,
            method=method,
            amount=value,
            description=description or f"Credited by {client.client_name}",
            balance_before=balance_before,
            balance_after=balance_after,
            completed_at=now or utc_now(),
        )
        db.add(entry)
        member.points = balance_after
        await db.commit()
        return LedgerResult(entry=entry, member=member, client=client)

    result = await run_balance_mutation(db, _apply)
    logger.info(
        "Credited member %s amount=%s by %s reason=%s (balance %s -> %s)",
        member_pk,
        value,
        result.client.client_id,
        method,
        result.entry.balance_before,
        result.entry.balance_after,
    )
    return result


# ---------------------------------------------------------------------------
# OTP-gated debit
# ---------------------------------------------------------------------------


async def request_gated_debit(
    db: AsyncSession,
    *,
    client_id: str,
    client_secret: str,
    member_id: uuid.UUID | str,
    amount,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LedgerEntry:
    """Open a pending debit and generate its OTP.

    The balance is checked here and again at approval time.
    """
    client = await authenticate_client(db, client_id, client_secret)
    value = normalize_amount(amount)
    member = await _get_member(db, _as_uuid(member_id, MemberNotFound))
    if member.points < value:
        logger.warning(
            "Redemption request refused for member %s: balance=%s amount=%s",
            member.id,
            member.points,
            value,
        )
        raise InsufficientBalance()

    settings = get_settings()
    now = now or utc_now()
    entry = LedgerEntry(
        member_id=member.id,
        client_pk=client.id,
        direction=LedgerDirection.DEBIT,
        method=LedgerMethod.OTP_APPROVAL.value,
        amount=value,
        description=description or f"Redemption at {client.client_name}",
        status=WorkflowStatus.PENDING,
        otp=generate_otp(settings.OTP_DIGITS),
        otp_expires_at=now + timedelta(seconds=settings.OTP_LIFETIME_SECONDS),
        created_at=now,
    )
    db.add(entry)
    await db.commit()
    await db.refresh(entry)

    logger.info(
        "Created redemption request %s for member %s amount=%s client=%s",
        entry.id,
        member.id,
        value,
        client.client_id,
    )
    return entry


async def _load_owned_pending(
    db: AsyncSession, member_id: uuid.UUID | str, request_id: uuid.UUID | str
) -> LedgerEntry:
    entry = await db.get(
        LedgerEntry,
        _as_uuid(request_id, RequestNotFound),
        populate_existing=True,
    )
    if not entry or entry.method != LedgerMethod.OTP_APPROVAL.value:
        raise RequestNotFound()
    if str(entry.member_id) != str(member_id):
        logger.warning(
            "Member %s tried to act on redemption request %s of another member",
            member_id,
            entry.id,
        )
        raise Forbidden()
    if entry.status != WorkflowStatus.PENDING:
        raise AlreadyProcessed(f"Redemption request already {entry.status.value}")
    return entry


async def _transition(
    db: AsyncSession, entry_id: uuid.UUID, status: WorkflowStatus, **values
) -> bool:
    """Move a pending entry to ``status``; False if it already left ``pending``."""
    result = await db.execute(
        update(LedgerEntry)
        .where(LedgerEntry.id == entry_id, LedgerEntry.status == WorkflowStatus.PENDING)
        .values(status=status, **values)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1


async def approve_gated_debit(
    db: AsyncSession,
    *,
    member_id: uuid.UUID | str,
    request_id: uuid.UUID | str,
    otp: Optional[str],
    now: Optional[datetime] = None,
) -> LedgerResult:
    """Apply a pending debit after the member confirms it with the OTP."""
    now = now or utc_now()
    entry = await _load_owned_pending(db, member_id, request_id)
    entry_id = entry.id

    if entry.otp_expires_at is not None and ensure_utc(entry.otp_expires_at) < now:
        if await _transition(db, entry_id, WorkflowStatus.EXPIRED, completed_at=now):
            await db.commit()
            logger.info("Redemption request %s expired at approval time", entry_id)
        else:
            await db.rollback()
        raise OtpExpired()

    if not secrets_match(otp, entry.otp):
        logger.warning("Invalid OTP for redemption request %s", entry_id)
        raise InvalidOtp()

    client_pk, owner_id, amount = entry.client_pk, entry.member_id, entry.amount

    async def _apply() -> LedgerResult:
        client = await get_client_by_pk(db, client_pk)
        member = await _lock_member(db, owner_id)
        if member.points < amount:
            rejected = await _transition(
                db, entry_id, WorkflowStatus.REJECTED, completed_at=now
            )
            await db.commit()
            if not rejected:
                raise AlreadyProcessed()
            logger.warning(
                "Redemption request %s rejected at approval: balance=%s amount=%s",
                entry_id,
                member.points,
                amount,
            )
            raise InsufficientBalance()

        balance_before = member.points
        balance_after = balance_before - amount
        applied = await _transition(
            db,
            entry_id,
            WorkflowStatus.APPROVED,
            balance_before=balance_before,
            balance_after=balance_after,
            completed_at=now,
        )
        if not applied:
            raise AlreadyProcessed()
        member.points = balance_after
        await db.commit()
        await db.refresh(entry)
        return LedgerResult(entry=entry, member=member, client=client)

    result = await run_balance_mutation(db, _apply)
    logger.info(
        "Approved redemption request %s for member %s amount=%s (balance %s -> %s)",
        entry_id,
        owner_id,
        amount,
        result.entry.balance_before,
        result.entry.balance_after,
    )
    return result


async def reject_gated_debit(
    db: AsyncSession,
    *,
    member_id: uuid.UUID | str,
    request_id: uuid.UUID | str,
    now: Optional[datetime] = None,
) -> LedgerEntry:
    """Decline a pending debit. The balance is never touched."""
    now = now or utc_now()
    entry = await _load_owned_pending(db, member_id, request_id)
    if not await _transition(db, entry.id, WorkflowStatus.REJECTED, completed_at=now):
        await db.rollback()
        raise AlreadyProcessed()
    await db.commit()
    await db.refresh(entry)
    logger.info("Member %s rejected redemption request %s", member_id, entry.id)
    return entry


async def expire_pending_requests(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Sweep pending entries whose OTP lifetime has elapsed. Idempotent."""
    now = now or utc_now()
    result = await db.execute(
        update(LedgerEntry)
        .where(
            LedgerEntry.status == WorkflowStatus.PENDING,
            LedgerEntry.otp_expires_at < now,
        )
        .values(status=WorkflowStatus.EXPIRED, completed_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    expired = result.rowcount or 0
    if expired:
        logger.info("Expired %d pending redemption requests", expired)
    return expired


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def list_pending_requests(
    db: AsyncSession, member_id: uuid.UUID, now: Optional[datetime] = None
) -> list[tuple[LedgerEntry, PartnerClient]]:
    now = now or utc_now()
    result = await db.execute(
        select(LedgerEntry, PartnerClient)
        .join(PartnerClient, PartnerClient.id == LedgerEntry.client_pk)
        .where(
            LedgerEntry.member_id == member_id,
            LedgerEntry.status == WorkflowStatus.PENDING,
            LedgerEntry.otp_expires_at > now,
        )
        .order_by(desc(LedgerEntry.created_at))
    )
    return [(entry, client) for entry, client in result.all()]


async def member_history(
    db: AsyncSession, member_id: uuid.UUID, limit: int = 50
) -> list[tuple[LedgerEntry, PartnerClient]]:
    result = await db.execute(
        select(LedgerEntry, PartnerClient)
        .join(PartnerClient, PartnerClient.id == LedgerEntry.client_pk)
        .where(LedgerEntry.member_id == member_id)
        .order_by(desc(LedgerEntry.created_at))
        .limit(limit)
    )
    return [(entry, client) for entry, client in result.all()]


async def reconcile_member(db: AsyncSession, member_id: uuid.UUID) -> Reconciliation:
    """Compare the stored balance with applied credits minus applied debits."""
    member = await db.get(Member, member_id, populate_existing=True)
    if not member:
        raise MemberNotFound()
    result = await db.execute(
        select(LedgerEntry).where(LedgerEntry.member_id == member_id)
    )
    ledger_sum = sum(
        (entry.signed_amount for entry in result.scalars() if entry.is_applied),
        Decimal("0"),
    )
    reconciliation = Reconciliation(
        member_id=member.id, ledger_sum=ledger_sum, stored_balance=member.points
    )
    if not reconciliation.consistent:
        logger.error(
            "Ledger mismatch for member %s: ledger_sum=%s stored=%s",
            member.id,
            ledger_sum,
            member.points,
        )
    return reconciliation
