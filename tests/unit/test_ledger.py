"""Unit tests for the points ledger and the OTP-gated debit workflow.

No HTTP layer involved; business logic runs against db_session.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from libs.common.datetime_utils import utc_now
from services.points_bank_service.errors import (
    AlreadyProcessed,
    ConcurrencyConflict,
    Forbidden,
    InsufficientBalance,
    InvalidAmount,
    InvalidCredentials,
    InvalidOtp,
    MemberNotFound,
    NotFound,
    OtpExpired,
    RequestNotFound,
    ScopeDenied,
)
from services.points_bank_service.models import (
    LedgerDirection,
    LedgerEntry,
    LedgerMethod,
    Member,
    WorkflowStatus,
)
from services.points_bank_service.services import ledger
from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError
from tests.factories import (
    CLIENT_SECRET,
    AccessTokenFactory,
    MemberFactory,
    PartnerClientFactory,
    persist,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _setup(db, points="0", scope=None):
    """Member with ``points``, a partner client and an access token for the pair."""
    member = MemberFactory.create(points=Decimal(points))
    client = PartnerClientFactory.create()
    await persist(db, member, client)
    token = AccessTokenFactory.create(
        member.id, client.id, scope=scope or ["profile", "points"]
    )
    await persist(db, token)
    return member, client, token


async def _balance(db, member_id) -> Decimal:
    member = await db.get(Member, member_id, populate_existing=True)
    return member.points


async def _entries(db, member_id) -> list[LedgerEntry]:
    result = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.member_id == member_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars())


async def _credit(db, client, member, amount, **kwargs):
    return await ledger.apply_instant_credit(
        db,
        client_id=client.client_id,
        client_secret=CLIENT_SECRET,
        member_id=member.id,
        amount=amount,
        **kwargs,
    )


async def _request(db, client, member, amount, **kwargs):
    return await ledger.request_gated_debit(
        db,
        client_id=client.client_id,
        client_secret=CLIENT_SECRET,
        member_id=str(member.id),
        amount=amount,
        **kwargs,
    )


async def _reload(db, entry) -> LedgerEntry:
    return await db.get(LedgerEntry, entry.id, populate_existing=True)


# ---------------------------------------------------------------------------
# Instant debit
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_instant_debit_200_minus_50(db_session):
    """Balance 200, debit 50 -> 150 with one completed debit entry."""
    member, client, token = await _setup(db_session, points="200")

    result = await ledger.apply_instant_debit(
        db_session, access_token=token.token, amount=50
    )

    assert result.new_balance == Decimal("150")
    assert await _balance(db_session, member.id) == Decimal("150")
    entries = await _entries(db_session, member.id)
    assert len(entries) == 1
    entry = entries[0]
    assert entry.direction == LedgerDirection.DEBIT
    assert entry.status is None
    assert entry.method == LedgerMethod.OAUTH_DIRECT.value
    assert entry.amount == Decimal("50")
    assert entry.balance_before == Decimal("200")
    assert entry.balance_after == Decimal("150")
    assert entry.completed_at is not None
    assert result.client.id == client.id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_instant_debit_without_spend_scope(db_session):
    """A token lacking the points scope never touches the balance."""
    member, _, token = await _setup(db_session, points="200", scope=["profile"])

    with pytest.raises(ScopeDenied):
        await ledger.apply_instant_debit(db_session, access_token=token.token, amount=10)

    assert await _balance(db_session, member.id) == Decimal("200")
    assert await _entries(db_session, member.id) == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_instant_debit_insufficient_balance(db_session):
    member, _, token = await _setup(db_session, points="20")

    with pytest.raises(InsufficientBalance):
        await ledger.apply_instant_debit(db_session, access_token=token.token, amount=21)

    assert await _balance(db_session, member.id) == Decimal("20")
    assert await _entries(db_session, member.id) == []


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("amount", [0, -5, "abc", "NaN"])
async def test_instant_debit_rejects_bad_amounts(db_session, amount):
    member, _, token = await _setup(db_session, points="100")

    with pytest.raises(InvalidAmount):
        await ledger.apply_instant_debit(db_session, access_token=token.token, amount=amount)

    assert await _balance(db_session, member.id) == Decimal("100")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_instant_debit_exact_balance_reaches_zero(db_session):
    member, _, token = await _setup(db_session, points="75.50")

    result = await ledger.apply_instant_debit(
        db_session, access_token=token.token, amount="75.50"
    )

    assert result.new_balance == Decimal("0")


# ---------------------------------------------------------------------------
# Credit
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_credit_increments_balance(db_session):
    member, client, _ = await _setup(db_session, points="10")

    result = await _credit(db_session, client, member, "15.25", reason="purchase_reward")

    assert result.new_balance == Decimal("25.25")
    entry = result.entry
    assert entry.direction == LedgerDirection.CREDIT
    assert entry.method == "purchase_reward"
    assert entry.status is None
    assert entry.balance_before == Decimal("10")
    assert entry.balance_after == Decimal("25.25")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_credit_defaults_reason(db_session):
    member, client, _ = await _setup(db_session)

    result = await _credit(db_session, client, member, 5)

    assert result.entry.method == LedgerMethod.PARTNER_CREDIT.value


@pytest.mark.asyncio
@pytest.mark.unit
async def test_credit_cannot_overflow_balance_column(db_session):
    member, client, _ = await _setup(db_session, points="9999999995.00")

    with pytest.raises(InvalidAmount):
        await _credit(db_session, client, member, 10)
    with pytest.raises(InvalidAmount):
        await _credit(db_session, client, member, "1e30")

    assert await _balance(db_session, member.id) == Decimal("9999999995.00")
    assert await _entries(db_session, member.id) == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_credit_requires_client_secret(db_session):
    member, client, _ = await _setup(db_session)

    with pytest.raises(InvalidCredentials):
        await ledger.apply_instant_credit(
            db_session,
            client_id=client.client_id,
            client_secret="wrong",
            member_id=member.id,
            amount=5,
        )
    assert await _balance(db_session, member.id) == Decimal("0")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_credit_unknown_member(db_session):
    _, client, _ = await _setup(db_session)

    with pytest.raises(MemberNotFound):
        await ledger.apply_instant_credit(
            db_session,
            client_id=client.client_id,
            client_secret=CLIENT_SECRET,
            member_id=uuid.uuid4(),
            amount=5,
        )
    with pytest.raises(MemberNotFound):
        await ledger.apply_instant_credit(
            db_session,
            client_id=client.client_id,
            client_secret=CLIENT_SECRET,
            member_id="not-a-uuid",
            amount=5,
        )


# ---------------------------------------------------------------------------
# Gated debit: request
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_request_gated_debit_creates_pending_entry(db_session):
    member, client, _ = await _setup(db_session, points="100")

    entry = await _request(db_session, client, member, 40, description="Coffee")

    assert entry.status == WorkflowStatus.PENDING
    assert entry.method == LedgerMethod.OTP_APPROVAL.value
    assert entry.otp.isdigit() and len(entry.otp) == 6
    assert entry.balance_before is None
    lifetime = entry.otp_expires_at - utc_now()
    assert timedelta(minutes=9) < lifetime <= timedelta(minutes=10)
    # Nothing is taken until approval
    assert await _balance(db_session, member.id) == Decimal("100")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_request_gated_debit_insufficient_balance(db_session):
    """Amount 100 against balance 50 is refused at request time."""
    member, client, _ = await _setup(db_session, points="50")

    with pytest.raises(InsufficientBalance):
        await _request(db_session, client, member, 100)
    assert await _entries(db_session, member.id) == []


# ---------------------------------------------------------------------------
# Gated debit: approve / reject
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_approve_applies_debit(db_session):
    member, client, _ = await _setup(db_session, points="100")
    entry = await _request(db_session, client, member, 40)

    result = await ledger.approve_gated_debit(
        db_session, member_id=member.id, request_id=entry.id, otp=entry.otp
    )

    assert result.new_balance == Decimal("60")
    approved = await _reload(db_session, entry)
    assert approved.status == WorkflowStatus.APPROVED
    assert approved.balance_before == Decimal("100")
    assert approved.balance_after == Decimal("60")
    assert approved.completed_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_approve_after_otp_lifetime_expires_entry(db_session):
    member, client, _ = await _setup(db_session, points="100")
    entry = await _request(db_session, client, member, 40)

    with pytest.raises(OtpExpired):
        await ledger.approve_gated_debit(
            db_session,
            member_id=member.id,
            request_id=entry.id,
            otp=entry.otp,
            now=utc_now() + timedelta(minutes=11),
        )

    assert (await _reload(db_session, entry)).status == WorkflowStatus.EXPIRED
    assert await _balance(db_session, member.id) == Decimal("100")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_approve_with_wrong_otp_keeps_pending(db_session):
    member, client, _ = await _setup(db_session, points="100")
    entry = await _request(db_session, client, member, 40)
    wrong = "1" * 6 if entry.otp != "1" * 6 else "2" * 6

    with pytest.raises(InvalidOtp):
        await ledger.approve_gated_debit(
            db_session, member_id=member.id, request_id=entry.id, otp=wrong
        )

    assert (await _reload(db_session, entry)).status == WorkflowStatus.PENDING
    assert await _balance(db_session, member.id) == Decimal("100")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_approve_by_another_member_is_forbidden(db_session):
    member, client, _ = await _setup(db_session, points="100")
    stranger = await persist(db_session, MemberFactory.create())
    entry = await _request(db_session, client, member, 40)

    with pytest.raises(Forbidden):
        await ledger.approve_gated_debit(
            db_session, member_id=stranger.id, request_id=entry.id, otp=entry.otp
        )
    with pytest.raises(Forbidden):
        await ledger.reject_gated_debit(
            db_session, member_id=stranger.id, request_id=entry.id
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_approve_unknown_request(db_session):
    member, _, _ = await _setup(db_session)

    with pytest.raises(RequestNotFound) as exc_info:
        await ledger.approve_gated_debit(
            db_session, member_id=member.id, request_id=uuid.uuid4(), otp="123456"
        )
    assert isinstance(exc_info.value, NotFound)

    with pytest.raises(RequestNotFound):
        await ledger.approve_gated_debit(
            db_session, member_id=member.id, request_id="garbage", otp="123456"
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_approve_twice_debits_once(db_session):
    member, client, _ = await _setup(db_session, points="100")
    entry = await _request(db_session, client, member, 40)
    await ledger.approve_gated_debit(
        db_session, member_id=member.id, request_id=entry.id, otp=entry.otp
    )

    with pytest.raises(AlreadyProcessed):
        await ledger.approve_gated_debit(
            db_session, member_id=member.id, request_id=entry.id, otp=entry.otp
        )
    with pytest.raises(AlreadyProcessed):
        await ledger.reject_gated_debit(db_session, member_id=member.id, request_id=entry.id)

    assert await _balance(db_session, member.id) == Decimal("60")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reject_leaves_balance_and_blocks_approval(db_session):
    member, client, _ = await _setup(db_session, points="100")
    entry = await _request(db_session, client, member, 40)

    rejected = await ledger.reject_gated_debit(
        db_session, member_id=member.id, request_id=entry.id
    )

    assert rejected.status == WorkflowStatus.REJECTED
    assert rejected.completed_at is not None
    with pytest.raises(AlreadyProcessed):
        await ledger.approve_gated_debit(
            db_session, member_id=member.id, request_id=entry.id, otp=entry.otp
        )
    with pytest.raises(AlreadyProcessed):
        await ledger.reject_gated_debit(db_session, member_id=member.id, request_id=entry.id)
    assert await _balance(db_session, member.id) == Decimal("100")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_approve_rechecks_balance(db_session):
    """Balance spent elsewhere after the request: the approval rejects the entry."""
    member, client, token = await _setup(db_session, points="100")
    entry = await _request(db_session, client, member, 80)
    await ledger.apply_instant_debit(db_session, access_token=token.token, amount=50)

    with pytest.raises(InsufficientBalance):
        await ledger.approve_gated_debit(
            db_session, member_id=member.id, request_id=entry.id, otp=entry.otp
        )

    assert (await _reload(db_session, entry)).status == WorkflowStatus.REJECTED
    assert await _balance(db_session, member.id) == Decimal("50")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_expired_entry_cannot_be_approved_later(db_session):
    member, client, _ = await _setup(db_session, points="100")
    entry = await _request(db_session, client, member, 40)
    later = utc_now() + timedelta(minutes=11)

    with pytest.raises(OtpExpired):
        await ledger.approve_gated_debit(
            db_session, member_id=member.id, request_id=entry.id, otp=entry.otp, now=later
        )
    with pytest.raises(AlreadyProcessed):
        await ledger.approve_gated_debit(
            db_session, member_id=member.id, request_id=entry.id, otp=entry.otp
        )


# ---------------------------------------------------------------------------
# Sweep & queries
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_expire_pending_requests_is_idempotent(db_session):
    member, client, _ = await _setup(db_session, points="100")
    stale = await _request(db_session, client, member, 10)
    fresh = await _request(db_session, client, member, 20)
    stale_entry = await _reload(db_session, stale)
    stale_entry.otp_expires_at = utc_now() - timedelta(seconds=1)
    await db_session.commit()

    assert await ledger.expire_pending_requests(db_session) == 1
    assert await ledger.expire_pending_requests(db_session) == 0

    assert (await _reload(db_session, stale)).status == WorkflowStatus.EXPIRED
    assert (await _reload(db_session, fresh)).status == WorkflowStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_pending_requests(db_session):
    member, client, _ = await _setup(db_session, points="100")
    pending = await _request(db_session, client, member, 10)
    done = await _request(db_session, client, member, 20)
    await ledger.reject_gated_debit(db_session, member_id=member.id, request_id=done.id)

    rows = await ledger.list_pending_requests(db_session, member.id)
    assert [entry.id for entry, _ in rows] == [pending.id]
    assert rows[0][1].client_id == client.client_id

    later = await ledger.list_pending_requests(
        db_session, member.id, now=utc_now() + timedelta(minutes=11)
    )
    assert later == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_member_history_newest_first(db_session):
    member, client, token = await _setup(db_session)
    await _credit(db_session, client, member, 100)
    await ledger.apply_instant_debit(db_session, access_token=token.token, amount=30)

    rows = await ledger.member_history(db_session, member.id, limit=10)

    assert [entry.direction for entry, _ in rows] == [
        LedgerDirection.DEBIT,
        LedgerDirection.CREDIT,
    ]
    assert [entry.signed_amount for entry, _ in rows] == [Decimal("-30"), Decimal("100")]
    assert len(await ledger.member_history(db_session, member.id, limit=1)) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_balance_matches_applied_ledger_entries(db_session):
    """Balance equals credits minus applied debits after a mixed sequence."""
    member, client, token = await _setup(db_session)

    await _credit(db_session, client, member, "200")
    await _credit(db_session, client, member, "35.50")
    await ledger.apply_instant_debit(db_session, access_token=token.token, amount="60.25")
    approved = await _request(db_session, client, member, 25)
    await ledger.approve_gated_debit(
        db_session, member_id=member.id, request_id=approved.id, otp=approved.otp
    )
    rejected = await _request(db_session, client, member, 40)
    await ledger.reject_gated_debit(db_session, member_id=member.id, request_id=rejected.id)
    await _request(db_session, client, member, 10)  # still pending
    with pytest.raises(InsufficientBalance):
        await ledger.apply_instant_debit(db_session, access_token=token.token, amount=1000)

    reconciliation = await ledger.reconcile_member(db_session, member.id)

    expected = Decimal("200") + Decimal("35.50") - Decimal("60.25") - Decimal("25")
    assert reconciliation.stored_balance == expected
    assert reconciliation.ledger_sum == expected
    assert reconciliation.consistent
    assert await _balance(db_session, member.id) >= 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconcile_detects_drift(db_session):
    member, client, _ = await _setup(db_session)
    await _credit(db_session, client, member, 10)
    stored = await db_session.get(Member, member.id, populate_existing=True)
    stored.points = Decimal("11")
    await db_session.commit()

    reconciliation = await ledger.reconcile_member(db_session, member.id)

    assert not reconciliation.consistent


# ---------------------------------------------------------------------------
# run_balance_mutation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_balance_mutation_retries_version_conflicts(db_session):
    calls = []

    async def _operation():
        calls.append(1)
        if len(calls) < 3:
            raise StaleDataError("version mismatch")
        return "applied"

    assert await ledger.run_balance_mutation(db_session, _operation) == "applied"
    assert len(calls) == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_balance_mutation_gives_up(db_session):
    calls = []

    async def _operation():
        calls.append(1)
        raise StaleDataError("version mismatch")

    with pytest.raises(ConcurrencyConflict):
        await ledger.run_balance_mutation(db_session, _operation)
    assert len(calls) == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_balance_mutation_does_not_retry_business_errors(db_session):
    calls = []

    async def _operation():
        calls.append(1)
        raise InsufficientBalance()

    with pytest.raises(InsufficientBalance):
        await ledger.run_balance_mutation(db_session, _operation)
    assert len(calls) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pending_entries_do_not_count_towards_balance(db_session):
    member, client, _ = await _setup(db_session)
    await _credit(db_session, client, member, 50)
    await _request(db_session, client, member, 50)

    count = await db_session.execute(
        select(func.count()).select_from(LedgerEntry).where(LedgerEntry.member_id == member.id)
    )
    assert count.scalar_one() == 2
    assert (await ledger.reconcile_member(db_session, member.id)).ledger_sum == Decimal("50")
