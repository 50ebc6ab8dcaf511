"""LedgerEntry model: append-only record of every balance mutation.

One table for all three variants, told apart by ``direction`` and
``method``:

* credit        direction=credit, status NULL
* instant debit direction=debit, method=oauth_direct, status NULL
* gated debit   direction=debit, method=otp_approval, status pending -> approved/rejected/expired
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from libs.db.types import UTCDateTime
from services.points_bank_service.models.enums import (
    LedgerDirection,
    WorkflowStatus,
    enum_values,
)
from services.points_bank_service.models.member import POINTS_PRECISION, POINTS_SCALE
from sqlalchemy import CheckConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class LedgerEntry(Base):
    """Immutable once applied; a pending gated debit transitions exactly once."""

    __tablename__ = "ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("members.id"), nullable=False, index=True
    )
    client_pk: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("partner_clients.id"), nullable=False
    )
    direction: Mapped[LedgerDirection] = mapped_column(
        SAEnum(
            LedgerDirection,
            name="ledger_direction_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    # LedgerMethod value, or a partner-supplied reason tag for credits
    method: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(POINTS_PRECISION, POINTS_SCALE), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[Optional[WorkflowStatus]] = mapped_column(
        SAEnum(
            WorkflowStatus,
            name="workflow_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=True,
    )
    balance_before: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(POINTS_PRECISION, POINTS_SCALE), nullable=True
    )
    balance_after: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(POINTS_PRECISION, POINTS_SCALE), nullable=True
    )
    otp: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    otp_expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_amount_positive"),
        Index("ix_ledger_entries_member_created", "member_id", "created_at"),
        Index("ix_ledger_entries_status_otp_expiry", "status", "otp_expires_at"),
    )

    @property
    def is_applied(self) -> bool:
        """True when the entry's amount is reflected in the member balance."""
        return self.status is None or self.status == WorkflowStatus.APPROVED

    @property
    def signed_amount(self) -> Decimal:
        if self.direction == LedgerDirection.CREDIT:
            return self.amount
        return -self.amount

    def __repr__(self) -> str:
        return f"<LedgerEntry {self.id} {self.direction.value} {self.amount} status={self.status}>"
