"""Member model: the points account holder."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from libs.db.types import UTCDateTime
from sqlalchemy import Boolean, CheckConstraint, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

POINTS_PRECISION = 12
POINTS_SCALE = 2


class Member(Base):
    """Member account. Balance changes only through ledger operations."""

    __tablename__ = "members"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    points: Mapped[Decimal] = mapped_column(
        Numeric(POINTS_PRECISION, POINTS_SCALE), default=Decimal("0"), nullable=False
    )
    # Optimistic concurrency counter; bumped on every UPDATE by the mapper.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_member_points_non_negative"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Member {self.id} email={self.email} points={self.points}>"
