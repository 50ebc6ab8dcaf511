"""Datetime utilities for timezone-aware UTC timestamps.

Usage:
    from libs.common.datetime_utils import utc_now

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utc_now
    )
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime.

    Always use this for timestamps in the database.
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and normalise aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def expires_in(seconds: int, now: Optional[datetime] = None) -> datetime:
    """Absolute expiry ``seconds`` from ``now``."""
    return (now or utc_now()) + timedelta(seconds=seconds)


def seconds_until(moment: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    if moment is None:
        return None
    delta = ensure_utc(moment) - (now or utc_now())
    return max(int(delta.total_seconds()), 0)
