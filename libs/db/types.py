"""Portable column types."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

from libs.common.datetime_utils import ensure_utc


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetime on every backend.

    Postgres keeps the offset natively; SQLite stores naive values, so results
    are re-tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        return ensure_utc(value)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        return ensure_utc(value)
