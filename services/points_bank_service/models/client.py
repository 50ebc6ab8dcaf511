"""PartnerClient model: a registered third-party application."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from libs.db.types import UTCDateTime
from sqlalchemy import JSON, Boolean, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

DEFAULT_ALLOWED_GRANTS = ["authorization_code", "refresh_token"]
DEFAULT_ALLOWED_SCOPES = ["profile", "points"]


class PartnerClient(Base):
    """Partner application. Read-only to the grant engine and the ledger."""

    __tablename__ = "partner_clients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    client_secret: Mapped[str] = mapped_column(String, nullable=False)
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    redirect_uris: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    allowed_grants: Mapped[list[str]] = mapped_column(
        JSON, default=lambda: list(DEFAULT_ALLOWED_GRANTS), nullable=False
    )
    allowed_scopes: Mapped[list[str]] = mapped_column(
        JSON, default=lambda: list(DEFAULT_ALLOWED_SCOPES), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    logo_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utc_now, onupdate=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        return f"<PartnerClient {self.client_id} name={self.client_name}>"
