"""ConsentSession: the in-flight interactive authorize handshake."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from libs.db.types import UTCDateTime
from sqlalchemy import JSON, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class ConsentSession(Base):
    """Short-lived record keyed by an opaque id carried in a cookie or query param.

    Created by ``/oauth/authorize``, bound to a member at login, consumed when
    the member approves or denies.
    """

    __tablename__ = "oauth_consent_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    client_pk: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("partner_clients.id"), nullable=False
    )
    redirect_uri: Mapped[str] = mapped_column(String, nullable=False)
    scope: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    state: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    member_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("members.id"), nullable=True
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<ConsentSession {self.id[:8]} member={self.member_id}>"
