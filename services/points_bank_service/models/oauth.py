"""OAuth grant artefacts: authorization codes, access and refresh tokens.

Ownership is held as plain foreign keys to ``members`` and
``partner_clients``; there are no ORM relationships back from Member.
"""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from libs.db.types import UTCDateTime
from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class AuthorizationCode(Base):
    """One-time code. Deleted in the same transaction that issues its tokens."""

    __tablename__ = "oauth_authorization_codes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("members.id"), nullable=False, index=True
    )
    client_pk: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("partner_clients.id"), nullable=False
    )
    redirect_uri: Mapped[str] = mapped_column(String, nullable=False)
    scope: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<AuthorizationCode {self.id} member={self.member_id}>"


class AccessToken(Base):
    """Bearer token. ``expires_at`` is NULL for the non-expiring scope."""

    __tablename__ = "oauth_access_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    token: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("members.id"), nullable=False
    )
    client_pk: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("partner_clients.id"), nullable=False
    )
    scope: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_oauth_access_tokens_member_client", "member_id", "client_pk"),
    )

    @property
    def is_non_expiring(self) -> bool:
        return self.expires_at is None

    def __repr__(self) -> str:
        return f"<AccessToken {self.id} member={self.member_id} revoked={self.revoked}>"


class RefreshToken(Base):
    """Long-lived token, rotated (revoked and replaced) on every use."""

    __tablename__ = "oauth_refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    token: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("members.id"), nullable=False
    )
    client_pk: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("partner_clients.id"), nullable=False
    )
    scope: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_oauth_refresh_tokens_member_client", "member_id", "client_pk"),
    )

    def __repr__(self) -> str:
        return f"<RefreshToken {self.id} member={self.member_id} revoked={self.revoked}>"
