"""
User session model — one login-to-logout interval from one address.

Tracks every session per user, enabling:
- Distinct-address counting for abuse detection
- Online / offline status from heartbeat recency
- Time-on-platform rollups (duration is frozen at close)

Several sessions may be active for the same user at once (one per
device); nothing here enforces a single active row.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from session_guard.models.base import Base, UTCDateTime, UUIDPrimaryKeyMixin


class UserSession(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "user_sessions"

    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    origin_address: Mapped[str] = mapped_column(String(64), nullable=False)
    client_descriptor: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    started_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_seen_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    duration_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_user_sessions_user_active", "user_id", "is_active"),
        Index("ix_user_sessions_user_address", "user_id", "origin_address"),
    )

    def __repr__(self) -> str:
        return f"<UserSession user={self.user_id} address={self.origin_address} active={self.is_active}>"
