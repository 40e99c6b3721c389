"""
Security block model — a time-boxed restriction on a user.

A block is effectively active iff ``is_active`` AND ``blocked_until > now``.
Expiry is lazy: nothing flips ``is_active`` when the time runs out, so
every read applies the time check itself.  A manual unblock clears
``is_active`` and stamps ``lifted_at``.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from session_guard.models.base import Base, CreatedAtMixin, UTCDateTime, UUIDPrimaryKeyMixin


class SecurityBlock(Base, UUIDPrimaryKeyMixin, CreatedAtMixin):
    __tablename__ = "security_blocks"

    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(256), nullable=False)
    blocked_until: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    address_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    system_imposed: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    lifted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_security_blocks_user_active_until", "user_id", "is_active", "blocked_until"),
    )

    def __repr__(self) -> str:
        return f"<SecurityBlock user={self.user_id} until={self.blocked_until} active={self.is_active}>"
