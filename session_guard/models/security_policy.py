"""
Security policy model — append-only history of enforcement settings.

Exactly one row is active at a time.  A change deactivates the current
row and inserts a new one; rows are never updated otherwise and never
deleted.  The partial unique index backs the single-active invariant
at the store.
"""

import uuid

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, text
from sqlalchemy.orm import Mapped, mapped_column

from session_guard.models.base import Base, CreatedAtMixin, UUIDPrimaryKeyMixin


class SecurityPolicy(Base, UUIDPrimaryKeyMixin, CreatedAtMixin):
    __tablename__ = "security_policies"

    max_addresses_per_user: Mapped[int] = mapped_column(Integer, nullable=False)
    block_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint("max_addresses_per_user >= 1", name="ck_security_policies_max_addresses"),
        CheckConstraint("block_duration_minutes >= 1", name="ck_security_policies_block_duration"),
        Index(
            "uq_security_policies_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<SecurityPolicy max={self.max_addresses_per_user} "
            f"block={self.block_duration_minutes}m active={self.is_active}>"
        )
