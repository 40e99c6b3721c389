"""
Models package — import every model so SQLAlchemy's Base.metadata
knows about all tables (critical for Alembic and the test schema).
"""

from session_guard.models.base import Base, CreatedAtMixin, UTCDateTime, UUIDPrimaryKeyMixin
from session_guard.models.profile import UserProfile
from session_guard.models.security_block import SecurityBlock
from session_guard.models.security_policy import SecurityPolicy
from session_guard.models.session import UserSession

__all__ = [
    "Base",
    "CreatedAtMixin",
    "UTCDateTime",
    "UUIDPrimaryKeyMixin",
    "UserProfile",
    "SecurityBlock",
    "SecurityPolicy",
    "UserSession",
]
