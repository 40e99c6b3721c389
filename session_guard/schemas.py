"""
Pydantic schemas for request / response serialization.

Kept in a single file for now — split per-domain when it grows.
Schemas are deliberately decoupled from SQLAlchemy models so the
API surface can evolve independently of the DB layer.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from session_guard.core.timeutils import Period


# ── Sessions ─────────────────────────────────────────────────────────
class OpenSessionRequest(BaseModel):
    client_descriptor: str | None = Field(default=None, max_length=512)


class SessionOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    origin_address: str
    client_descriptor: str
    started_at: datetime
    ended_at: datetime | None = None
    last_seen_at: datetime
    duration_minutes: int
    is_active: bool

    model_config = {"from_attributes": True}


class RecentSessionOut(SessionOut):
    user_name: str
    is_online: bool = False


class BlockStatusOut(BaseModel):
    is_blocked: bool
    blocked_until: datetime | None = None
    reason: str | None = None
    remaining_seconds: int = 0


class OpenSessionResponse(BaseModel):
    session: SessionOut
    block: BlockStatusOut


# ── Policy ───────────────────────────────────────────────────────────
class UpdatePolicyRequest(BaseModel):
    max_addresses_per_user: int = Field(ge=1)
    block_duration_minutes: int = Field(ge=1)


class SecurityPolicyOut(BaseModel):
    id: uuid.UUID
    max_addresses_per_user: int
    block_duration_minutes: int
    is_active: bool
    created_at: datetime
    created_by: uuid.UUID | None = None

    model_config = {"from_attributes": True}


# ── Blocks ───────────────────────────────────────────────────────────
class CreateBlockRequest(BaseModel):
    user_id: uuid.UUID
    reason: str = Field(min_length=1, max_length=256)
    duration_minutes: int = Field(ge=1)


class SecurityBlockOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    reason: str
    blocked_until: datetime
    address_count: int
    system_imposed: bool
    is_active: bool
    created_at: datetime
    lifted_at: datetime | None = None
    user_name: str | None = None

    model_config = {"from_attributes": True}


class DecisionOut(BaseModel):
    kind: str
    reason: str | None = None
    address_count: int = 0
    block_id: uuid.UUID | None = None
    blocked_until: datetime | None = None


# ── Stats ────────────────────────────────────────────────────────────
class UserSecuritySnapshot(BaseModel):
    user_id: uuid.UUID
    full_name: str
    plan: str | None = None
    total_sessions: int = 0
    unique_addresses: int = 0
    total_minutes: int = 0
    last_session_start: datetime | None = None
    is_online: bool = False
    is_blocked: bool = False
    degraded: bool = False


class UserSnapshotList(BaseModel):
    users: list[UserSecuritySnapshot] = []
    generated_at: datetime
    degraded: bool = False


class TimeStats(BaseModel):
    today_minutes: int = 0
    week_minutes: int = 0
    month_minutes: int = 0
    year_minutes: int = 0
    degraded: bool = False


class PeriodTimeOut(BaseModel):
    user_id: uuid.UUID
    period: Period
    minutes: int


class SecurityOverview(BaseModel):
    """One frame of the live operator dashboard."""

    policy: SecurityPolicyOut | None = None
    users: UserSnapshotList
    active_blocks: list[SecurityBlockOut] = []
    recent_sessions: int = 0
