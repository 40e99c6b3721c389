"""
Stats service — security & usage rollups for operator dashboards.

All batch figures are computed with a fixed number of grouped queries
(sessions grouped by user, blocks in force as one set, identities in one
batch), independent of how many users there are.

Data-store failures never escape from here: the affected figures come
back as zeros with ``degraded=True`` and the error is logged, leaving it
to the caller whether to show a warning.
"""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import and_, case, distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.core.config import settings
from session_guard.core.timeutils import Period, period_bounds, utcnow
from session_guard.models.session import UserSession
from session_guard.schemas import (
    RecentSessionOut,
    SecurityBlockOut,
    SecurityOverview,
    SecurityPolicyOut,
    SessionOut,
    TimeStats,
    UserSecuritySnapshot,
    UserSnapshotList,
)
from session_guard.services import block_service, policy_service
from session_guard.services.identity_service import (
    IdentityProvider,
    default_identity_provider,
    identity_or_unknown,
)
from session_guard.services.session_service import is_online, online_clause

logger = logging.getLogger(__name__)


def _rollup_columns(now: datetime):
    online = online_clause(now)
    return (
        func.count(UserSession.id).label("total_sessions"),
        func.count(distinct(UserSession.origin_address)).label("unique_addresses"),
        func.coalesce(func.sum(UserSession.duration_minutes), 0).label("total_minutes"),
        func.max(UserSession.started_at).label("last_session_start"),
        func.max(case((online, 1), else_=0)).label("online"),
    )


# ── Per-user ─────────────────────────────────────────────────────────

async def user_snapshot(
    user_id: uuid.UUID,
    db: AsyncSession,
    *,
    identity: IdentityProvider | None = None,
    now: datetime | None = None,
) -> UserSecuritySnapshot:
    now = now or utcnow()
    identity = identity or default_identity_provider
    try:
        row = (
            await db.execute(select(*_rollup_columns(now)).where(UserSession.user_id == user_id))
        ).one()
        blocked = await block_service.is_blocked(user_id, db, now=now)
        who = identity_or_unknown(await identity.resolve_many([user_id], db), user_id)
    except SQLAlchemyError:
        logger.exception("Snapshot for user %s failed", user_id)
        return UserSecuritySnapshot(
            user_id=user_id,
            full_name=identity_or_unknown({}, user_id).full_name,
            degraded=True,
        )

    return UserSecuritySnapshot(
        user_id=user_id,
        full_name=who.full_name,
        plan=who.plan,
        total_sessions=row.total_sessions or 0,
        unique_addresses=row.unique_addresses or 0,
        total_minutes=int(row.total_minutes or 0),
        last_session_start=row.last_session_start,
        is_online=bool(row.online),
        is_blocked=blocked,
    )


async def period_time(
    user_id: uuid.UUID,
    period: Period,
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> int:
    """Minutes of sessions that STARTED inside the calendar period."""
    start, end = period_bounds(Period(period), now or utcnow())
    stmt = select(func.coalesce(func.sum(UserSession.duration_minutes), 0)).where(
        UserSession.user_id == user_id,
        UserSession.started_at >= start,
        UserSession.started_at < end,
    )
    try:
        return int((await db.execute(stmt)).scalar_one())
    except SQLAlchemyError:
        logger.exception("Period time (%s) for user %s failed", period, user_id)
        return 0


async def time_stats(
    user_id: uuid.UUID,
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> TimeStats:
    """Today / week / month / year in a single query."""
    now = now or utcnow()
    bounds = {p: period_bounds(p, now) for p in Period}

    def _bucket(period: Period):
        start, end = bounds[period]
        in_period = and_(UserSession.started_at >= start, UserSession.started_at < end)
        return func.coalesce(
            func.sum(case((in_period, UserSession.duration_minutes), else_=0)), 0,
        ).label(period.value)

    earliest = min(start for start, _ in bounds.values())
    stmt = select(*(_bucket(p) for p in Period)).where(
        UserSession.user_id == user_id,
        UserSession.started_at >= earliest,
    )
    try:
        row = (await db.execute(stmt)).one()
    except SQLAlchemyError:
        logger.exception("Time stats for user %s failed", user_id)
        return TimeStats(degraded=True)

    return TimeStats(
        today_minutes=int(row.today),
        week_minutes=int(row.week),
        month_minutes=int(row.month),
        year_minutes=int(row.year),
    )


# ── All users ────────────────────────────────────────────────────────

async def all_users_snapshot(
    db: AsyncSession,
    *,
    identity: IdentityProvider | None = None,
    now: datetime | None = None,
) -> UserSnapshotList:
    """
    Rollup for every known user (profile, sessions or a block in force),
    most recently seen first; users who never had a session come last.
    """
    now = now or utcnow()
    identity = identity or default_identity_provider
    stmt = select(UserSession.user_id, *_rollup_columns(now)).group_by(UserSession.user_id)
    try:
        rows = {row.user_id: row for row in (await db.execute(stmt)).all()}
        blocked = await block_service.blocked_user_ids(db, now=now)
        user_ids = set(rows) | blocked | await identity.known_user_ids(db)
        identities = await identity.resolve_many(user_ids, db)
    except SQLAlchemyError:
        logger.exception("All-users snapshot failed")
        return UserSnapshotList(generated_at=now, degraded=True)

    users = []
    for user_id in user_ids:
        who = identity_or_unknown(identities, user_id)
        row = rows.get(user_id)
        users.append(
            UserSecuritySnapshot(
                user_id=user_id,
                full_name=who.full_name,
                plan=who.plan,
                total_sessions=row.total_sessions if row else 0,
                unique_addresses=row.unique_addresses if row else 0,
                total_minutes=int(row.total_minutes) if row else 0,
                last_session_start=row.last_session_start if row else None,
                is_online=bool(row.online) if row else False,
                is_blocked=user_id in blocked,
            )
        )
    users.sort(
        key=lambda u: (u.last_session_start is not None, u.last_session_start or now),
        reverse=True,
    )
    return UserSnapshotList(users=users, generated_at=now)


def _window_start(now: datetime, hours: int | None) -> datetime:
    return now - timedelta(hours=hours or settings.RECENT_SESSIONS_WINDOW_HOURS)


async def count_recent_sessions(
    db: AsyncSession,
    *,
    hours: int | None = None,
    now: datetime | None = None,
) -> int:
    """How many sessions started inside the window."""
    since = _window_start(now or utcnow(), hours)
    stmt = select(func.count(UserSession.id)).where(UserSession.started_at >= since)
    try:
        return int((await db.execute(stmt)).scalar_one())
    except SQLAlchemyError:
        logger.exception("Recent sessions count failed")
        return 0


async def recent_sessions(
    db: AsyncSession,
    *,
    hours: int | None = None,
    identity: IdentityProvider | None = None,
    now: datetime | None = None,
    limit: int | None = None,
) -> list[RecentSessionOut]:
    """
    Sessions started inside the window, newest first.

    Unbounded unless ``limit`` is given; pair a limited call with
    `count_recent_sessions` so the truncation is visible.
    """
    now = now or utcnow()
    identity = identity or default_identity_provider
    stmt = (
        select(UserSession)
        .where(UserSession.started_at >= _window_start(now, hours))
        .order_by(UserSession.started_at.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    try:
        sessions = list((await db.execute(stmt)).scalars().all())
        identities = await identity.resolve_many({s.user_id for s in sessions}, db)
    except SQLAlchemyError:
        logger.exception("Recent sessions query failed")
        return []

    return [
        RecentSessionOut(
            **SessionOut.model_validate(s).model_dump(),
            user_name=identity_or_unknown(identities, s.user_id).full_name,
            is_online=is_online(s, now),
        )
        for s in sessions
    ]


async def active_blocks_with_names(
    db: AsyncSession,
    *,
    identity: IdentityProvider | None = None,
    now: datetime | None = None,
) -> list[SecurityBlockOut]:
    identity = identity or default_identity_provider
    blocks = await block_service.list_active_blocks(db, now=now)
    identities = await identity.resolve_many({b.user_id for b in blocks}, db)
    out = []
    for block in blocks:
        item = SecurityBlockOut.model_validate(block)
        item.user_name = identity_or_unknown(identities, block.user_id).full_name
        out.append(item)
    return out


async def security_overview(
    db: AsyncSession,
    *,
    identity: IdentityProvider | None = None,
    now: datetime | None = None,
) -> SecurityOverview:
    """One dashboard frame: policy, user rollups, blocks, recent activity."""
    now = now or utcnow()
    users = await all_users_snapshot(db, identity=identity, now=now)
    try:
        policy = await policy_service.get_active_policy(db)
        blocks = await active_blocks_with_names(db, identity=identity, now=now)
    except SQLAlchemyError:
        logger.exception("Security overview failed")
        users.degraded = True
        return SecurityOverview(users=users)

    recent = await count_recent_sessions(db, now=now)
    return SecurityOverview(
        policy=SecurityPolicyOut.model_validate(policy) if policy else None,
        users=users,
        active_blocks=blocks,
        recent_sessions=recent,
    )
