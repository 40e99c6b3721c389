"""
Session service — lifecycle & query helpers for user sessions.

Handles:
- Opening a session per login (always succeeds; blocks are advisory)
- Heartbeats that refresh the running duration
- Closing a session (logout / expiry) with the duration frozen
- Distinct-address counting used by abuse detection

Durations are derived from wall time since ``started_at``, never
accumulated from deltas, so repeated or concurrent heartbeats cannot
inflate them and a close can never shrink them.
"""

import ipaddress
import logging
import uuid
from datetime import datetime, timedelta

from fastapi import HTTPException, status
from sqlalchemy import and_, case, distinct, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.core.config import settings
from session_guard.core.timeutils import elapsed_minutes, utcnow
from session_guard.models.session import UserSession
from session_guard.services.events import record_change

logger = logging.getLogger(__name__)


def normalize_address(raw: str) -> str:
    """Canonical text form of an IP so one address is never counted twice."""
    try:
        address = ipaddress.ip_address(raw.strip())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Origin address is not a valid IP address",
        )
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped
    return address.compressed


def stale_cutoff(now: datetime) -> datetime:
    return now - timedelta(minutes=settings.SESSION_STALE_AFTER_MINUTES)


def is_stale(session: UserSession, now: datetime | None = None) -> bool:
    """True when an open session has missed heartbeats past the threshold."""
    now = now or utcnow()
    return session.last_seen_at < stale_cutoff(now)


def is_online(session: UserSession, now: datetime | None = None) -> bool:
    return session.is_active and not is_stale(session, now)


def online_clause(now: datetime):
    """SQL form of `is_online`, for grouped rollups."""
    return and_(
        UserSession.is_active == True,  # noqa: E712
        UserSession.last_seen_at >= stale_cutoff(now),
    )


# ── Lifecycle ────────────────────────────────────────────────────────

async def open_session(
    user_id: uuid.UUID,
    origin_address: str,
    client_descriptor: str,
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> UserSession:
    now = now or utcnow()
    session = UserSession(
        id=uuid.uuid4(),
        user_id=user_id,
        origin_address=normalize_address(origin_address),
        client_descriptor=(client_descriptor or "Unknown")[:512],
        started_at=now,
        last_seen_at=now,
        duration_minutes=0,
        is_active=True,
    )
    db.add(session)
    await db.flush()
    record_change(db, "user_sessions", "insert", session.id, user_id)
    logger.info("Session %s opened for user %s from %s", session.id, user_id, session.origin_address)
    return session


async def heartbeat(
    session_id: uuid.UUID,
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> UserSession:
    """
    Refresh duration & last-seen time of an open session.

    No-op on a closed session.  The UPDATE only ever raises
    ``duration_minutes``, so racing heartbeats stay monotonic.
    """
    now = now or utcnow()
    session = await get_session(session_id, db)
    if not session.is_active:
        return session

    elapsed = elapsed_minutes(session.started_at, now)
    stmt = (
        update(UserSession)
        .where(
            UserSession.id == session_id,
            UserSession.is_active == True,  # noqa: E712
        )
        .values(
            duration_minutes=case(
                (UserSession.duration_minutes < elapsed, elapsed),
                else_=UserSession.duration_minutes,
            ),
            last_seen_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt)
    await db.flush()
    await db.refresh(session)
    record_change(db, "user_sessions", "update", session.id, session.user_id)
    return session


async def close_session(
    session_id: uuid.UUID,
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> UserSession:
    """Mark a session inactive with its duration frozen (logout / expiry)."""
    now = now or utcnow()
    session = await get_session(session_id, db)
    if not session.is_active:
        return session

    session.is_active = False
    session.ended_at = now
    session.last_seen_at = now
    session.duration_minutes = max(
        session.duration_minutes,
        elapsed_minutes(session.started_at, now),
    )
    await db.flush()
    record_change(db, "user_sessions", "update", session.id, session.user_id)
    logger.info("Session %s closed after %d min", session.id, session.duration_minutes)
    return session


# ── Queries ──────────────────────────────────────────────────────────

async def get_session(
    session_id: uuid.UUID,
    db: AsyncSession,
) -> UserSession:
    session = await db.get(UserSession, session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return session


async def get_active_sessions(
    user_id: uuid.UUID,
    db: AsyncSession,
) -> list[UserSession]:
    """Return all active sessions for a user, newest first."""
    stmt = (
        select(UserSession)
        .where(
            UserSession.user_id == user_id,
            UserSession.is_active == True,  # noqa: E712
        )
        .order_by(UserSession.started_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_current_session(
    user_id: uuid.UUID,
    db: AsyncSession,
) -> UserSession | None:
    """The user's most recently started active session, if any."""
    stmt = (
        select(UserSession)
        .where(
            UserSession.user_id == user_id,
            UserSession.is_active == True,  # noqa: E712
        )
        .order_by(UserSession.started_at.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def count_distinct_addresses(
    user_id: uuid.UUID,
    db: AsyncSession,
) -> int:
    """Lifetime number of distinct origin addresses for a user."""
    stmt = select(func.count(distinct(UserSession.origin_address))).where(
        UserSession.user_id == user_id,
    )
    result = await db.execute(stmt)
    return int(result.scalar_one())
