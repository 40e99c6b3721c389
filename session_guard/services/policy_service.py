"""
Policy service — the single active security policy and its history.

Handles:
- Reading the active policy (read-mostly; cached with a short TTL)
- Replacing the policy: deactivate current + insert new in ONE
  transaction, under a per-process writer lock and a row lock, so
  there is never more than one active row
- Seeding a default policy on first start

A failed replace rolls the whole transaction back, so the previous
policy stays in force and the operator gets an explicit error to retry.
"""

import asyncio
import logging
import time
import uuid
from typing import Protocol

from fastapi import HTTPException, status
from sqlalchemy import event, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from session_guard.core.config import settings
from session_guard.models.security_policy import SecurityPolicy
from session_guard.schemas import SecurityPolicyOut
from session_guard.services.events import record_change

logger = logging.getLogger(__name__)

_write_lock = asyncio.Lock()
_STALE_CACHE_KEY = "policy_cache_stale"


class PolicySource(Protocol):
    """Anything that can hand the detector the current policy."""

    async def get(self, db: AsyncSession) -> SecurityPolicyOut | None: ...


class PolicyCache:
    """
    TTL cache in front of `get_active_policy`.

    Caches the detached schema, not the ORM row, so a cached value is
    safe to share across request sessions.  ``None`` (no active policy)
    is cached too.
    """

    def __init__(self, ttl_seconds: float):
        self.ttl_seconds = ttl_seconds
        self._value: SecurityPolicyOut | None = None
        self._loaded_at: float | None = None

    async def get(self, db: AsyncSession) -> SecurityPolicyOut | None:
        now = time.monotonic()
        if self._loaded_at is not None and now - self._loaded_at < self.ttl_seconds:
            return self._value
        policy = await get_active_policy(db)
        self._value = SecurityPolicyOut.model_validate(policy) if policy else None
        self._loaded_at = now
        return self._value

    def invalidate(self) -> None:
        self._value = None
        self._loaded_at = None


class StaticPolicySource:
    """Fixed policy — for tests and offline evaluation."""

    def __init__(self, policy: SecurityPolicyOut | None):
        self.policy = policy

    async def get(self, db: AsyncSession) -> SecurityPolicyOut | None:
        return self.policy


policy_cache = PolicyCache(settings.POLICY_CACHE_TTL_SECONDS)


@event.listens_for(Session, "after_commit")
@event.listens_for(Session, "after_rollback")
def _invalidate_when_settled(session: Session) -> None:
    # Readers in other sessions may have re-cached the old row meanwhile.
    if session.info.pop(_STALE_CACHE_KEY, False):
        policy_cache.invalidate()


# ── Reads ────────────────────────────────────────────────────────────

async def get_active_policy(db: AsyncSession) -> SecurityPolicy | None:
    stmt = (
        select(SecurityPolicy)
        .where(SecurityPolicy.is_active == True)  # noqa: E712
        .order_by(SecurityPolicy.created_at.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_policy_history(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 50,
) -> list[SecurityPolicy]:
    stmt = (
        select(SecurityPolicy)
        .order_by(SecurityPolicy.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ── Writes ───────────────────────────────────────────────────────────

def _validate(max_addresses_per_user: int, block_duration_minutes: int) -> None:
    if max_addresses_per_user < 1 or block_duration_minutes < 1:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Max addresses and block duration must both be at least 1",
        )


async def update_policy(
    max_addresses_per_user: int,
    block_duration_minutes: int,
    db: AsyncSession,
    *,
    created_by: uuid.UUID | None = None,
) -> SecurityPolicy:
    """
    Replace the active policy.

    Both statements run in the caller's transaction; on failure the
    caller rolls back (``get_db`` does this for requests) and the
    previous active policy stays in force.
    """
    _validate(max_addresses_per_user, block_duration_minutes)

    async with _write_lock:
        try:
            current = await db.execute(
                select(SecurityPolicy.id)
                .where(SecurityPolicy.is_active == True)  # noqa: E712
                .with_for_update()
            )
            previous_ids = list(current.scalars().all())

            if previous_ids:
                await db.execute(
                    update(SecurityPolicy)
                    .where(SecurityPolicy.id.in_(previous_ids))
                    .values(is_active=False)
                    .execution_options(synchronize_session="fetch")
                )

            policy = SecurityPolicy(
                id=uuid.uuid4(),
                max_addresses_per_user=max_addresses_per_user,
                block_duration_minutes=block_duration_minutes,
                is_active=True,
                created_by=created_by,
            )
            db.add(policy)
            await db.flush()
        except SQLAlchemyError:
            logger.exception("Policy update failed; transaction must be rolled back")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Policy update failed — please retry",
            )
        finally:
            db.info[_STALE_CACHE_KEY] = True
            policy_cache.invalidate()

    for previous_id in previous_ids:
        record_change(db, "security_policies", "update", previous_id)
    record_change(db, "security_policies", "insert", policy.id)
    logger.info(
        "Security policy replaced: max_addresses=%d block_minutes=%d (by %s)",
        max_addresses_per_user,
        block_duration_minutes,
        created_by,
    )
    return policy


async def seed_default_policy(db: AsyncSession) -> SecurityPolicy | None:
    """
    Insert the configured default policy if no policy has EVER existed.

    Idempotent.  A history with zero active rows is left alone — that is
    the fail-open state an operator chose or must fix, not a fresh install.
    """
    count = (await db.execute(select(func.count(SecurityPolicy.id)))).scalar_one()
    if count:
        return None
    return await update_policy(
        settings.DEFAULT_MAX_ADDRESSES_PER_USER,
        settings.DEFAULT_BLOCK_DURATION_MINUTES,
        db,
    )
