"""
Block service — create, query, lift & (lazily) expire security blocks.

Every "is this user blocked?" question in the system is answered by
`is_blocked`, read fresh from the store.  A row counts only while
``is_active`` is set AND ``blocked_until`` lies in the future; rows whose
time has run out are never rewritten, just ignored.
"""

import logging
import uuid
from datetime import datetime, timedelta

from fastapi import HTTPException, status
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.core.timeutils import utcnow
from session_guard.models.security_block import SecurityBlock
from session_guard.services import session_service
from session_guard.services.events import record_change

logger = logging.getLogger(__name__)


def effective_block_clause(now: datetime):
    """SQL condition for a block that is in force at ``now``."""
    return and_(
        SecurityBlock.is_active == True,  # noqa: E712
        SecurityBlock.blocked_until > now,
    )


def is_in_force(block: SecurityBlock, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return block.is_active and block.blocked_until > now


# ── Writes ───────────────────────────────────────────────────────────

async def create_block(
    user_id: uuid.UUID,
    reason: str,
    blocked_until: datetime,
    db: AsyncSession,
    *,
    system_imposed: bool,
    address_count: int = 0,
    now: datetime | None = None,
) -> SecurityBlock:
    block = SecurityBlock(
        id=uuid.uuid4(),
        user_id=user_id,
        reason=reason,
        blocked_until=blocked_until,
        address_count=address_count,
        system_imposed=system_imposed,
        is_active=True,
        created_at=now or utcnow(),
    )
    db.add(block)
    await db.flush()
    record_change(db, "security_blocks", "insert", block.id, user_id)
    logger.warning(
        "User %s blocked until %s (%s, %d addresses, %s)",
        user_id,
        blocked_until.isoformat(),
        reason,
        address_count,
        "system" if system_imposed else "manual",
    )
    return block


async def create_manual_block(
    user_id: uuid.UUID,
    reason: str,
    duration_minutes: int,
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> SecurityBlock:
    """Operator-created block; records the address count seen right now."""
    if duration_minutes < 1:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Block duration must be at least 1 minute",
        )
    now = now or utcnow()
    address_count = await session_service.count_distinct_addresses(user_id, db)
    return await create_block(
        user_id,
        reason,
        now + timedelta(minutes=duration_minutes),
        db,
        system_imposed=False,
        address_count=address_count,
        now=now,
    )


async def unblock(
    block_id: uuid.UUID,
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> SecurityBlock:
    """Lift a block immediately.  Idempotent; allowed whatever ``blocked_until`` says."""
    block = await db.get(SecurityBlock, block_id)
    if block is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Block not found")
    if not block.is_active:
        return block

    block.is_active = False
    block.lifted_at = now or utcnow()
    await db.flush()
    record_change(db, "security_blocks", "update", block.id, block.user_id)
    logger.info("Block %s on user %s lifted", block.id, block.user_id)
    return block


async def unblock_user(
    user_id: uuid.UUID,
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> list[SecurityBlock]:
    """Lift every block currently in force for a user."""
    now = now or utcnow()
    lifted = []
    for block in await list_user_blocks(user_id, db, only_in_force=True, now=now):
        lifted.append(await unblock(block.id, db, now=now))
    return lifted


# ── Queries ──────────────────────────────────────────────────────────

async def is_blocked(
    user_id: uuid.UUID,
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> bool:
    now = now or utcnow()
    stmt = (
        select(SecurityBlock.id)
        .where(SecurityBlock.user_id == user_id, effective_block_clause(now))
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


async def get_active_block(
    user_id: uuid.UUID,
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> SecurityBlock | None:
    """The block in force that runs longest (duplicates may overlap)."""
    now = now or utcnow()
    stmt = (
        select(SecurityBlock)
        .where(SecurityBlock.user_id == user_id, effective_block_clause(now))
        .order_by(SecurityBlock.blocked_until.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_active_blocks(
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> list[SecurityBlock]:
    now = now or utcnow()
    stmt = (
        select(SecurityBlock)
        .where(effective_block_clause(now))
        .order_by(SecurityBlock.created_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_user_blocks(
    user_id: uuid.UUID,
    db: AsyncSession,
    *,
    only_in_force: bool = False,
    now: datetime | None = None,
) -> list[SecurityBlock]:
    stmt = select(SecurityBlock).where(SecurityBlock.user_id == user_id)
    if only_in_force:
        stmt = stmt.where(effective_block_clause(now or utcnow()))
    stmt = stmt.order_by(SecurityBlock.created_at.desc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def blocked_user_ids(
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> set[uuid.UUID]:
    """Every user with a block in force — one query for batch stats."""
    now = now or utcnow()
    stmt = select(SecurityBlock.user_id).where(effective_block_clause(now)).distinct()
    result = await db.execute(stmt)
    return set(result.scalars().all())
