"""Policy store tests.

Covers:
- Single-active invariant across replacements
- Append-only history
- Validation and failed writes keeping the previous policy
- TTL cache behaviour and invalidation on update
- Default policy seeding
"""

import pytest
from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from session_guard.core.config import settings
from session_guard.models import SecurityPolicy
from session_guard.services import policy_service
from session_guard.services.policy_service import PolicyCache


async def _active_count(db) -> int:
    stmt = select(func.count(SecurityPolicy.id)).where(SecurityPolicy.is_active == True)  # noqa: E712
    return (await db.execute(stmt)).scalar_one()


async def test_update_leaves_exactly_one_active_policy(db):
    await policy_service.update_policy(3, 60, db)
    await policy_service.update_policy(5, 15, db)
    latest = await policy_service.update_policy(2, 120, db)

    active = await policy_service.get_active_policy(db)
    history = await policy_service.list_policy_history(db)

    assert await _active_count(db) == 1
    assert active.id == latest.id
    assert (active.max_addresses_per_user, active.block_duration_minutes) == (2, 120)
    assert len(history) == 3
    assert sum(p.is_active for p in history) == 1


@pytest.mark.parametrize("max_addresses, block_minutes", [(0, 60), (3, 0), (-1, -1)])
async def test_update_rejects_values_below_one(db, max_addresses, block_minutes):
    with pytest.raises(HTTPException) as exc:
        await policy_service.update_policy(max_addresses, block_minutes, db)
    assert exc.value.status_code == 422
    assert await _active_count(db) == 0


async def test_failed_write_keeps_previous_policy(db, monkeypatch):
    previous = await policy_service.update_policy(3, 60, db)
    await db.commit()

    async def broken_flush(*args, **kwargs):
        raise OperationalError("INSERT INTO security_policies", {}, Exception("connection lost"))

    monkeypatch.setattr(db, "flush", broken_flush)
    with pytest.raises(HTTPException) as exc:
        await policy_service.update_policy(9, 9, db)
    monkeypatch.undo()
    await db.rollback()

    assert exc.value.status_code == 503
    active = await policy_service.get_active_policy(db)
    assert active.id == previous.id
    assert await _active_count(db) == 1


async def test_cache_serves_stale_value_until_invalidated(db):
    first = await policy_service.update_policy(3, 60, db)
    cache = PolicyCache(ttl_seconds=300)
    assert (await cache.get(db)).id == first.id

    second = await policy_service.update_policy(4, 60, db)

    assert (await cache.get(db)).id == first.id
    cache.invalidate()
    assert (await cache.get(db)).id == second.id


async def test_update_invalidates_process_cache(db):
    await policy_service.update_policy(3, 60, db)
    assert (await policy_service.policy_cache.get(db)).max_addresses_per_user == 3

    await policy_service.update_policy(7, 60, db)

    assert (await policy_service.policy_cache.get(db)).max_addresses_per_user == 7


async def test_cache_remembers_absence(db):
    cache = PolicyCache(ttl_seconds=300)
    assert await cache.get(db) is None


async def test_seed_only_on_empty_history(db):
    seeded = await policy_service.seed_default_policy(db)

    assert seeded.max_addresses_per_user == settings.DEFAULT_MAX_ADDRESSES_PER_USER
    assert seeded.block_duration_minutes == settings.DEFAULT_BLOCK_DURATION_MINUTES
    assert await policy_service.seed_default_policy(db) is None


async def test_seed_respects_deliberate_zero_active_state(db):
    policy = await policy_service.update_policy(3, 60, db)
    policy.is_active = False
    await db.flush()

    assert await policy_service.seed_default_policy(db) is None
    assert await policy_service.get_active_policy(db) is None
