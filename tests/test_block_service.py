"""Block registry tests.

Covers:
- Lazy expiry (no sweeper, reads apply the time check)
- Manual unblock taking effect immediately and idempotently
- Active block listing excluding logically-expired rows
- Overlapping duplicate blocks being harmless
"""

import uuid
from datetime import timedelta

import pytest
from fastapi import HTTPException

from session_guard.models import SecurityBlock
from session_guard.services import block_service


async def _block(db, user_id, now, minutes=60, system=True):
    return await block_service.create_block(
        user_id,
        "address-count exceeded",
        now + timedelta(minutes=minutes),
        db,
        system_imposed=system,
        address_count=4,
        now=now,
    )


async def test_block_expires_lazily(db, user_id, now):
    block = await _block(db, user_id, now, minutes=60)

    assert await block_service.is_blocked(user_id, db, now=now + timedelta(minutes=59))
    assert not await block_service.is_blocked(user_id, db, now=now + timedelta(minutes=61))
    # Nothing rewrote the row.
    await db.refresh(block)
    assert block.is_active is True


async def test_is_blocked_requires_both_flag_and_future_deadline(db, user_id, now):
    db.add(
        SecurityBlock(
            id=uuid.uuid4(),
            user_id=user_id,
            reason="manual",
            blocked_until=now + timedelta(hours=1),
            address_count=0,
            system_imposed=False,
            is_active=False,
        )
    )
    db.add(
        SecurityBlock(
            id=uuid.uuid4(),
            user_id=user_id,
            reason="manual",
            blocked_until=now - timedelta(seconds=1),
            address_count=0,
            system_imposed=False,
            is_active=True,
        )
    )
    await db.flush()

    assert not await block_service.is_blocked(user_id, db, now=now)


async def test_block_ending_exactly_now_is_not_in_force(db, user_id, now):
    await _block(db, user_id, now - timedelta(minutes=60), minutes=60)

    assert not await block_service.is_blocked(user_id, db, now=now)


async def test_unblock_takes_effect_immediately(db, user_id, now):
    block = await _block(db, user_id, now)

    lifted = await block_service.unblock(block.id, db, now=now + timedelta(minutes=1))

    assert lifted.is_active is False
    assert lifted.lifted_at == now + timedelta(minutes=1)
    assert not await block_service.is_blocked(user_id, db, now=now + timedelta(minutes=1))


async def test_unblock_is_idempotent_and_allowed_after_expiry(db, user_id, now):
    block = await _block(db, user_id, now, minutes=5)

    first = await block_service.unblock(block.id, db, now=now + timedelta(hours=1))
    second = await block_service.unblock(block.id, db, now=now + timedelta(hours=2))

    assert first.is_active is False
    assert second.lifted_at == now + timedelta(hours=1)


async def test_unblock_unknown_block(db):
    with pytest.raises(HTTPException) as exc:
        await block_service.unblock(uuid.uuid4(), db)
    assert exc.value.status_code == 404


async def test_list_active_blocks_skips_expired_and_lifted(db, now):
    live = await _block(db, uuid.uuid4(), now, minutes=60)
    await _block(db, uuid.uuid4(), now - timedelta(hours=3), minutes=60)
    lifted = await _block(db, uuid.uuid4(), now, minutes=60)
    await block_service.unblock(lifted.id, db, now=now)

    active = await block_service.list_active_blocks(db, now=now)

    assert [b.id for b in active] == [live.id]


async def test_duplicate_blocks_are_harmless(db, user_id, now):
    short = await _block(db, user_id, now, minutes=10)
    long = await _block(db, user_id, now, minutes=90)

    assert (await block_service.get_active_block(user_id, db, now=now)).id == long.id
    await block_service.unblock(long.id, db, now=now)
    assert await block_service.is_blocked(user_id, db, now=now)
    assert (await block_service.get_active_block(user_id, db, now=now)).id == short.id


async def test_manual_block_observes_address_count(db, user_id, now, make_session):
    for address in ("10.0.0.1", "10.0.0.2"):
        await make_session(user_id, address)

    block = await block_service.create_manual_block(user_id, "chargeback", 30, db, now=now)

    assert block.system_imposed is False
    assert block.address_count == 2
    assert block.blocked_until == now + timedelta(minutes=30)


async def test_unblock_user_lifts_every_block_in_force(db, user_id, now):
    await _block(db, user_id, now, minutes=10)
    await _block(db, user_id, now, minutes=20)
    await _block(db, user_id, now - timedelta(days=1), minutes=10)

    lifted = await block_service.unblock_user(user_id, db, now=now)

    assert len(lifted) == 2
    assert not await block_service.is_blocked(user_id, db, now=now)
    assert len(await block_service.list_user_blocks(user_id, db)) == 3


async def test_blocked_user_ids(db, now):
    blocked, expired = uuid.uuid4(), uuid.uuid4()
    await _block(db, blocked, now)
    await _block(db, blocked, now)
    await _block(db, expired, now - timedelta(days=1))

    assert await block_service.blocked_user_ids(db, now=now) == {blocked}
