"""Session tracker tests.

Covers:
- Opening sessions (always allowed, address normalization)
- Heartbeat duration refresh and monotonicity
- Close freezing the duration and idempotence
- Distinct address counting across concurrent devices
"""

import uuid
from datetime import timedelta

import pytest
from fastapi import HTTPException

from session_guard.services import session_service


async def test_open_session_records_active_row(db, user_id, now):
    session = await session_service.open_session(user_id, "203.0.113.7", "Firefox", db, now=now)

    assert session.is_active is True
    assert session.user_id == user_id
    assert session.origin_address == "203.0.113.7"
    assert session.started_at == now
    assert session.ended_at is None
    assert session.duration_minutes == 0


async def test_open_session_normalizes_addresses(db, user_id, now):
    v6 = await session_service.open_session(user_id, " 2001:DB8:0:0::1 ", "", db, now=now)
    mapped = await session_service.open_session(user_id, "::ffff:198.51.100.4", "", db, now=now)

    assert v6.origin_address == "2001:db8::1"
    assert mapped.origin_address == "198.51.100.4"
    assert v6.client_descriptor == "Unknown"


async def test_open_session_rejects_garbage_address(db, user_id, now):
    with pytest.raises(HTTPException) as exc:
        await session_service.open_session(user_id, "not-an-ip", "", db, now=now)
    assert exc.value.status_code == 422


async def test_multiple_active_sessions_per_user_are_legal(db, user_id, now):
    await session_service.open_session(user_id, "10.0.0.1", "phone", db, now=now)
    await session_service.open_session(user_id, "10.0.0.2", "laptop", db, now=now + timedelta(minutes=1))

    active = await session_service.get_active_sessions(user_id, db)
    current = await session_service.get_current_session(user_id, db)

    assert len(active) == 2
    assert current.client_descriptor == "laptop"


async def test_heartbeat_refreshes_duration_from_wall_time(db, user_id, now):
    session = await session_service.open_session(user_id, "10.0.0.1", "", db, now=now)

    await session_service.heartbeat(session.id, db, now=now + timedelta(minutes=7, seconds=59))

    assert session.duration_minutes == 7
    assert session.last_seen_at == now + timedelta(minutes=7, seconds=59)


async def test_heartbeat_never_decreases_duration(db, user_id, now):
    session = await session_service.open_session(user_id, "10.0.0.1", "", db, now=now)

    seen = []
    for minutes in (2, 5, 3, 9, 9):
        await session_service.heartbeat(session.id, db, now=now + timedelta(minutes=minutes))
        seen.append(session.duration_minutes)

    assert seen == [2, 5, 5, 9, 9]


async def test_open_heartbeat_close_round_trip(db, user_id, now):
    session = await session_service.open_session(user_id, "10.0.0.1", "", db, now=now)
    for minutes in (2, 4, 6):
        await session_service.heartbeat(session.id, db, now=now + timedelta(minutes=minutes))
    last_reported = session.duration_minutes

    closed = await session_service.close_session(session.id, db, now=now + timedelta(minutes=6, seconds=30))

    assert closed.is_active is False
    assert closed.ended_at == now + timedelta(minutes=6, seconds=30)
    assert closed.duration_minutes >= last_reported


async def test_close_keeps_recorded_duration_under_clock_skew(db, user_id, now):
    session = await session_service.open_session(user_id, "10.0.0.1", "", db, now=now)
    await session_service.heartbeat(session.id, db, now=now + timedelta(minutes=30))

    closed = await session_service.close_session(session.id, db, now=now + timedelta(minutes=12))

    assert closed.duration_minutes == 30


async def test_close_is_idempotent_and_freezes_duration(db, user_id, now):
    session = await session_service.open_session(user_id, "10.0.0.1", "", db, now=now)
    await session_service.close_session(session.id, db, now=now + timedelta(minutes=15))

    again = await session_service.close_session(session.id, db, now=now + timedelta(hours=2))
    after_heartbeat = await session_service.heartbeat(session.id, db, now=now + timedelta(hours=3))

    assert again.ended_at == now + timedelta(minutes=15)
    assert after_heartbeat.duration_minutes == 15
    assert after_heartbeat.is_active is False


async def test_unknown_session_is_not_found(db):
    with pytest.raises(HTTPException) as exc:
        await session_service.heartbeat(uuid.uuid4(), db)
    assert exc.value.status_code == 404


async def test_distinct_addresses_are_counted_over_lifetime(db, user_id, now, make_session):
    for address in ("10.0.0.1", "10.0.0.1", "10.0.0.2"):
        await make_session(user_id, address, started_at=now - timedelta(days=400))
    await make_session(user_id, "10.0.0.3", active=True)
    await make_session(uuid.uuid4(), "10.0.0.9")

    assert await session_service.count_distinct_addresses(user_id, db) == 3


async def test_staleness_follows_last_heartbeat(db, user_id, now):
    session = await session_service.open_session(user_id, "10.0.0.1", "", db, now=now)
    await session_service.heartbeat(session.id, db, now=now + timedelta(minutes=5))

    assert session_service.is_online(session, now + timedelta(minutes=14))
    assert session_service.is_stale(session, now + timedelta(minutes=16))
    assert not session_service.is_online(session, now + timedelta(minutes=16))
