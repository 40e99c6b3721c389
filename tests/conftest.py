"""Core test fixtures.

Provides an isolated in-memory SQLite database per test (schema built
from the model metadata), an AsyncSession bound to it, row factories,
and an HTTP client wired to the FastAPI app with `get_db` overridden.

CRITICAL: environment is set BEFORE any session_guard import so the
module-level engine never points at a real Postgres.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SEED_DEFAULT_POLICY"] = "false"
os.environ["REFERENCE_TIMEZONE"] = "America/Sao_Paulo"
os.environ["SESSION_STALE_AFTER_MINUTES"] = "10"
os.environ["TRUST_FORWARDED_FOR"] = "true"
os.environ["TRUSTED_PROXY_HOPS"] = "1"

import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from session_guard.core.database import get_db, get_session_factory
from session_guard.core.security import create_access_token
from session_guard.models import Base, SecurityPolicy, UserProfile, UserSession
from session_guard.services import policy_service

# Wednesday 2026-03-11 12:00 in São Paulo (UTC-3, no DST).
FIXED_NOW = datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc)


# ============================================================================
# DATABASE
# ============================================================================


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def file_session_factory(tmp_path):
    """
    Separate connections onto one on-disk database, for tests that race
    sessions against each other.  WAL lets readers run beside a writer;
    competing writers wait on the busy timeout.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'session_guard.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _use_wal(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture(autouse=True)
def fresh_policy_cache():
    """The process-wide policy cache must not leak between databases."""
    policy_service.policy_cache.invalidate()
    yield
    policy_service.policy_cache.invalidate()


@pytest.fixture
def now():
    return FIXED_NOW


# ============================================================================
# ROW FACTORIES
# ============================================================================


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def make_policy(db):
    async def _make(max_addresses: int = 3, block_minutes: int = 60) -> SecurityPolicy:
        return await policy_service.update_policy(max_addresses, block_minutes, db)

    return _make


@pytest.fixture
def make_session(db):
    """Insert a session row directly (bypasses the tracker)."""

    async def _make(
        user_id: uuid.UUID,
        address: str = "10.0.0.1",
        started_at: datetime = FIXED_NOW,
        duration: int = 0,
        active: bool = False,
        last_seen_at: datetime | None = None,
    ) -> UserSession:
        session = UserSession(
            id=uuid.uuid4(),
            user_id=user_id,
            origin_address=address,
            client_descriptor="pytest",
            started_at=started_at,
            ended_at=None if active else started_at + timedelta(minutes=duration),
            last_seen_at=last_seen_at or started_at + timedelta(minutes=duration),
            duration_minutes=duration,
            is_active=active,
        )
        db.add(session)
        await db.flush()
        return session

    return _make


@pytest.fixture
def make_profile(db):
    async def _make(user_id: uuid.UUID, full_name: str = "Test User", plan: str | None = "pro"):
        profile = UserProfile(user_id=user_id, full_name=full_name, plan=plan)
        db.add(profile)
        await db.flush()
        return profile

    return _make


# ============================================================================
# HTTP
# ============================================================================


@pytest.fixture
def bearer():
    """Authorization header for a user with the given roles."""

    def _headers(user_id: uuid.UUID, *roles: str) -> dict[str, str]:
        token = create_access_token({"sub": str(user_id), "role_names": list(roles)})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def app(session_factory):
    from session_guard.main import app

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
