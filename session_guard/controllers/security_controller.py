"""
Security controller — operator dashboard & enforcement commands.

Every route uses `Depends(require_operator)` for enforcement.
Controllers are THIN — they delegate to services and return schemas.

The `/stream` websocket pushes a full `SecurityOverview` frame whenever
sessions, blocks or the policy change (bursts debounced), and at a fixed
interval otherwise, so dashboards never need to poll.
"""

import logging
import uuid

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    Response,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from session_guard.core.config import settings
from session_guard.core.database import get_db, get_session_factory
from session_guard.core.security import decode_access_token
from session_guard.core.timeutils import Period, utcnow
from session_guard.rbac.dependencies import collect_roles, require_operator
from session_guard.schemas import (
    CreateBlockRequest,
    DecisionOut,
    PeriodTimeOut,
    RecentSessionOut,
    SecurityBlockOut,
    SecurityOverview,
    SecurityPolicyOut,
    TimeStats,
    UpdatePolicyRequest,
    UserSecuritySnapshot,
    UserSnapshotList,
)
from session_guard.services import (
    abuse_detector,
    block_service,
    policy_service,
    stats_service,
)
from session_guard.services.events import collect_changes, notifier
from session_guard.services.identity_service import IdentityProvider, get_identity_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/security", tags=["Security"])


# ── Policy ───────────────────────────────────────────────────────────
@router.get("/policy", response_model=SecurityPolicyOut | None)
async def get_policy(
    operator_id: uuid.UUID = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    policy = await policy_service.get_active_policy(db)
    return SecurityPolicyOut.model_validate(policy) if policy else None


@router.put("/policy", response_model=SecurityPolicyOut)
async def update_policy(
    body: UpdatePolicyRequest,
    operator_id: uuid.UUID = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Replace the active policy (the previous one is kept as history)."""
    policy = await policy_service.update_policy(
        body.max_addresses_per_user,
        body.block_duration_minutes,
        db,
        created_by=operator_id,
    )
    return SecurityPolicyOut.model_validate(policy)


@router.get("/policy/history", response_model=list[SecurityPolicyOut])
async def policy_history(
    operator_id: uuid.UUID = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    policies = await policy_service.list_policy_history(db, skip, limit)
    return [SecurityPolicyOut.model_validate(p) for p in policies]


# ── Sessions & users ─────────────────────────────────────────────────
@router.get("/sessions/recent", response_model=list[RecentSessionOut])
async def recent_sessions(
    response: Response,
    operator_id: uuid.UUID = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    hours: int = Query(settings.RECENT_SESSIONS_WINDOW_HOURS, ge=1, le=24 * 31),
    limit: int | None = Query(None, ge=1, le=5000),
):
    """Sessions in the window; ``X-Total-Count`` tells a limited page from the whole."""
    now = utcnow()
    total = await stats_service.count_recent_sessions(db, hours=hours, now=now)
    response.headers["X-Total-Count"] = str(total)
    return await stats_service.recent_sessions(
        db, hours=hours, identity=identity, now=now, limit=limit,
    )


@router.get("/users", response_model=UserSnapshotList)
async def all_users(
    operator_id: uuid.UUID = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    return await stats_service.all_users_snapshot(db, identity=identity)


@router.get("/users/{user_id}", response_model=UserSecuritySnapshot)
async def user_snapshot(
    user_id: uuid.UUID,
    operator_id: uuid.UUID = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    return await stats_service.user_snapshot(user_id, db, identity=identity)


@router.get("/users/{user_id}/time", response_model=PeriodTimeOut)
async def user_period_time(
    user_id: uuid.UUID,
    period: Period = Query(Period.TODAY),
    operator_id: uuid.UUID = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    minutes = await stats_service.period_time(user_id, period, db)
    return PeriodTimeOut(user_id=user_id, period=period, minutes=minutes)


@router.get("/users/{user_id}/time-stats", response_model=TimeStats)
async def user_time_stats(
    user_id: uuid.UUID,
    operator_id: uuid.UUID = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return await stats_service.time_stats(user_id, db)


@router.get("/users/{user_id}/blocks", response_model=list[SecurityBlockOut])
async def user_blocks(
    user_id: uuid.UUID,
    operator_id: uuid.UUID = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    blocks = await block_service.list_user_blocks(user_id, db)
    return [SecurityBlockOut.model_validate(b) for b in blocks]


@router.post("/users/{user_id}/evaluate", response_model=DecisionOut)
async def evaluate_user(
    user_id: uuid.UUID,
    operator_id: uuid.UUID = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Run abuse detection for a user now."""
    decision = await abuse_detector.evaluate(user_id, db)
    return DecisionOut(
        kind=decision.kind.value,
        reason=decision.reason,
        address_count=decision.address_count,
        block_id=decision.block_id,
        blocked_until=decision.blocked_until,
    )


# ── Blocks ───────────────────────────────────────────────────────────
@router.get("/blocks", response_model=list[SecurityBlockOut])
async def active_blocks(
    operator_id: uuid.UUID = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """Blocks in force right now (expired rows are left out)."""
    return await stats_service.active_blocks_with_names(db, identity=identity)


@router.post("/blocks", response_model=SecurityBlockOut, status_code=201)
async def create_block(
    body: CreateBlockRequest,
    operator_id: uuid.UUID = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    block = await block_service.create_manual_block(
        body.user_id, body.reason, body.duration_minutes, db,
    )
    return SecurityBlockOut.model_validate(block)


@router.post("/blocks/{block_id}/unblock", response_model=SecurityBlockOut)
async def unblock(
    block_id: uuid.UUID,
    operator_id: uuid.UUID = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    block = await block_service.unblock(block_id, db)
    return SecurityBlockOut.model_validate(block)


# ── Dashboard ────────────────────────────────────────────────────────
@router.get("/overview", response_model=SecurityOverview)
async def overview(
    operator_id: uuid.UUID = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    return await stats_service.security_overview(db, identity=identity)


@router.websocket("/stream")
async def stream(
    websocket: WebSocket,
    token: str = Query(...),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    try:
        payload = decode_access_token(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    if settings.OPERATOR_ROLE not in collect_roles(payload):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    with notifier.subscribe() as queue:
        try:
            while True:
                async with session_factory() as db:
                    frame = await stats_service.security_overview(db, identity=identity)
                await websocket.send_json(frame.model_dump(mode="json"))
                changes = await collect_changes(
                    queue,
                    debounce=settings.DASHBOARD_DEBOUNCE_SECONDS,
                    max_wait=settings.DASHBOARD_REFRESH_SECONDS,
                )
                logger.debug("Dashboard refresh after %d change(s)", len(changes))
        except WebSocketDisconnect:
            logger.info("Dashboard stream for %s closed", payload["sub"])
