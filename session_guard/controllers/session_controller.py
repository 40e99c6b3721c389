"""
Session controller — the signed-in user's own session lifecycle.

Every route requires a valid bearer token; a user can only touch their
own sessions (someone else's session id answers 404, not 403, so ids
cannot be enumerated).  The origin address always comes from the
connection, never from the request body.
"""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.core.config import settings
from session_guard.core.database import get_db
from session_guard.core.security import get_current_user_id
from session_guard.core.timeutils import utcnow
from session_guard.models.security_block import SecurityBlock
from session_guard.models.session import UserSession
from session_guard.schemas import (
    BlockStatusOut,
    OpenSessionRequest,
    OpenSessionResponse,
    SessionOut,
    TimeStats,
)
from session_guard.services import block_service, session_service, stats_service, tracking_service

router = APIRouter(prefix="/api/sessions", tags=["Sessions"])


def client_origin(request: Request) -> str:
    """
    Address the session is counted against.

    Behind trusted proxies this is the hop the outermost proxy appended,
    ``TRUSTED_PROXY_HOPS`` from the right of X-Forwarded-For.  Hops to
    the left of it are client-supplied and ignored.
    """
    peer = request.client.host if request.client else "0.0.0.0"
    if not settings.TRUST_FORWARDED_FOR or settings.TRUSTED_PROXY_HOPS < 1:
        return peer
    hops = [h.strip() for h in request.headers.get("x-forwarded-for", "").split(",") if h.strip()]
    if len(hops) < settings.TRUSTED_PROXY_HOPS:
        return peer
    return hops[-settings.TRUSTED_PROXY_HOPS]


def block_status(block: SecurityBlock | None, now: datetime | None = None) -> BlockStatusOut:
    now = now or utcnow()
    if block is None or not block_service.is_in_force(block, now):
        return BlockStatusOut(is_blocked=False)
    return BlockStatusOut(
        is_blocked=True,
        blocked_until=block.blocked_until,
        reason=block.reason,
        remaining_seconds=max(int((block.blocked_until - now).total_seconds()), 0),
    )


async def _owned_session(
    session_id: uuid.UUID,
    user_id: uuid.UUID,
    db: AsyncSession,
) -> UserSession:
    session = await session_service.get_session(session_id, db)
    if session.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return session


@router.post("", response_model=OpenSessionResponse, status_code=201)
async def open_session(
    request: Request,
    body: OpenSessionRequest | None = None,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Record a new session for the caller and report their block status."""
    descriptor = (body.client_descriptor if body else None) or request.headers.get("user-agent", "")
    now = utcnow()
    started = await tracking_service.begin_session(
        user_id, client_origin(request), descriptor, db, now=now,
    )
    return OpenSessionResponse(
        session=SessionOut.model_validate(started.session),
        block=block_status(started.active_block, now),
    )


@router.post("/{session_id}/heartbeat", response_model=SessionOut)
async def heartbeat(
    session_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await _owned_session(session_id, user_id, db)
    session = await session_service.heartbeat(session_id, db)
    return SessionOut.model_validate(session)


@router.delete("/{session_id}", response_model=SessionOut)
async def close_session(
    session_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """End a session (logout).  Closing twice is harmless."""
    await _owned_session(session_id, user_id, db)
    session = await session_service.close_session(session_id, db)
    return SessionOut.model_validate(session)


@router.get("/current", response_model=SessionOut | None)
async def current_session(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    session = await session_service.get_current_session(user_id, db)
    return SessionOut.model_validate(session) if session else None


@router.get("/me/time-stats", response_model=TimeStats)
async def my_time_stats(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await stats_service.time_stats(user_id, db)


@router.get("/me/block", response_model=BlockStatusOut)
async def my_block(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    now = utcnow()
    block = await block_service.get_active_block(user_id, db, now=now)
    return block_status(block, now)
