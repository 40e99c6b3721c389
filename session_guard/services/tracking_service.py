"""
Tracking service — what happens when a user starts using the platform.

Opening a session is never refused: the session is recorded first, then
the abuse detector runs once for the user.  The resulting block status
is returned so the caller (client app) can act on it — blocking is
advisory at this layer.  Heartbeats do not re-evaluate.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.core.timeutils import utcnow
from session_guard.models.security_block import SecurityBlock
from session_guard.models.session import UserSession
from session_guard.services import abuse_detector, block_service, session_service
from session_guard.services.abuse_detector import Decision
from session_guard.services.policy_service import PolicySource


@dataclass
class SessionStart:
    session: UserSession
    decision: Decision
    active_block: SecurityBlock | None


async def begin_session(
    user_id: uuid.UUID,
    origin_address: str,
    client_descriptor: str,
    db: AsyncSession,
    *,
    policy_source: PolicySource | None = None,
    now: datetime | None = None,
) -> SessionStart:
    now = now or utcnow()
    session = await session_service.open_session(
        user_id, origin_address, client_descriptor, db, now=now,
    )
    decision = await abuse_detector.evaluate(
        user_id, db, policy_source=policy_source, now=now,
    )
    active_block = await block_service.get_active_block(user_id, db, now=now)
    return SessionStart(session=session, decision=decision, active_block=active_block)
