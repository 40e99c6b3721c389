"""
Abuse detector — decides whether a user's address spread earns a block.

Rules:
- No active policy ⇒ detection is off (fail open, logged).
- A block already in force ⇒ nothing to do (no stacked system blocks).
- Lifetime distinct addresses STRICTLY above the policy maximum ⇒
  system-imposed block for the policy's block duration.  Equal to the
  maximum is allowed.

The policy comes from an injected `PolicySource`; by default the
process-wide TTL cache.  Evaluate → create is not atomic: two racing
evaluations may both block, which is harmless because readers treat
"any block in force" as blocked.
"""

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.core.timeutils import utcnow
from session_guard.services import block_service, policy_service, session_service
from session_guard.services.policy_service import PolicySource

logger = logging.getLogger(__name__)

ADDRESS_LIMIT_REASON = "address-count exceeded"


class DecisionKind(str, enum.Enum):
    NONE = "none"
    BLOCK = "block"


@dataclass(frozen=True)
class Decision:
    kind: DecisionKind
    reason: str | None = None
    address_count: int = 0
    block_id: uuid.UUID | None = None
    blocked_until: datetime | None = None

    @property
    def blocked(self) -> bool:
        return self.kind is DecisionKind.BLOCK


NO_ACTION = Decision(kind=DecisionKind.NONE)


async def evaluate(
    user_id: uuid.UUID,
    db: AsyncSession,
    *,
    policy_source: PolicySource | None = None,
    now: datetime | None = None,
) -> Decision:
    now = now or utcnow()
    source = policy_source or policy_service.policy_cache

    policy = await source.get(db)
    if policy is None:
        logger.warning("No active security policy — abuse detection disabled (user %s)", user_id)
        return NO_ACTION

    if await block_service.is_blocked(user_id, db, now=now):
        return NO_ACTION

    address_count = await session_service.count_distinct_addresses(user_id, db)
    if address_count <= policy.max_addresses_per_user:
        return Decision(kind=DecisionKind.NONE, address_count=address_count)

    blocked_until = now + timedelta(minutes=policy.block_duration_minutes)
    block = await block_service.create_block(
        user_id,
        ADDRESS_LIMIT_REASON,
        blocked_until,
        db,
        system_imposed=True,
        address_count=address_count,
        now=now,
    )
    return Decision(
        kind=DecisionKind.BLOCK,
        reason=ADDRESS_LIMIT_REASON,
        address_count=address_count,
        block_id=block.id,
        blocked_until=blocked_until,
    )
