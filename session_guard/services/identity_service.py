"""
Identity collaborator — resolves user ids to display name & plan.

Used for presentation only; no security decision reads these fields.
The default provider reads the identity service's `user_profiles`
table in one batched query.  Swap it through `get_identity_provider`
when identity lives elsewhere.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.models.profile import UserProfile

UNKNOWN_USER_NAME = "Unknown user"


@dataclass(frozen=True)
class UserIdentity:
    user_id: uuid.UUID
    full_name: str
    plan: str | None = None


class IdentityProvider(Protocol):
    async def resolve_many(
        self,
        user_ids: Iterable[uuid.UUID],
        db: AsyncSession,
    ) -> dict[uuid.UUID, UserIdentity]: ...

    async def known_user_ids(self, db: AsyncSession) -> set[uuid.UUID]: ...


class ProfileIdentityProvider:
    """Reads names & plans from `user_profiles`."""

    async def resolve_many(
        self,
        user_ids: Iterable[uuid.UUID],
        db: AsyncSession,
    ) -> dict[uuid.UUID, UserIdentity]:
        ids = set(user_ids)
        if not ids:
            return {}
        stmt = select(UserProfile).where(UserProfile.user_id.in_(ids))
        result = await db.execute(stmt)
        return {
            p.user_id: UserIdentity(user_id=p.user_id, full_name=p.full_name, plan=p.plan)
            for p in result.scalars().all()
        }

    async def known_user_ids(self, db: AsyncSession) -> set[uuid.UUID]:
        """Every user with a profile, so idle accounts still show up in listings."""
        result = await db.execute(select(UserProfile.user_id))
        return set(result.scalars().all())


def identity_or_unknown(
    identities: dict[uuid.UUID, UserIdentity],
    user_id: uuid.UUID,
) -> UserIdentity:
    return identities.get(user_id) or UserIdentity(user_id=user_id, full_name=UNKNOWN_USER_NAME)


default_identity_provider = ProfileIdentityProvider()


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency — override in tests or alternate deployments."""
    return default_identity_provider
