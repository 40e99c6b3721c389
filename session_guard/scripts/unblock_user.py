"""
Lift every block currently in force for one user.

Usage:
    uv run python -m session_guard.scripts.unblock_user <user-uuid>
"""

import argparse
import asyncio
import uuid

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from session_guard.core.config import settings
from session_guard.services import block_service


async def unblock_user(user_id: uuid.UUID) -> int:
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    try:
        async with session_factory() as session:
            lifted = await block_service.unblock_user(user_id, session)
            await session.commit()
    finally:
        await engine.dispose()

    if not lifted:
        print(f"\nℹ️   User {user_id} has no block in force.\n")
        return 0
    print(f"\n✅  Lifted {len(lifted)} block(s) for user {user_id}\n")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Lift all blocks in force for a user.")
    parser.add_argument("user_id", type=uuid.UUID)
    args = parser.parse_args()
    raise SystemExit(asyncio.run(unblock_user(args.user_id)))


if __name__ == "__main__":
    main()
