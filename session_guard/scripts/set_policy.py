"""
Replace the active security policy from the command line.

Usage:
    uv run python -m session_guard.scripts.set_policy --max-addresses 3 --block-minutes 60

Useful when the API is down or before the first operator exists.  The
previous policy is kept as inactive history.
"""

import argparse
import asyncio

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from session_guard.core.config import settings
from session_guard.services import policy_service


async def set_policy(max_addresses: int, block_minutes: int) -> int:
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    try:
        async with session_factory() as session:
            try:
                policy = await policy_service.update_policy(max_addresses, block_minutes, session)
                await session.commit()
            except HTTPException as exc:
                await session.rollback()
                print(f"\n❌  {exc.detail}")
                return 1

        print("\n✅  Security policy updated!")
        print(f"    ID:             {policy.id}")
        print(f"    Max addresses:  {policy.max_addresses_per_user}")
        print(f"    Block duration: {policy.block_duration_minutes} min\n")
        return 0
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Replace the active security policy.")
    parser.add_argument("--max-addresses", type=int, required=True)
    parser.add_argument("--block-minutes", type=int, required=True)
    args = parser.parse_args()
    raise SystemExit(asyncio.run(set_policy(args.max_addresses, args.block_minutes)))


if __name__ == "__main__":
    main()
