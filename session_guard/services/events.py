"""
Change notification — in-process pub/sub for session, block & policy rows.

Services call `record_change(db, ...)` next to their writes.  Events sit
on the DB session until the transaction commits and are then fanned out
to every subscriber queue; a rollback discards them, so listeners never
hear about writes that did not happen.

Dashboards subscribe and use `collect_changes` to coalesce bursts into a
single refresh, falling back to a fixed poll interval when nothing
changes.
"""

import asyncio
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from pydantic import BaseModel, Field
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from session_guard.core.timeutils import utcnow

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_change_events"


class ChangeEvent(BaseModel):
    table: str
    action: str  # "insert" | "update"
    record_id: uuid.UUID
    user_id: uuid.UUID | None = None
    occurred_at: datetime = Field(default_factory=utcnow)


class ChangeNotifier:
    """Fan-out of committed change events to bounded subscriber queues."""

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @contextmanager
    def subscribe(self) -> Iterator[asyncio.Queue]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.add(queue)
        try:
            yield queue
        finally:
            self._subscribers.discard(queue)

    def publish(self, change: ChangeEvent) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                # Slow consumer: the newest state matters more than history.
                queue.get_nowait()
            queue.put_nowait(change)


notifier = ChangeNotifier()


def record_change(
    db: AsyncSession,
    table: str,
    action: str,
    record_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
) -> None:
    """Queue an event on the session; it is published after commit."""
    db.info.setdefault(_PENDING_KEY, []).append(
        ChangeEvent(table=table, action=action, record_id=record_id, user_id=user_id)
    )


@event.listens_for(Session, "after_commit")
def _publish_after_commit(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, [])
    for change in pending:
        notifier.publish(change)
    if pending:
        logger.debug("Published %d change event(s)", len(pending))


@event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)


async def collect_changes(
    queue: asyncio.Queue,
    *,
    debounce: float,
    max_wait: float,
) -> list[ChangeEvent]:
    """
    Wait for the next burst of changes.

    Returns an empty list when ``max_wait`` passes without any event
    (the caller refreshes anyway — polling fallback).  Once an event
    arrives, keeps draining until the queue stays quiet for ``debounce``
    seconds, bounded by ``max_wait`` so a constant stream still yields.
    """
    loop = asyncio.get_running_loop()
    try:
        first = await asyncio.wait_for(queue.get(), timeout=max_wait)
    except asyncio.TimeoutError:
        return []

    batch = [first]
    deadline = loop.time() + max_wait
    while True:
        remaining = min(debounce, deadline - loop.time())
        if remaining <= 0:
            return batch
        try:
            batch.append(await asyncio.wait_for(queue.get(), timeout=remaining))
        except asyncio.TimeoutError:
            return batch
