# src/taskflow/tasks/task_reconciler.py

from __future__ import annotations

"""
Realtime reconciler.

Folds row-change events from the feed into the LocalTaskStore:
- created -> insert unless the id is already there
- updated -> merge the full new record (last write wins); insert if absent
- deleted -> remove

Feed callbacks only enqueue. A single consumer task drains the queue, so
events are applied one at a time and in arrival order. The controller writes
to the same store directly; both producers share the one event loop.
"""

import asyncio
import contextlib
import logging

from ..core.ports import ChangeFeed, FeedSubscription
from .task_models import ChangeEvent, ChangeKind
from .task_store import LocalTaskStore

logger = logging.getLogger(__name__)


class RealtimeReconciler:
    def __init__(self, store: LocalTaskStore, feed: ChangeFeed) -> None:
        self._store = store
        self._feed = feed
        self._queue: asyncio.Queue[ChangeEvent] | None = None
        self._subscription: FeedSubscription | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._user_id: str | None = None

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    @property
    def user_id(self) -> str | None:
        return self._user_id

    # ---- event folding ----

    def apply(self, event: ChangeEvent) -> None:
        """Apply one change event to the store (synchronous, idempotent)."""
        kind = event.kind

        if kind == ChangeKind.DELETED:
            if self._store.remove(event.task_id) is not None:
                logger.debug("realtime delete applied id=%s", event.task_id)
            return

        record = event.record
        if record is None:
            logger.warning("realtime %s event without a record id=%s", kind.value, event.task_id)
            return

        if record.user_id != self._store.owner_id:
            logger.debug("realtime event for foreign owner ignored id=%s", record.id)
            return

        if kind == ChangeKind.CREATED:
            if record.id in self._store:
                logger.debug("realtime create already present id=%s", record.id)
                return
            self._store.insert(record)
            return

        if kind == ChangeKind.UPDATED:
            if record.id in self._store:
                self._store.apply_update(record.id, record.to_row())
            else:
                # Update overtook its create: upsert, the later create is then a no-op.
                self._store.insert(record)
            return

    # ---- lifecycle ----

    async def start(self, user_id: str) -> None:
        """Subscribe to the feed for user_id. Restarts if already running for someone else."""
        if self.running and self._user_id == user_id:
            return
        await self.stop()

        self._queue = asyncio.Queue()
        self._user_id = user_id
        self._consumer = asyncio.create_task(self._drain(self._queue), name="taskflow-reconciler")
        try:
            self._subscription = await self._feed.subscribe(user_id, self._enqueue)
        except Exception:
            await self.stop()
            raise
        logger.info("Realtime reconciler started for user=%s", user_id)

    async def stop(self) -> None:
        sub, self._subscription = self._subscription, None
        consumer, self._consumer = self._consumer, None
        self._queue = None
        user_id, self._user_id = self._user_id, None

        if sub is not None:
            try:
                await sub.unsubscribe()
            except Exception:
                logger.exception("Realtime unsubscribe failed")

        if consumer is not None:
            consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await consumer
            logger.info("Realtime reconciler stopped for user=%s", user_id)

    async def wait_idle(self) -> None:
        """Wait until every queued event has been applied."""
        if self._queue is not None:
            await self._queue.join()

    def _enqueue(self, event: ChangeEvent) -> None:
        if self._queue is None:
            logger.debug("event after stop dropped kind=%s id=%s", event.kind.value, event.task_id)
            return
        self._queue.put_nowait(event)

    async def _drain(self, queue: asyncio.Queue[ChangeEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                self.apply(event)
            except Exception:
                logger.exception("Failed to apply realtime event kind=%s id=%s", event.kind.value, event.task_id)
            finally:
                queue.task_done()
