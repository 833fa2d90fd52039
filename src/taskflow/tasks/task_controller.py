# src/taskflow/tasks/task_controller.py

from __future__ import annotations

"""
Optimistic task mutations.

Each user intent mutates the LocalTaskStore first (so views re-render without
waiting on the network), then issues exactly one remote write:

- create: post-ack insert of the gateway-assigned record
- update: local merge; on failure re-fetch the whole list and replace the store
- delete: local removal; on failure put the exact removed record back

There is no retry loop. Failures are re-raised after the revert so the caller
can show a message. The realtime echo of a successful write is harmless:
insert dedupes by id and update merges are idempotent.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any, TypeVar

from ..core.errors import NotAuthenticated, RemoteError, TaskFlowError, ValidationError
from ..core.ports import TaskGateway
from .task_models import Task, TaskDraft, TaskStatus, normalize_update_fields
from .task_store import LocalTaskStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TaskController:
    def __init__(
        self,
        store: LocalTaskStore,
        gateway: TaskGateway,
        *,
        timeout_seconds: float = 15.0,
        clock: Clock = _utc_now,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._timeout = max(0.001, float(timeout_seconds))
        self._clock = clock

    @property
    def store(self) -> LocalTaskStore:
        return self._store

    # ---- operations ----

    async def refresh(self) -> list[Task]:
        """Fetch the authoritative list for the active user and replace the store."""
        user_id = self._require_user()
        rows = await self._call(self._gateway.select_tasks(user_id), "select")
        tasks = [Task.from_row(r) for r in rows]
        self._store.replace_all(tasks)
        logger.info("Fetched %d tasks for user=%s", len(tasks), user_id)
        return tasks

    async def create(self, draft: TaskDraft) -> Task:
        user_id = self._require_user()
        row = draft.to_insert_row(user_id)

        saved = await self._call(self._gateway.insert_task(row), "insert")
        task = Task.from_row(saved)
        if task.user_id != user_id:
            raise RemoteError(f"Created task {task.id} came back with a foreign owner")

        # The realtime echo may already have inserted it; insert dedupes.
        self._store.insert(task)
        logger.info("Task created id=%s title=%r", task.id, task.title)
        return self._store.get(task.id) or task

    async def update(self, task_id: str, updates: Mapping[str, Any]) -> Task | None:
        self._require_user()
        fields = normalize_update_fields(updates)
        if not fields:
            raise ValidationError("Nothing to update")
        fields["updated_at"] = self._clock().isoformat()

        local = self._store.apply_update(task_id, fields)
        if local is None:
            logger.debug("update for task not in store id=%s; sending anyway", task_id)

        try:
            await self._call(self._gateway.update_task(task_id, fields), "update")
        except RemoteError as e:
            logger.warning("Update failed id=%s: %s; re-fetching", task_id, e)
            await self._recover_by_refetch()
            raise

        logger.debug("Task updated id=%s fields=%s", task_id, sorted(fields))
        return self._store.get(task_id)

    async def toggle_status(self, task_id: str) -> Task | None:
        self._require_user()
        task = self._store.get(task_id)
        if task is None:
            raise ValidationError(f"Task {task_id} not found")
        return await self.update(task_id, {"status": task.status.next().value})

    async def move(self, task_id: str, status: TaskStatus | str) -> Task | None:
        """Kanban drop: put the task in the given status column."""
        return await self.update(task_id, {"status": str(status)})

    async def delete(self, task_id: str) -> Task | None:
        self._require_user()
        index = self._store.index_of(task_id)
        removed = self._store.remove(task_id)

        try:
            await self._call(self._gateway.delete_task(task_id), "delete")
        except RemoteError as e:
            logger.warning("Delete failed id=%s: %s; restoring", task_id, e)
            if removed is not None:
                self._store.insert(removed, index=index or 0)
            raise

        logger.info("Task deleted id=%s", task_id)
        return removed

    # ---- helpers ----

    def _require_user(self) -> str:
        user_id = self._store.owner_id
        if not user_id:
            raise NotAuthenticated()
        return user_id

    async def _call(self, aw: Awaitable[T], op: str) -> T:
        try:
            return await asyncio.wait_for(aw, timeout=self._timeout)
        except TimeoutError:
            raise RemoteError(f"{op} timed out after {self._timeout:g}s") from None

    async def _recover_by_refetch(self) -> None:
        try:
            await self.refresh()
        except TaskFlowError:
            logger.exception("Re-fetch after failed update also failed; list may be stale")
