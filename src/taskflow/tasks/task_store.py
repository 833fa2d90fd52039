# src/taskflow/tasks/task_store.py

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .task_models import Task

logger = logging.getLogger(__name__)

StoreListener = Callable[[], None]


class LocalTaskStore:
    """
    In-memory ordered task list for the active user.

    This is the single source of truth for rendering. All mutation goes through
    replace_all / insert / apply_update / remove (plus clear on sign-out).

    Invariants:
    - at most one record per task id
    - every record belongs to owner_id (foreign rows are dropped on the way in)

    Views get tuple snapshots via `tasks`; they must not keep private copies.
    No network access here.
    """

    def __init__(self, owner_id: str | None = None) -> None:
        self._owner_id = owner_id
        self._tasks: list[Task] = []
        self._listeners: list[StoreListener] = []
        self.version = 0

    # ---- session ----

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    def set_owner(self, owner_id: str | None) -> None:
        """Switch the active user. Changing owner drops the held list."""
        if owner_id == self._owner_id:
            return
        self._owner_id = owner_id
        self._tasks = []
        self._changed()

    def clear(self) -> None:
        if not self._tasks:
            return
        self._tasks = []
        self._changed()

    # ---- queries ----

    @property
    def tasks(self) -> tuple[Task, ...]:
        return tuple(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return self.index_of(str(task_id)) is not None

    def get(self, task_id: str) -> Task | None:
        idx = self.index_of(task_id)
        return self._tasks[idx] if idx is not None else None

    def index_of(self, task_id: str) -> int | None:
        for i, t in enumerate(self._tasks):
            if t.id == task_id:
                return i
        return None

    # ---- mutations ----

    def replace_all(self, tasks: Iterable[Task]) -> None:
        """Wholesale replace after a full fetch. Keeps fetch order, drops dupes and foreign rows."""
        seen: set[str] = set()
        fresh: list[Task] = []
        for t in tasks:
            if not self._owns(t) or t.id in seen:
                continue
            seen.add(t.id)
            fresh.append(t)
        self._tasks = fresh
        self._changed()

    def insert(self, task: Task, *, index: int = 0) -> bool:
        """
        Prepend a task (or put it back at `index`).

        Returns False when the id is already present or the owner does not match.
        """
        if not self._owns(task):
            return False
        if self.index_of(task.id) is not None:
            logger.debug("insert ignored, task already present id=%s", task.id)
            return False
        index = max(0, min(index, len(self._tasks)))
        self._tasks.insert(index, task)
        self._changed()
        return True

    def apply_update(self, task_id: str, fields: Mapping[str, Any]) -> Task | None:
        """Merge row-shaped fields onto the matching record. No-op if absent."""
        idx = self.index_of(task_id)
        if idx is None:
            return None
        current = self._tasks[idx]
        updated = current.merged(fields)
        if updated == current:
            return current
        if not self._owns(updated):
            # The row moved to another user: it can no longer live here.
            del self._tasks[idx]
            self._changed()
            return None
        self._tasks[idx] = updated
        self._changed()
        return updated

    def remove(self, task_id: str) -> Task | None:
        """Drop the matching record and return it. No-op if absent."""
        idx = self.index_of(task_id)
        if idx is None:
            return None
        removed = self._tasks.pop(idx)
        self._changed()
        return removed

    # ---- observers ----

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ---- internals ----

    def _owns(self, task: Task) -> bool:
        if self._owner_id is None or task.user_id != self._owner_id:
            logger.warning(
                "Dropping task id=%s owned by %s (active owner=%s)",
                task.id,
                task.user_id,
                self._owner_id,
            )
            return False
        return True

    def _changed(self) -> None:
        self.version += 1
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Store listener failed")
