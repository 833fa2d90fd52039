# src/taskflow/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The controller and reconciler depend on Protocols instead of the concrete
Supabase clients. This keeps the backend swappable and makes testing easier.

Rows are plain dicts in the gateway's wire shape (see Task.to_row / from_row).
Every method raises RemoteError on failure.
"""

from collections.abc import Callable
from typing import Any, Protocol

from ..tasks.task_models import ChangeEvent

Row = dict[str, Any]
ChangeCallback = Callable[[ChangeEvent], None]


class TaskGateway(Protocol):
    """Row CRUD against the task collection."""

    async def select_tasks(self, user_id: str) -> list[Row]: ...
    async def insert_task(self, row: Row) -> Row: ...
    async def update_task(self, task_id: str, fields: Row) -> None: ...
    async def delete_task(self, task_id: str) -> None: ...


class ProfileGateway(Protocol):
    """
    Denormalized user profile rows (`users`) plus the optional contact
    details row (`profile`: phone_number, bio, location, website).
    """

    async def get_profile(self, user_id: str) -> Row | None: ...
    async def create_profile(self, row: Row) -> None: ...
    async def update_profile(self, user_id: str, fields: Row) -> None: ...
    async def get_details(self, user_id: str) -> Row | None: ...
    async def save_details(self, user_id: str, fields: Row) -> None: ...


class FeedSubscription(Protocol):
    async def unsubscribe(self) -> None: ...


class ChangeFeed(Protocol):
    """
    Realtime row-change feed filtered to one owner.

    The callback is invoked on the event loop, once per event, in arrival order.
    """

    async def subscribe(self, user_id: str, callback: ChangeCallback) -> FeedSubscription: ...
