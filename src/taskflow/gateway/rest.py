# src/taskflow/gateway/rest.py

"""Row CRUD over the PostgREST endpoint (/rest/v1/<table>)."""

from __future__ import annotations

import logging
from typing import Any

from ..core.errors import RemoteError
from .http import SupabaseHttp

logger = logging.getLogger(__name__)

Row = dict[str, Any]

_RETURN_ROW = {"Prefer": "return=representation"}
_RETURN_NONE = {"Prefer": "return=minimal"}


def _eq(value: str) -> str:
    return f"eq.{value}"


def _rows(data: Any, what: str) -> list[Row]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise RemoteError(f"Unexpected {what} response shape")
    return [r for r in data if isinstance(r, dict)]


class SupabaseTaskGateway:
    def __init__(self, http: SupabaseHttp, *, table: str = "task") -> None:
        self._http = http
        self._path = f"/rest/v1/{table}"

    async def select_tasks(self, user_id: str) -> list[Row]:
        data = await self._http.request(
            "GET",
            self._path,
            params={"select": "*", "user_id": _eq(user_id), "order": "created_at.desc"},
        )
        return _rows(data, "select")

    async def insert_task(self, row: Row) -> Row:
        data = await self._http.request("POST", self._path, json_body=row, headers=_RETURN_ROW)
        rows = _rows(data, "insert")
        if not rows:
            raise RemoteError("Insert returned no row")
        return rows[0]

    async def update_task(self, task_id: str, fields: Row) -> None:
        await self._http.request(
            "PATCH",
            self._path,
            params={"id": _eq(task_id)},
            json_body=fields,
            headers=_RETURN_NONE,
        )

    async def delete_task(self, task_id: str) -> None:
        await self._http.request(
            "DELETE",
            self._path,
            params={"id": _eq(task_id)},
            headers=_RETURN_NONE,
        )


class SupabaseProfileGateway:
    def __init__(
        self,
        http: SupabaseHttp,
        *,
        table: str = "users",
        details_table: str = "profile",
    ) -> None:
        self._http = http
        self._path = f"/rest/v1/{table}"
        self._details_path = f"/rest/v1/{details_table}"

    async def get_profile(self, user_id: str) -> Row | None:
        data = await self._http.request(
            "GET",
            self._path,
            params={"select": "full_name,email", "id": _eq(user_id)},
        )
        rows = _rows(data, "profile")
        return rows[0] if rows else None

    async def create_profile(self, row: Row) -> None:
        await self._http.request("POST", self._path, json_body=row, headers=_RETURN_NONE)

    async def update_profile(self, user_id: str, fields: Row) -> None:
        await self._http.request(
            "PATCH",
            self._path,
            params={"id": _eq(user_id)},
            json_body=fields,
            headers=_RETURN_NONE,
        )

    async def get_details(self, user_id: str) -> Row | None:
        data = await self._http.request(
            "GET",
            self._details_path,
            params={"select": "id,phone_number,bio,location,website", "user_id": _eq(user_id)},
        )
        rows = _rows(data, "profile details")
        return rows[0] if rows else None

    async def save_details(self, user_id: str, fields: Row) -> None:
        """Update the details row, or insert it on first save."""
        if await self.get_details(user_id) is not None:
            await self._http.request(
                "PATCH",
                self._details_path,
                params={"user_id": _eq(user_id)},
                json_body=fields,
                headers=_RETURN_NONE,
            )
        else:
            await self._http.request(
                "POST",
                self._details_path,
                json_body={"user_id": user_id, **fields},
                headers=_RETURN_NONE,
            )
        logger.debug("Profile details saved user=%s fields=%s", user_id, sorted(fields))
