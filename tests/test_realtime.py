# tests/test_realtime.py

from __future__ import annotations

import contextlib
import json
from collections.abc import AsyncIterator
from typing import Any

import aiohttp
import pytest
from aiohttp import test_utils, web

from taskflow.gateway.http import SupabaseHttp
from taskflow.gateway.realtime import (
    RealtimeSubscription,
    SupabaseRealtimeFeed,
    WEBSOCKET_PATH,
    build_join_payload,
    channel_topic,
    parse_change_message,
)
from taskflow.tasks.task_models import ChangeEvent, ChangeKind, TaskStatus

from .fakes import make_row, wait_until


def _frame(data: dict) -> dict:
    return {
        "topic": channel_topic("task_changes"),
        "event": "postgres_changes",
        "payload": {"data": data, "ids": [1]},
        "ref": None,
    }


def test_join_payload_filters_by_owner() -> None:
    payload = build_join_payload(schema="public", table="task", user_id="u1", access_token="jwt")
    change = payload["config"]["postgres_changes"][0]
    assert change == {"event": "*", "schema": "public", "table": "task", "filter": "user_id=eq.u1"}
    assert payload["access_token"] == "jwt"

    anon = build_join_payload(schema="public", table="task", user_id="u1", access_token=None)
    assert "access_token" not in anon


def test_parse_insert_and_update() -> None:
    created = parse_change_message(_frame({"type": "INSERT", "record": make_row("t1")}))
    assert created is not None
    assert created.kind == ChangeKind.CREATED
    assert created.record.user_id == "u1"

    updated = parse_change_message(
        _frame({"eventType": "UPDATE", "new": make_row("t1", status="completed"), "old": {"id": "t1"}})
    )
    assert updated.kind == ChangeKind.UPDATED
    assert updated.record.status == TaskStatus.COMPLETED


def test_parse_delete_uses_old_record_id() -> None:
    deleted = parse_change_message(_frame({"type": "DELETE", "old_record": {"id": "t1"}}))
    assert deleted is not None
    assert deleted.kind == ChangeKind.DELETED
    assert deleted.task_id == "t1"
    assert deleted.record is None


def test_non_change_frames_are_ignored() -> None:
    assert parse_change_message({"event": "phx_reply", "payload": {"status": "ok"}}) is None
    assert parse_change_message(_frame({"type": "TRUNCATE"})) is None
    assert parse_change_message(_frame({"type": "INSERT", "record": {}})) is None
    assert parse_change_message(_frame({"type": "DELETE", "old_record": {}})) is None


class RealtimeBackend:
    """
    Minimal Phoenix endpoint.

    - records every inbound frame and the connect query string
    - answers phx_join with the next status from `join_statuses` ("ok" once exhausted)
    - `after_join` raw frames are sent once, after the first successful join
    - `close_after_join` drops the socket once, right after a successful join
    """

    def __init__(self) -> None:
        self.frames: list[dict[str, Any]] = []
        self.queries: list[dict[str, str]] = []
        self.join_statuses: list[str] = []
        self.after_join: list[str] = []
        self.close_after_join = False

    @property
    def connects(self) -> int:
        return len(self.queries)

    def sent(self, event: str) -> list[dict[str, Any]]:
        return [f for f in self.frames if f.get("event") == event]

    async def handler(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.queries.append(dict(request.query))
        async for msg in ws:
            if msg.type != aiohttp.WSMsgType.TEXT:
                break
            frame = json.loads(msg.data)
            self.frames.append(frame)
            if frame.get("event") != "phx_join":
                continue
            status = self.join_statuses.pop(0) if self.join_statuses else "ok"
            await ws.send_json(
                {
                    "topic": frame["topic"],
                    "event": "phx_reply",
                    "payload": {"status": status, "response": {}},
                    "ref": frame["ref"],
                    "join_ref": frame["ref"],
                }
            )
            if status != "ok":
                continue
            while self.after_join:
                await ws.send_str(self.after_join.pop(0))
            if self.close_after_join:
                self.close_after_join = False
                await ws.close()
                break
        return ws


@contextlib.asynccontextmanager
async def realtime_http(backend: RealtimeBackend) -> AsyncIterator[SupabaseHttp]:
    app = web.Application()
    app.router.add_get(WEBSOCKET_PATH, backend.handler)
    async with test_utils.TestServer(app) as server:
        http = SupabaseHttp(str(server.make_url("/")), "anon-key", timeout_seconds=2.0)
        http.access_token = "at-1"
        try:
            yield http
        finally:
            await http.close()


async def _subscribe(http: SupabaseHttp, events: list[ChangeEvent], **kw: float) -> RealtimeSubscription:
    feed = SupabaseRealtimeFeed(
        http,
        heartbeat_seconds=kw.get("heartbeat_seconds", 30.0),
        reconnect_seconds=kw.get("reconnect_seconds", 0.01),
    )
    return await feed.subscribe("u1", events.append)


@pytest.mark.asyncio
async def test_subscription_joins_and_delivers_changes() -> None:
    backend = RealtimeBackend()
    backend.after_join = [json.dumps(_frame({"type": "INSERT", "record": make_row("t1")}))]
    events: list[ChangeEvent] = []

    async with realtime_http(backend) as http:
        sub = await _subscribe(http, events)
        try:
            await wait_until(lambda: len(events) == 1)
        finally:
            await sub.unsubscribe()

    assert backend.queries[0] == {"apikey": "anon-key", "vsn": "1.0.0"}
    join = backend.sent("phx_join")[0]
    assert join["topic"] == channel_topic("task_changes")
    assert join["payload"]["access_token"] == "at-1"
    assert join["join_ref"] == join["ref"]
    assert events[0].kind == ChangeKind.CREATED and events[0].task_id == "t1"


@pytest.mark.asyncio
async def test_rejected_join_reconnects_and_rejoins() -> None:
    backend = RealtimeBackend()
    backend.join_statuses = ["error"]
    events: list[ChangeEvent] = []

    async with realtime_http(backend) as http:
        sub = await _subscribe(http, events)
        try:
            await wait_until(lambda: len(backend.sent("phx_join")) >= 2)
        finally:
            await sub.unsubscribe()

    assert backend.connects >= 2
    assert sub.connects >= 2


@pytest.mark.asyncio
async def test_non_object_frames_are_skipped() -> None:
    backend = RealtimeBackend()
    backend.after_join = [
        "[1, 2, 3]",
        '"hello"',
        "null",
        json.dumps(_frame({"type": "DELETE", "old_record": {"id": "t9"}})),
    ]
    events: list[ChangeEvent] = []

    async with realtime_http(backend) as http:
        sub = await _subscribe(http, events)
        try:
            await wait_until(lambda: len(events) == 1)
        finally:
            await sub.unsubscribe()

    assert events[0].kind == ChangeKind.DELETED and events[0].task_id == "t9"
    assert backend.connects == 1


@pytest.mark.asyncio
async def test_dropped_socket_is_reopened() -> None:
    backend = RealtimeBackend()
    backend.close_after_join = True
    events: list[ChangeEvent] = []

    async with realtime_http(backend) as http:
        sub = await _subscribe(http, events)
        try:
            await wait_until(lambda: backend.connects == 2 and len(backend.sent("phx_join")) == 2)
        finally:
            await sub.unsubscribe()

    assert backend.sent("phx_leave")


@pytest.mark.asyncio
async def test_heartbeat_refreshes_and_pushes_renewed_token() -> None:
    backend = RealtimeBackend()
    events: list[ChangeEvent] = []
    refreshes: list[str | None] = []

    async with realtime_http(backend) as http:

        async def refresher() -> None:
            refreshes.append(http.access_token)

        http.set_token_refresher(refresher)
        sub = await _subscribe(http, events, heartbeat_seconds=0.02)
        try:
            await wait_until(lambda: len(backend.sent("phx_join")) == 1)
            assert refreshes, "token refresher runs before connecting"

            await wait_until(lambda: len(backend.sent("heartbeat")) >= 1)
            assert backend.sent("heartbeat")[0]["topic"] == "phoenix"
            assert not backend.sent("access_token")

            http.access_token = "at-2"
            await wait_until(lambda: bool(backend.sent("access_token")))
        finally:
            await sub.unsubscribe()

    push = backend.sent("access_token")[0]
    assert push["payload"] == {"access_token": "at-2"}
    assert push["topic"] == channel_topic("task_changes")
    assert push["join_ref"] == backend.sent("phx_join")[0]["ref"]
    assert len(backend.sent("access_token")) == 1
    assert backend.connects == 1
