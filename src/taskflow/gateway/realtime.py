# src/taskflow/gateway/realtime.py

from __future__ import annotations

"""
Realtime row-change feed (Phoenix channels over /realtime/v1/websocket).

One subscription = one websocket joined to one channel with a postgres_changes
filter on the owner column. The subscription keeps itself alive:
- heartbeat every `heartbeat_seconds`
- on connection loss, reconnect after `reconnect_seconds` and rejoin
- a renewed access token is pushed to the channel on the next heartbeat

Wire events INSERT/UPDATE/DELETE are normalized to ChangeEvent before they
reach the callback.
"""

import asyncio
import contextlib
import itertools
import json
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp

from ..core.errors import RemoteError
from ..core.ports import ChangeCallback
from ..tasks.task_models import ChangeEvent, ChangeKind, Task
from .http import SupabaseHttp

logger = logging.getLogger(__name__)

WEBSOCKET_PATH = "/realtime/v1/websocket"
PROTOCOL_VSN = "1.0.0"


def channel_topic(channel: str) -> str:
    return f"realtime:{channel}"


def build_join_payload(
    *,
    schema: str,
    table: str,
    user_id: str,
    access_token: str | None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "config": {
            "broadcast": {"ack": False, "self": False},
            "presence": {"key": ""},
            "postgres_changes": [
                {"event": "*", "schema": schema, "table": table, "filter": f"user_id=eq.{user_id}"}
            ],
            "private": False,
        }
    }
    if access_token:
        payload["access_token"] = access_token
    return payload


def parse_change_message(message: Mapping[str, Any]) -> ChangeEvent | None:
    """Turn a postgres_changes frame into a ChangeEvent. Anything else yields None."""
    if message.get("event") != "postgres_changes":
        return None
    payload = message.get("payload")
    if not isinstance(payload, Mapping):
        return None
    data = payload.get("data")
    if not isinstance(data, Mapping):
        return None

    kind = ChangeKind.from_wire(data.get("type") or data.get("eventType"))
    if kind is None:
        return None

    if kind == ChangeKind.DELETED:
        old = data.get("old_record") or data.get("old") or {}
        task_id = old.get("id") if isinstance(old, Mapping) else None
        if not task_id:
            return None
        return ChangeEvent(kind=kind, task_id=str(task_id))

    record = data.get("record") or data.get("new")
    if not isinstance(record, Mapping) or not record.get("id"):
        return None
    task = Task.from_row(record)
    return ChangeEvent(kind=kind, task_id=task.id, record=task)


class RealtimeSubscription:
    def __init__(
        self,
        http: SupabaseHttp,
        *,
        topic: str,
        join_payload: dict[str, Any],
        callback: ChangeCallback,
        heartbeat_seconds: float,
        reconnect_seconds: float,
    ) -> None:
        self._http = http
        self._topic = topic
        self._join_payload = join_payload
        self._callback = callback
        self._heartbeat_s = max(0.01, float(heartbeat_seconds))
        self._reconnect_s = max(0.01, float(reconnect_seconds))
        self.connects = 0
        self._refs = itertools.count(1)
        self._join_ref: str | None = None
        self._sent_token: str | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._runner: asyncio.Task[None] | None = None
        self._closed = False

    def start(self) -> None:
        self._runner = asyncio.create_task(self._run(), name=f"taskflow-{self._topic}")

    async def unsubscribe(self) -> None:
        self._closed = True
        ws = self._ws
        if ws is not None and not ws.closed:
            with contextlib.suppress(aiohttp.ClientError, ConnectionError, RuntimeError):
                await self._send(ws, self._topic, "phx_leave", {})
            await ws.close()
        runner, self._runner = self._runner, None
        if runner is not None:
            runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await runner
        logger.info("Realtime unsubscribed topic=%s", self._topic)

    # ---- connection loop ----

    async def _run(self) -> None:
        while not self._closed:
            try:
                await self._connect_once()
            except asyncio.CancelledError:
                raise
            except (RemoteError, aiohttp.ClientError, ConnectionError, TimeoutError, ValueError) as e:
                logger.warning("Realtime connection lost topic=%s: %s", self._topic, e)
            except Exception:
                logger.exception("Realtime client failed topic=%s", self._topic)
            if self._closed:
                break
            logger.info("Realtime reconnecting in %.1fs topic=%s", self._reconnect_s, self._topic)
            await asyncio.sleep(self._reconnect_s)

    async def _connect_once(self) -> None:
        # The join carries the access token; an expired one gets the join rejected.
        await self._http.ensure_token()
        self.connects += 1
        ws = await self._http.ws_connect(
            WEBSOCKET_PATH,
            params={"apikey": self._http.api_key, "vsn": PROTOCOL_VSN},
        )
        self._ws = ws
        heartbeat = asyncio.create_task(self._heartbeat(ws))
        try:
            await self._join(ws)
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle(json.loads(msg.data))
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
            self._ws = None
            if not ws.closed:
                await ws.close()

    async def _join(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        payload = dict(self._join_payload)
        token = self._http.access_token
        if token:
            payload["access_token"] = token
        self._sent_token = token
        self._join_ref = await self._send(ws, self._topic, "phx_join", payload)
        logger.debug("Realtime join sent topic=%s ref=%s attempt=%d", self._topic, self._join_ref, self.connects)

    async def _heartbeat(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_s)
            await self._send(ws, "phoenix", "heartbeat", {})
            try:
                await self._http.ensure_token()
            except RemoteError as e:
                logger.warning("Realtime token refresh failed topic=%s: %s", self._topic, e)
            token = self._http.access_token
            if token and token != self._sent_token:
                await self._send(ws, self._topic, "access_token", {"access_token": token})
                self._sent_token = token
                logger.debug("Realtime access token pushed topic=%s", self._topic)

    async def _send(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        topic: str,
        event: str,
        payload: dict[str, Any],
    ) -> str:
        ref = str(next(self._refs))
        frame = {"topic": topic, "event": event, "payload": payload, "ref": ref}
        if topic == self._topic and self._join_ref is not None and event != "phx_join":
            frame["join_ref"] = self._join_ref
        elif event == "phx_join":
            frame["join_ref"] = ref
        await ws.send_json(frame)
        return ref

    # ---- inbound ----

    def _handle(self, message: Any) -> None:
        if not isinstance(message, Mapping):
            logger.debug("Realtime frame ignored (not an object): %r", message)
            return
        event = message.get("event")

        if event == "phx_reply" and message.get("ref") == self._join_ref:
            payload = message.get("payload")
            status = payload.get("status") if isinstance(payload, Mapping) else None
            if status != "ok":
                # Without a joined channel no changes arrive; reconnect and rejoin.
                raise ConnectionError(f"join rejected: {payload}")
            logger.info("Realtime channel joined topic=%s", self._topic)
            return

        if event in ("phx_error", "phx_close") and message.get("topic") == self._topic:
            raise ConnectionError(f"channel {event}")

        if event == "system":
            logger.debug("Realtime system message: %s", message.get("payload"))
            return

        change = parse_change_message(message)
        if change is None:
            return
        logger.debug("Realtime %s id=%s", change.kind.value, change.task_id)
        self._callback(change)


class SupabaseRealtimeFeed:
    """ChangeFeed implementation backed by the hosted realtime service."""

    def __init__(
        self,
        http: SupabaseHttp,
        *,
        table: str = "task",
        schema: str = "public",
        channel: str = "task_changes",
        heartbeat_seconds: float = 25.0,
        reconnect_seconds: float = 5.0,
    ) -> None:
        self._http = http
        self._table = table
        self._schema = schema
        self._channel = channel
        self._heartbeat_s = heartbeat_seconds
        self._reconnect_s = reconnect_seconds

    async def subscribe(self, user_id: str, callback: ChangeCallback) -> RealtimeSubscription:
        sub = RealtimeSubscription(
            self._http,
            topic=channel_topic(self._channel),
            join_payload=build_join_payload(
                schema=self._schema,
                table=self._table,
                user_id=user_id,
                access_token=self._http.access_token,
            ),
            callback=callback,
            heartbeat_seconds=self._heartbeat_s,
            reconnect_seconds=self._reconnect_s,
        )
        sub.start()
        logger.info("Realtime subscription started table=%s user=%s", self._table, user_id)
        return sub
