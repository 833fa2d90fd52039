# src/taskflow/gateway/http.py

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import aiohttp

from ..core.errors import RemoteError

logger = logging.getLogger(__name__)

TokenRefresher = Callable[[], Awaitable[None]]

_ERROR_KEYS = ("message", "msg", "error_description", "error")


def error_message(body: str, status: int) -> str:
    """Extract a human message from a backend error body (JSON or plain text)."""
    text = (body or "").strip()
    if text:
        try:
            data = json.loads(text)
        except ValueError:
            return text[:200]
        if isinstance(data, dict):
            for key in _ERROR_KEYS:
                val = data.get(key)
                if isinstance(val, str) and val.strip():
                    return val.strip()
    return f"HTTP {status}"


class SupabaseHttp:
    """
    Thin aiohttp wrapper around the backend's HTTP surface.

    - adds apikey / Authorization headers (user token when signed in, anon key otherwise)
    - converts transport failures and HTTP >= 400 into RemoteError
    - the aiohttp session is created lazily, inside the running loop
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout_seconds: float = 15.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.access_token: str | None = None
        self._timeout = aiohttp.ClientTimeout(total=float(timeout_seconds))
        self._session = session
        self._owns_session = session is None
        self._refresher: TokenRefresher | None = None

    @classmethod
    def from_settings(cls, settings) -> SupabaseHttp:
        return cls(
            getattr(settings, "supabase_url", ""),
            getattr(settings, "supabase_anon_key", ""),
            timeout_seconds=float(getattr(settings, "request_timeout_seconds", 15.0)),
        )

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    def set_token_refresher(self, refresher: TokenRefresher | None) -> None:
        """Hook called before every non-auth request (renews an expired access token)."""
        self._refresher = refresher

    async def ensure_token(self) -> None:
        """Run the refresher (if any) so access_token is usable for the next call."""
        if self._refresher is not None:
            await self._refresher()

    def headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        h = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
        }
        if extra:
            h.update(extra)
        return h

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        self._require_configured()
        if not path.startswith("/auth/"):
            await self.ensure_token()

        session = self._get_session()
        url = f"{self.base_url}{path}"
        logger.debug("%s %s params=%s", method, path, dict(params or {}))

        try:
            async with session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self.headers(headers),
            ) as resp:
                body = await resp.text()
                if resp.status >= 400:
                    msg = error_message(body, resp.status)
                    logger.debug("%s %s -> %s %s", method, path, resp.status, msg)
                    raise RemoteError(msg, status=resp.status)
        except aiohttp.ClientError as e:
            raise RemoteError(f"Network error: {e}") from e
        except TimeoutError:
            raise RemoteError(f"{method} {path} timed out") from None

        if not body.strip():
            return None
        try:
            return json.loads(body)
        except ValueError:
            raise RemoteError(f"Malformed response from {path}", status=resp.status) from None

    async def ws_connect(self, path: str, *, params: Mapping[str, str]) -> aiohttp.ClientWebSocketResponse:
        self._require_configured()
        url = self.base_url.replace("https://", "wss://", 1).replace("http://", "ws://", 1) + path
        try:
            return await self._get_session().ws_connect(url, params=params, heartbeat=None)
        except aiohttp.ClientError as e:
            raise RemoteError(f"Realtime connection failed: {e}") from e

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    def _require_configured(self) -> None:
        if not self.configured:
            raise RemoteError(
                "Backend is not configured: set TASKFLOW_SUPABASE_URL and TASKFLOW_SUPABASE_ANON_KEY."
            )
