# src/taskflow/gateway/auth.py

from __future__ import annotations

"""
Session auth against the GoTrue endpoint (/auth/v1).

Why we persist session.json:
- It lets the console restore the signed-in user across restarts.
- The file holds tokens and must never be committed (store under a gitignored dir).
"""

import contextlib
import inspect
import json
import logging
import os
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from ..core.errors import NotAuthenticated, RemoteError, ValidationError
from .http import SupabaseHttp

logger = logging.getLogger(__name__)

# Renew this many seconds before the access token actually expires.
EXPIRY_LEEWAY_SECONDS = 60.0
MIN_PASSWORD_LENGTH = 6


class AuthEvent(StrEnum):
    SIGNED_IN = "signed-in"
    SIGNED_OUT = "signed-out"
    TOKEN_REFRESHED = "token-refreshed"


@dataclass(slots=True)
class AuthSession:
    access_token: str
    refresh_token: str
    expires_at: float
    user: dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> str:
        return str(self.user.get("id") or "")

    @property
    def email(self) -> str:
        return str(self.user.get("email") or "")

    def expired(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.expires_at - EXPIRY_LEEWAY_SECONDS

    @classmethod
    def from_response(cls, data: Mapping[str, Any]) -> AuthSession:
        access = data.get("access_token")
        refresh = data.get("refresh_token")
        user = data.get("user")
        if not access or not refresh or not isinstance(user, dict) or not user.get("id"):
            raise RemoteError("Auth response is missing session fields")

        expires_at = data.get("expires_at")
        if expires_at is None:
            expires_in = data.get("expires_in")
            expires_at = time.time() + (3600.0 if expires_in is None else float(expires_in))
        return cls(
            access_token=str(access),
            refresh_token=str(refresh),
            expires_at=float(expires_at),
            user=dict(user),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


AuthListener = Callable[[AuthEvent, AuthSession | None], Awaitable[None] | None]


def _load_json(path: Path) -> dict[str, Any]:
    raw = path.read_text("utf-8")
    val = json.loads(raw)
    if isinstance(val, dict):
        return val
    raise ValueError("Expected JSON object")


def _atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False), "utf-8")
    os.replace(tmp, path)
    with contextlib.suppress(OSError):
        # Best-effort: not critical on Windows or restricted FS.
        os.chmod(path, 0o600)


class SupabaseAuth:
    def __init__(self, http: SupabaseHttp, *, session_path: str | Path | None = None) -> None:
        self._http = http
        self._session_path = Path(session_path) if session_path else None
        self._session: AuthSession | None = None
        self._listeners: list[AuthListener] = []
        http.set_token_refresher(self.ensure_fresh)

    @property
    def session(self) -> AuthSession | None:
        return self._session

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ---- flows ----

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        email, password = _credentials(email, password)
        data = await self._http.request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json_body={"email": email, "password": password},
        )
        session = AuthSession.from_response(data or {})
        await self._set_session(session, AuthEvent.SIGNED_IN)
        logger.info("Signed in user=%s", session.user_id)
        return session

    async def sign_up(self, email: str, password: str, *, full_name: str | None = None) -> AuthSession | None:
        """
        Register a new account.

        Returns the session when the backend signs the user in right away, or None
        when email confirmation is required first.
        """
        email, password = _credentials(email, password)
        body: dict[str, Any] = {"email": email, "password": password}
        if full_name and full_name.strip():
            body["data"] = {"full_name": full_name.strip()}

        data = await self._http.request("POST", "/auth/v1/signup", json_body=body) or {}
        if not data.get("access_token"):
            logger.info("Sign-up pending email confirmation email=%s", email)
            return None

        session = AuthSession.from_response(data)
        await self._set_session(session, AuthEvent.SIGNED_IN)
        logger.info("Signed up user=%s", session.user_id)
        return session

    async def sign_out(self) -> None:
        """Revoke the session remotely (best-effort) and always forget it locally."""
        session = self._session
        if session is None:
            return
        try:
            await self._http.request("POST", "/auth/v1/logout", params={"scope": "local"})
        except RemoteError as e:
            logger.warning("Remote sign-out failed (%s); clearing local session anyway", e)

        self._session = None
        self._http.access_token = None
        self._forget_persisted()
        logger.info("Signed out user=%s", session.user_id)
        await self._emit(AuthEvent.SIGNED_OUT, None)

    async def update_password(self, new_password: str, confirm: str) -> None:
        if new_password != confirm:
            raise ValidationError("New passwords don't match")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        session = await self.get_session()
        if session is None:
            raise NotAuthenticated()

        data = await self._http.request("PUT", "/auth/v1/user", json_body={"password": new_password})
        if isinstance(data, dict) and data.get("id"):
            session.user = dict(data)
            self._persist(session)
        logger.info("Password updated for user=%s", session.user_id)

    async def restore_session(self) -> AuthSession | None:
        """Load session.json (if any), refresh it when expired and announce it as signed-in."""
        if self._session is not None:
            return self._session
        if self._session_path is None or not self._session_path.exists():
            return None

        try:
            stored = AuthSession(**_load_json(self._session_path))
        except (OSError, ValueError, TypeError):
            logger.warning("Discarding unreadable session file %s", self._session_path)
            self._forget_persisted()
            return None

        if stored.expired():
            try:
                stored = await self._refresh(stored.refresh_token)
            except RemoteError as e:
                logger.warning("Stored session could not be refreshed (%s); signing in is required", e)
                self._forget_persisted()
                return None

        await self._set_session(stored, AuthEvent.SIGNED_IN)
        logger.info("Session restored for user=%s", stored.user_id)
        return stored

    async def get_session(self) -> AuthSession | None:
        await self.ensure_fresh()
        return self._session

    async def ensure_fresh(self) -> None:
        session = self._session
        if session is None or not session.expired():
            return
        renewed = await self._refresh(session.refresh_token)
        await self._set_session(renewed, AuthEvent.TOKEN_REFRESHED)
        logger.info("Access token refreshed for user=%s", renewed.user_id)

    # ---- internals ----

    async def _refresh(self, refresh_token: str) -> AuthSession:
        data = await self._http.request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json_body={"refresh_token": refresh_token},
        )
        return AuthSession.from_response(data or {})

    async def _set_session(self, session: AuthSession, event: AuthEvent) -> None:
        self._session = session
        self._http.access_token = session.access_token
        self._persist(session)
        await self._emit(event, session)

    def _persist(self, session: AuthSession) -> None:
        if self._session_path is None:
            return
        try:
            _atomic_write_json(self._session_path, session.to_dict())
        except OSError:
            logger.exception("Failed to persist session to %s", self._session_path)

    def _forget_persisted(self) -> None:
        if self._session_path is None:
            return
        with contextlib.suppress(FileNotFoundError):
            self._session_path.unlink()

    async def _emit(self, event: AuthEvent, session: AuthSession | None) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event, session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Auth listener failed event=%s", event.value)


def _credentials(email: str, password: str) -> tuple[str, str]:
    email = (email or "").strip()
    if not email or "@" not in email:
        raise ValidationError("A valid email address is required")
    if not password:
        raise ValidationError("Password is required")
    return email, password
