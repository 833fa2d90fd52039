# src/taskflow/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time (the backend key is only needed to connect).
- Components receive settings by injection; get_settings() is the default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKFLOW"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Backend (Supabase-compatible) ----
    supabase_url: str
    supabase_anon_key: str
    tasks_table: str
    profiles_table: str
    profile_details_table: str
    request_timeout_seconds: float

    # ---- Realtime ----
    realtime_enabled: bool
    realtime_heartbeat_seconds: float
    realtime_reconnect_seconds: float

    # ---- Console ----
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    session_path: Path

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "TaskFlow")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        # Accept the names the hosted dashboard hands out as well.
        supabase_url = (
            _first_env(_k("SUPABASE_URL"), "SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL", default="") or ""
        ).strip().rstrip("/")
        supabase_anon_key = (
            _first_env(
                _k("SUPABASE_ANON_KEY"),
                "SUPABASE_ANON_KEY",
                "NEXT_PUBLIC_SUPABASE_ANON_KEY",
                default="",
            )
            or ""
        ).strip()

        tasks_table = _env(_k("TASKS_TABLE"), "task")
        profiles_table = _env(_k("PROFILES_TABLE"), "users")
        profile_details_table = _env(_k("PROFILE_DETAILS_TABLE"), "profile")
        request_timeout_seconds = max(1.0, _env_float(_k("REQUEST_TIMEOUT_SECONDS"), 15.0))

        realtime_enabled = _env_bool(_k("REALTIME_ENABLED"), True)
        realtime_heartbeat_seconds = max(1.0, _env_float(_k("REALTIME_HEARTBEAT_SECONDS"), 25.0))
        realtime_reconnect_seconds = max(0.5, _env_float(_k("REALTIME_RECONNECT_SECONDS"), 5.0))

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskflow"))
        session_path = _env_path(_k("SESSION_PATH"), data_dir / "session.json")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            supabase_url=supabase_url,
            supabase_anon_key=supabase_anon_key,
            tasks_table=tasks_table,
            profiles_table=profiles_table,
            profile_details_table=profile_details_table,
            request_timeout_seconds=request_timeout_seconds,
            realtime_enabled=realtime_enabled,
            realtime_heartbeat_seconds=realtime_heartbeat_seconds,
            realtime_reconnect_seconds=realtime_reconnect_seconds,
            console_enabled=console_enabled,
            data_dir=data_dir,
            session_path=session_path,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
