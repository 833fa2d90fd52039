# src/taskflow/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the backend clients, store, controller and reconciler into AppState,
- connects auth state changes to the session manager.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.session import SessionManager
from ..core.state import AppState
from ..gateway.auth import SupabaseAuth
from ..gateway.http import SupabaseHttp
from ..gateway.realtime import SupabaseRealtimeFeed
from ..gateway.rest import SupabaseProfileGateway, SupabaseTaskGateway
from ..tasks.task_controller import TaskController
from ..tasks.task_reconciler import RealtimeReconciler
from ..tasks.task_store import LocalTaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.session_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings(). No network I/O happens here.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    http = SupabaseHttp.from_settings(settings)
    if not http.configured:
        logger.warning("Backend not configured; set TASKFLOW_SUPABASE_URL and TASKFLOW_SUPABASE_ANON_KEY.")

    auth = SupabaseAuth(http, session_path=settings.session_path)
    store = LocalTaskStore()
    controller = TaskController(
        store,
        SupabaseTaskGateway(http, table=settings.tasks_table),
        timeout_seconds=settings.request_timeout_seconds,
    )

    reconciler: RealtimeReconciler | None = None
    if settings.realtime_enabled:
        feed = SupabaseRealtimeFeed(
            http,
            table=settings.tasks_table,
            heartbeat_seconds=settings.realtime_heartbeat_seconds,
            reconnect_seconds=settings.realtime_reconnect_seconds,
        )
        reconciler = RealtimeReconciler(store, feed)

    session = SessionManager(
        controller,
        reconciler=reconciler,
        profiles=SupabaseProfileGateway(
            http,
            table=settings.profiles_table,
            details_table=settings.profile_details_table,
        ),
    )
    auth.on_auth_state_change(session.on_auth_event)

    return AppState(
        settings=settings,
        store=store,
        controller=controller,
        session=session,
        auth=auth,
        http=http,
        reconciler=reconciler,
    )


async def shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    if state.reconciler is not None:
        try:
            await state.reconciler.stop()
        except Exception:
            logger.exception("Reconciler stop failed.")

    if state.http is not None:
        try:
            await state.http.close()
        except Exception:
            logger.debug("HTTP session close failed.", exc_info=True)
