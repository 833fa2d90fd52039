# src/taskflow/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..gateway.auth import SupabaseAuth
from ..gateway.http import SupabaseHttp
from ..tasks.task_controller import TaskController
from ..tasks.task_reconciler import RealtimeReconciler
from ..tasks.task_store import LocalTaskStore
from .session import SessionManager, UserProfile


@dataclass
class AppState:
    # Store Settings on the state for easy access in commands/connectors.
    settings: Any

    store: LocalTaskStore
    controller: TaskController
    session: SessionManager

    # Absent in unit tests that drive the session manager directly.
    auth: SupabaseAuth | None = None
    http: SupabaseHttp | None = None
    reconciler: RealtimeReconciler | None = None

    @property
    def user(self) -> UserProfile | None:
        return self.session.user
