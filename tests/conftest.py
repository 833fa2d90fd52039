# tests/conftest.py

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

from taskflow.core.session import SessionManager
from taskflow.core.state import AppState
from taskflow.tasks.task_controller import TaskController
from taskflow.tasks.task_reconciler import RealtimeReconciler
from taskflow.tasks.task_store import LocalTaskStore

from .fakes import FakeChangeFeed, FakeProfileGateway, FakeTaskGateway

FIXED_NOW = datetime(2024, 6, 2, 9, 30, tzinfo=UTC)


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="TaskFlow",
        log_level="INFO",
        data_dir=tmp_path,
        session_path=tmp_path / "session.json",
        tasks_table="task",
        profiles_table="users",
        profile_details_table="profile",
        request_timeout_seconds=0.2,
        realtime_enabled=True,
        console_enabled=False,
    )


@pytest.fixture()
def gateway() -> FakeTaskGateway:
    return FakeTaskGateway()


@pytest.fixture()
def profiles() -> FakeProfileGateway:
    return FakeProfileGateway()


@pytest.fixture()
def feed() -> FakeChangeFeed:
    return FakeChangeFeed()


@pytest.fixture()
def store() -> LocalTaskStore:
    return LocalTaskStore(owner_id="u1")


@pytest.fixture()
def controller(store: LocalTaskStore, gateway: FakeTaskGateway, settings: SimpleNamespace) -> TaskController:
    return TaskController(
        store,
        gateway,
        timeout_seconds=settings.request_timeout_seconds,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture()
def reconciler(store: LocalTaskStore, feed: FakeChangeFeed) -> RealtimeReconciler:
    return RealtimeReconciler(store, feed)


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    controller: TaskController,
    reconciler: RealtimeReconciler,
    profiles: FakeProfileGateway,
) -> AppState:
    """
    AppState wired with deterministic fakes.

    No auth/http clients: tests activate the session manager directly.
    """
    session = SessionManager(controller, reconciler=reconciler, profiles=profiles)
    return AppState(
        settings=settings,
        store=controller.store,
        controller=controller,
        session=session,
        reconciler=reconciler,
    )
