# tests/test_bootstrap.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taskflow.cli.bootstrap import create_initial_state, shutdown
from taskflow.core.errors import RemoteError


def _settings(tmp_path: Path, **overrides) -> SimpleNamespace:
    values = dict(
        app_name="TaskFlow",
        data_dir=tmp_path / "data",
        session_path=tmp_path / "data" / "session.json",
        supabase_url="",
        supabase_anon_key="",
        tasks_table="task",
        profiles_table="users",
        profile_details_table="profile",
        request_timeout_seconds=5.0,
        realtime_enabled=True,
        realtime_heartbeat_seconds=25.0,
        realtime_reconnect_seconds=5.0,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.mark.asyncio
async def test_state_wiring_without_network(tmp_path: Path) -> None:
    state = create_initial_state(settings=_settings(tmp_path))
    try:
        assert (tmp_path / "data").is_dir()
        assert state.store.owner_id is None
        assert state.reconciler is not None and not state.reconciler.running
        assert state.http is not None and not state.http.configured
        assert state.user is None

        # Unconfigured backend: auth fails as a RemoteError, nothing crashes.
        with pytest.raises(RemoteError, match="not configured"):
            await state.auth.sign_in_with_password("ana@example.com", "pw")
    finally:
        await shutdown(state)


def test_realtime_can_be_disabled(tmp_path: Path) -> None:
    state = create_initial_state(settings=_settings(tmp_path, realtime_enabled=False))
    assert state.reconciler is None
