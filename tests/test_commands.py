# tests/test_commands.py

from __future__ import annotations

import pytest

from taskflow.cli.commands import CommandRegistry, parse_fields, registry, resolve_task_id
from taskflow.core.errors import NotAuthenticated, ValidationError
from taskflow.core.state import AppState
from taskflow.tasks.task_models import TaskPriority, TaskStatus
from taskflow.tasks.task_store import LocalTaskStore

from .fakes import FakeProfileGateway, FakeTaskGateway, make_row, make_task


@pytest.mark.asyncio
async def test_command_registry_routes_2_and_3_params(state: AppState) -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}

    def h2(state, args):
        called["h2"] += 1
        return "h2"

    async def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a")
    reg.register("b", h3, "b", aliases=["bee"])

    notes: list[str] = []
    assert await reg.handle(state, "/a x") == "h2"
    assert await reg.handle(state, "/bee y", emit=notes.append) == "h3"
    assert called == {"h2": 1, "h3": 1}
    assert notes == ["note"]


@pytest.mark.asyncio
async def test_command_registry_unknown_and_non_command(state: AppState) -> None:
    reg = CommandRegistry()
    assert await reg.handle(state, "hello") is None
    assert "Unknown command" in (await reg.handle(state, "/nope") or "")
    assert "Cannot parse" in (await reg.handle(state, '/add "unterminated') or "")


def test_parse_fields_splits_words_and_known_keys() -> None:
    words, fields = parse_fields(["Buy", "milk", "prio=high", "due=2024-06-01", "x=y"])
    assert words == ["Buy", "milk", "x=y"]
    assert fields == {"priority": "high", "due_date": "2024-06-01"}


def test_resolve_task_id_by_unique_prefix() -> None:
    store = LocalTaskStore(owner_id="u1")
    store.replace_all([make_task("abc123"), make_task("abd456")])

    assert resolve_task_id(store, "abc") == "abc123"
    assert resolve_task_id(store, "abd456") == "abd456"
    with pytest.raises(ValidationError, match="ambiguous"):
        resolve_task_id(store, "ab")
    with pytest.raises(ValidationError):
        resolve_task_id(store, "zzz")

    store.set_owner(None)
    with pytest.raises(NotAuthenticated):
        resolve_task_id(store, "abc")


@pytest.mark.asyncio
async def test_add_edit_toggle_delete_flow(state: AppState, gateway: FakeTaskGateway) -> None:
    reply = await registry.handle(state, '/add "Write report" priority=high due=2024-06-20 cat=Work')
    assert reply is not None and reply.startswith("Task created: srv-1")

    task = state.store.get("srv-1")
    assert task.priority == TaskPriority.HIGH
    assert task.category == "Work"

    reply = await registry.handle(state, "/edit srv-1 title=Renamed assignee=Sam")
    assert "Renamed" in reply and "@Sam" in reply

    reply = await registry.handle(state, "/toggle srv")
    assert "In Progress" in reply

    reply = await registry.handle(state, "/move srv-1 completed")
    assert state.store.get("srv-1").status == TaskStatus.COMPLETED

    reply = await registry.handle(state, "/delete srv-1")
    assert reply == "Task deleted: Renamed"
    assert gateway.rows == {}


@pytest.mark.asyncio
async def test_expected_failures_become_messages(state: AppState, gateway: FakeTaskGateway) -> None:
    assert (await registry.handle(state, "/add priority=high")).startswith("Invalid input:")

    gateway.fail_ops.add("insert")
    assert (await registry.handle(state, "/add Something")).startswith("Backend error:")

    state.store.set_owner(None)
    reply = await registry.handle(state, "/add Something")
    assert reply == "User not authenticated. Please log in."


@pytest.mark.asyncio
async def test_list_and_views(state: AppState, gateway: FakeTaskGateway) -> None:
    gateway.rows = {
        "aaa": make_row("aaa", title="Report", priority="high", due_date="2000-01-01", minutes=2),
        "bbb": make_row("bbb", title="Groceries", status="completed", minutes=1),
    }
    assert await registry.handle(state, "/refresh") == "Refreshed: 2 tasks."

    listing = await registry.handle(state, "/tasks status=completed")
    assert "Groceries" in listing and "Report" not in listing

    assert "OVERDUE" in await registry.handle(state, "/tasks report")
    assert "Overdue: 1" in await registry.handle(state, "/dashboard")

    kanban = await registry.handle(state, "/kanban")
    assert kanban.index("To Do (1)") < kanban.index("Report") < kanban.index("Completed (1)")

    calendar = await registry.handle(state, "/calendar 2000-01-01")
    assert "Due on 2000-01-01" in calendar and "Report" in calendar
    assert "Invalid input" in await registry.handle(state, "/calendar soon")


@pytest.mark.asyncio
async def test_whoami_and_status(state: AppState) -> None:
    assert await registry.handle(state, "/whoami") == "Not signed in."
    await state.session.activate({"id": "u1", "email": "ana@example.com"})
    try:
        assert "ana <ana@example.com>" in await registry.handle(state, "/whoami")
        status = await registry.handle(state, "/status")
        assert "User: ana@example.com" in status
        assert "Realtime: ON" in status
    finally:
        await state.session.deactivate()


@pytest.mark.asyncio
async def test_auth_commands_without_auth_client(state: AppState) -> None:
    assert (await registry.handle(state, "/login a@b.c pw")).startswith("Backend error:")
    assert (await registry.handle(state, "/login onlyemail")).startswith("Usage:")


@pytest.mark.asyncio
async def test_task_commands_while_signed_out_ask_to_log_in(state: AppState) -> None:
    state.store.set_owner(None)
    for line in ("/toggle abc", "/edit abc title=X", "/delete abc", "/move abc completed"):
        assert await registry.handle(state, line) == "User not authenticated. Please log in."


@pytest.mark.asyncio
async def test_profile_show_and_set(state: AppState, profiles: FakeProfileGateway) -> None:
    assert await registry.handle(state, "/profile") == "User not authenticated. Please log in."

    await state.session.activate({"id": "u1", "email": "ana@example.com"})
    try:
        reply = await registry.handle(state, '/profile set name="Ana Lima" bio="Likes tea" phone=555')
        assert reply == "Profile updated: Ana Lima <ana@example.com>"
        assert profiles.details["u1"]["bio"] == "Likes tea"

        shown = await registry.handle(state, "/profile")
        assert "Ana Lima <ana@example.com>" in shown
        assert "phone: 555" in shown and "website: -" in shown

        assert (await registry.handle(state, "/profile set age=3")).startswith("Invalid input:")
        assert (await registry.handle(state, "/profile set bio")).startswith("Invalid input:")
        assert (await registry.handle(state, "/profile clear")).startswith("Usage:")
    finally:
        await state.session.deactivate()


@pytest.mark.asyncio
async def test_password_command_usage_and_missing_auth(state: AppState) -> None:
    assert (await registry.handle(state, "/password onlyone")).startswith("Usage:")
    assert (await registry.handle(state, "/password secret1 secret1")).startswith("Backend error:")
