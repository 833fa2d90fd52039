# src/taskflow/cli/commands.py

from __future__ import annotations

import inspect
import logging
import shlex
from collections.abc import Awaitable, Callable
from datetime import date
from typing import cast

from ..core.errors import NotAuthenticated, RemoteError, ValidationError
from ..core.state import AppState
from ..tasks.task_models import Task, TaskDraft, TaskStatus
from ..tasks.task_store import LocalTaskStore
from ..tasks.task_views import (
    ALL,
    dashboard_stats,
    filter_tasks,
    is_overdue,
    kanban_columns,
    priority_rank,
    tasks_by_day,
    tasks_due_on,
)

CommandEmitter = Callable[[str], None]
CommandResult = str | Awaitable[str]
CommandHandler2 = Callable[[AppState, list[str]], CommandResult]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], CommandResult]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)

SHORT_ID = 8

# key=value aliases accepted by /add, /edit and /tasks
FIELD_ALIASES = {
    "title": "title",
    "desc": "description",
    "description": "description",
    "status": "status",
    "priority": "priority",
    "prio": "priority",
    "due": "due_date",
    "due_date": "due_date",
    "assignee": "assignee",
    "category": "category",
    "cat": "category",
}

_STATUS_MARK = {
    TaskStatus.TODO: "[ ]",
    TaskStatus.IN_PROGRESS: "[~]",
    TaskStatus.COMPLETED: "[x]",
}


class CommandRegistry:
    """Slash-command registry used by the console connector (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Expected failures (bad input, no session, backend errors) become the reply text.
        """
        if not line.startswith("/"):
            return None

        try:
            parts = shlex.split(line[1:])
        except ValueError as e:
            return f"Cannot parse command: {e}"
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                result = cast(CommandHandler3, handler)(state, args, emit)
            else:
                result = cast(CommandHandler2, handler)(state, args)
            if inspect.isawaitable(result):
                result = await result
            return result
        except ValidationError as e:
            return f"Invalid input: {e}"
        except NotAuthenticated as e:
            return str(e)
        except RemoteError as e:
            logger.info("Command /%s failed remotely: %s", name, e)
            return f"Backend error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- parsing / formatting helpers ----


def parse_fields(args: list[str]) -> tuple[list[str], dict[str, str]]:
    """Split args into free words and recognized key=value fields."""
    words: list[str] = []
    fields: dict[str, str] = {}
    for arg in args:
        key, sep, value = arg.partition("=")
        field = FIELD_ALIASES.get(key.strip().lower()) if sep else None
        if field is None:
            words.append(arg)
        else:
            fields[field] = value
    return words, fields


def resolve_task_id(store: LocalTaskStore, token: str) -> str:
    """Full id or any unique id prefix."""
    if store.owner_id is None:
        raise NotAuthenticated()
    token = token.strip()
    if not token:
        raise ValidationError("Task id is required")
    if token in store:
        return token
    matches = [t.id for t in store.tasks if t.id.startswith(token)]
    if not matches:
        raise ValidationError(f"No task matches id '{token}'")
    if len(matches) > 1:
        raise ValidationError(f"Id prefix '{token}' is ambiguous ({len(matches)} tasks)")
    return matches[0]


def format_task(task: Task, today: date | None = None) -> str:
    today = today or date.today()
    parts = [f"{task.id[:SHORT_ID]} {_STATUS_MARK[task.status]} {task.title}"]
    meta = [task.priority.value]
    if task.due_date is not None:
        meta.append(f"due {task.due_date.isoformat()}")
        if is_overdue(task, today):
            meta.append("OVERDUE")
    parts.append(f"({', '.join(meta)})")
    if task.category:
        parts.append(f"#{task.category}")
    if task.assignee:
        parts.append(f"@{task.assignee}")
    return " ".join(parts)


def _task_lines(tasks: list[Task] | tuple[Task, ...], empty: str) -> list[str]:
    if not tasks:
        return [f"  {empty}"]
    today = date.today()
    return [f"  {format_task(t, today)}" for t in tasks]


def _require_auth(state: AppState):
    if state.auth is None:
        raise RemoteError("Auth is not available in this session.")
    return state.auth


# ---- commands ----


def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    configured = state.http.configured if state.http is not None else False
    user = state.user
    realtime = "ON" if state.reconciler is not None and state.reconciler.running else "OFF"
    return (
        "Status:\n"
        f"  App: {getattr(state.settings, 'app_name', 'TaskFlow')}\n"
        f"  Backend configured: {'yes' if configured else 'no'}\n"
        f"  User: {user.email if user else '(signed out)'}\n"
        f"  Tasks in view: {len(state.store)}\n"
        f"  Realtime: {realtime}"
    )


async def cmd_signup(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /signup <email> <password> [full name]
    """
    if len(args) < 2:
        return "Usage: /signup <email> <password> [full name]"
    auth = _require_auth(state)
    full_name = " ".join(args[2:]) or None
    session = await auth.sign_up(args[0], args[1], full_name=full_name)
    if session is None:
        return "Account created. Check your email to confirm it, then /login."
    return f"Welcome, {state.user.name if state.user else session.email}!"


async def cmd_login(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /login <email> <password>
    """
    if len(args) != 2:
        return "Usage: /login <email> <password>"
    auth = _require_auth(state)
    if emit:
        emit("Signing in...")
    session = await auth.sign_in_with_password(args[0], args[1])
    name = state.user.name if state.user else session.email
    return f"Welcome back, {name}! {len(state.store)} tasks loaded."


async def cmd_logout(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    auth = _require_auth(state)
    if auth.session is None and state.user is None:
        return "Not signed in."
    await auth.sign_out()
    # Covers sessions activated without the auth client (no listener fired).
    if state.user is not None:
        await state.session.deactivate()
    return "Signed out."


def cmd_whoami(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    user = state.user
    if user is None:
        return "Not signed in."
    return f"{user.name} <{user.email}>\n  id: {user.id}\n  avatar: {user.avatar}"


async def cmd_profile(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /profile                          -> profile + contact details
    /profile set key=value [...]      -> keys: name, email, phone, bio, location, website
    """
    if not args:
        details = await state.session.load_details()
        lines = [cmd_whoami(state, [])]
        lines.extend(f"  {key}: {value or '-'}" for key, value in details.items())
        return "\n".join(lines)

    if args[0].lower() != "set" or len(args) < 2:
        return "Usage: /profile set key=value [key=value ...]"

    changes: dict[str, str] = {}
    for arg in args[1:]:
        key, sep, value = arg.partition("=")
        if not sep:
            raise ValidationError(f"Expected key=value, got '{arg}'")
        changes[key.strip().lower()] = value
    user = await state.session.update_profile(changes)
    return f"Profile updated: {user.name} <{user.email}>"


async def cmd_password(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if len(args) != 2:
        return "Usage: /password <new password> <repeat new password>"
    auth = _require_auth(state)
    await auth.update_password(args[0], args[1])
    return "Password updated."


def cmd_tasks(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /tasks [search words] [status=todo|in-progress|completed|all] [priority=low|medium|high|all]
    """
    words, fields = parse_fields(args)
    status = fields.get("status", ALL).strip().lower() or ALL
    priority = fields.get("priority", ALL).strip().lower() or ALL
    if status != ALL and status not in {s.value for s in TaskStatus}:
        raise ValidationError(f"Unknown status filter '{status}'")

    shown = filter_tasks(state.store.tasks, search=" ".join(words), status=status, priority=priority)
    header = f"Tasks ({len(shown)} of {len(state.store)}):"
    return "\n".join([header, *_task_lines(shown, "No tasks found.")])


async def cmd_add(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /add <title words> [desc=...] [priority=...] [status=...] [due=YYYY-MM-DD] [assignee=...] [category=...]
    """
    words, fields = parse_fields(args)
    title = fields.pop("title", "") or " ".join(words)
    draft = TaskDraft(
        title=title,
        description=fields.get("description", ""),
        status=fields.get("status", TaskStatus.TODO.value),
        priority=fields.get("priority", "medium"),
        due_date=fields.get("due_date") or None,
        assignee=fields.get("assignee", ""),
        category=fields.get("category", ""),
    )
    task = await state.controller.create(draft)
    return f"Task created: {format_task(task)}"


async def cmd_edit(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /edit <id> key=value [key=value ...]
    """
    if len(args) < 2:
        return "Usage: /edit <id> key=value [key=value ...]"
    task_id = resolve_task_id(state.store, args[0])
    words, fields = parse_fields(args[1:])
    if words:
        raise ValidationError(f"Expected key=value pairs, got: {' '.join(words)}")
    task = await state.controller.update(task_id, fields)
    return f"Task updated: {format_task(task)}" if task else "Task updated."


async def cmd_toggle(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if len(args) != 1:
        return "Usage: /toggle <id>"
    task_id = resolve_task_id(state.store, args[0])
    task = await state.controller.toggle_status(task_id)
    return f"Status -> {task.status.label}: {task.title}" if task else "Status toggled."


async def cmd_move(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if len(args) != 2:
        return "Usage: /move <id> <todo|in-progress|completed>"
    task_id = resolve_task_id(state.store, args[0])
    task = await state.controller.move(task_id, args[1].lower())
    return f"Moved to {task.status.label}: {task.title}" if task else "Task moved."


async def cmd_delete(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if len(args) != 1:
        return "Usage: /delete <id>"
    task_id = resolve_task_id(state.store, args[0])
    removed = await state.controller.delete(task_id)
    return f"Task deleted: {removed.title}" if removed else "Task deleted."


async def cmd_refresh(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    tasks = await state.controller.refresh()
    return f"Refreshed: {len(tasks)} tasks."


def cmd_dashboard(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    stats = dashboard_stats(state.store.tasks)
    lines = [
        f"Dashboard ({date.today().isoformat()}):",
        f"  Total: {stats.total}  To Do: {stats.todo}  In Progress: {stats.in_progress}  "
        f"Completed: {stats.completed}",
        f"  Completion: {stats.completion_rate:.0f}%  Overdue: {stats.overdue}",
        "Upcoming (7 days):",
        *_task_lines(stats.upcoming, "Nothing due this week."),
        "Recent:",
        *_task_lines(stats.recent, "No tasks yet. Use /add to create one."),
    ]
    return "\n".join(lines)


def cmd_kanban(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    lines = [f"Kanban ({len(state.store)} total tasks):"]
    for status, column in kanban_columns(state.store.tasks).items():
        lines.append(f"{status.label} ({len(column)}):")
        ordered = sorted(column, key=lambda t: priority_rank(t.priority))
        lines.extend(_task_lines(ordered, "(empty)"))
    return "\n".join(lines)


def cmd_calendar(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /calendar            -> today + this month
    /calendar YYYY-MM-DD -> that day + its month
    /calendar YYYY-MM    -> that month
    """
    today = date.today()
    day: date | None = today
    if args:
        raw = args[0].strip()
        try:
            if len(raw) == 7:
                day = None
                year, month = (int(p) for p in raw.split("-"))
                anchor = date(year, month, 1)
            else:
                day = date.fromisoformat(raw)
                anchor = day
        except ValueError:
            raise ValidationError(f"Expected YYYY-MM-DD or YYYY-MM, got '{raw}'") from None
    else:
        anchor = today

    tasks = state.store.tasks
    lines: list[str] = []
    if day is not None:
        lines.append(f"Due on {day.isoformat()}:")
        lines.extend(_task_lines(tasks_due_on(tasks, day), "No tasks scheduled for this day."))

    lines.append(f"{anchor.strftime('%B %Y')}:")
    month = tasks_by_day(tasks, anchor.year, anchor.month)
    if not month:
        lines.append("  No tasks due this month.")
    for d, items in month.items():
        lines.append(f"  {d.isoformat()}:")
        lines.extend(f"    {format_task(t, today)}" for t in items)
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show session/backend status.")
registry.register("signup", cmd_signup, help_text="Create an account: /signup <email> <password> [name].")
registry.register("login", cmd_login, help_text="Sign in: /login <email> <password>.")
registry.register("logout", cmd_logout, help_text="Sign out and clear the task list.")
registry.register("whoami", cmd_whoami, help_text="Show the signed-in profile.")
registry.register("profile", cmd_profile, help_text="Show or edit the profile: /profile set key=value ...")
registry.register("password", cmd_password, help_text="Change password: /password <new> <repeat>.")
registry.register(
    "tasks", cmd_tasks, help_text="List tasks: /tasks [search] [status=..] [priority=..].", aliases=["ls"]
)
registry.register("add", cmd_add, help_text="Create a task: /add <title> [priority=..] [due=..] ...")
registry.register("edit", cmd_edit, help_text="Update fields: /edit <id> key=value ...")
registry.register("toggle", cmd_toggle, help_text="Cycle status todo -> in-progress -> completed.")
registry.register("move", cmd_move, help_text="Move to a kanban column: /move <id> <status>.")
registry.register("delete", cmd_delete, help_text="Delete a task: /delete <id>.", aliases=["rm"])
registry.register("refresh", cmd_refresh, help_text="Re-fetch all tasks from the backend.")
registry.register("dashboard", cmd_dashboard, help_text="Totals, overdue, upcoming and recent tasks.")
registry.register("kanban", cmd_kanban, help_text="Show tasks grouped by status column.")
registry.register("calendar", cmd_calendar, help_text="Tasks by due date: /calendar [YYYY-MM-DD|YYYY-MM].")
