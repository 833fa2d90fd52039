# src/taskflow/tasks/task_views.py

"""Read-only view models over a task snapshot (dashboard, list filters, kanban, calendar)."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta

from .task_models import Task, TaskPriority, TaskStatus

ALL = "all"
RECENT_LIMIT = 5
UPCOMING_DAYS = 7


@dataclass(slots=True, frozen=True)
class DashboardStats:
    total: int
    todo: int
    in_progress: int
    completed: int
    completion_rate: float
    overdue: int
    upcoming: tuple[Task, ...]
    recent: tuple[Task, ...]


def _open(task: Task) -> bool:
    return task.status != TaskStatus.COMPLETED


def is_overdue(task: Task, today: date) -> bool:
    return task.due_date is not None and task.due_date < today and _open(task)


def dashboard_stats(tasks: Sequence[Task], *, today: date | None = None) -> DashboardStats:
    today = today or date.today()
    horizon = today + timedelta(days=UPCOMING_DAYS)

    total = len(tasks)
    completed = sum(1 for t in tasks if t.status == TaskStatus.COMPLETED)
    upcoming = tuple(
        t for t in tasks if t.due_date is not None and today <= t.due_date <= horizon and _open(t)
    )

    return DashboardStats(
        total=total,
        todo=sum(1 for t in tasks if t.status == TaskStatus.TODO),
        in_progress=sum(1 for t in tasks if t.status == TaskStatus.IN_PROGRESS),
        completed=completed,
        completion_rate=(completed / total * 100.0) if total else 0.0,
        overdue=sum(1 for t in tasks if is_overdue(t, today)),
        upcoming=upcoming,
        recent=tuple(tasks[:RECENT_LIMIT]),
    )


def filter_tasks(
    tasks: Iterable[Task],
    *,
    search: str = "",
    status: str = ALL,
    priority: str = ALL,
) -> list[Task]:
    """
    Task-list filter.

    search matches title, description, category or assignee (case-insensitive);
    status / priority "all" disables that filter.
    """
    needle = search.strip().lower()
    out: list[Task] = []
    for t in tasks:
        if needle:
            haystack = (t.title, t.description or "", t.category or "", t.assignee or "")
            if not any(needle in h.lower() for h in haystack):
                continue
        if status != ALL and t.status != status:
            continue
        if priority != ALL and t.priority != priority:
            continue
        out.append(t)
    return out


def kanban_columns(tasks: Iterable[Task]) -> dict[TaskStatus, list[Task]]:
    columns: dict[TaskStatus, list[Task]] = {s: [] for s in TaskStatus}
    for t in tasks:
        columns[t.status].append(t)
    return columns


def tasks_due_on(tasks: Iterable[Task], day: date) -> list[Task]:
    return [t for t in tasks if t.due_date == day]


def tasks_by_day(tasks: Iterable[Task], year: int, month: int) -> dict[date, list[Task]]:
    """Tasks with a due date in the given month, grouped by day (sorted)."""
    out: dict[date, list[Task]] = {}
    for t in tasks:
        d = t.due_date
        if d is not None and d.year == year and d.month == month:
            out.setdefault(d, []).append(t)
    return dict(sorted(out.items()))


def priority_rank(priority: TaskPriority) -> int:
    return {TaskPriority.HIGH: 0, TaskPriority.MEDIUM: 1, TaskPriority.LOW: 2}[priority]
