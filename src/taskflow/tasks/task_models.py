# src/taskflow/tasks/task_models.py

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from datetime import date, datetime
from enum import StrEnum
from typing import Any

from ..core.errors import ValidationError

# Row columns a client may change through an update. Identity, owner and
# created_at are assigned by the gateway.
MUTABLE_FIELDS = frozenset(
    {"title", "description", "status", "priority", "due_date", "assignee", "category", "updated_at"}
)


class TaskStatus(StrEnum):
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.TODO
        try:
            return cls(raw)
        except ValueError:
            return cls.TODO

    def next(self) -> TaskStatus:
        """Status toggle order: todo -> in-progress -> completed -> todo."""
        order = list(TaskStatus)
        return order[(order.index(self) + 1) % len(order)]

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    TaskStatus.TODO: "To Do",
    TaskStatus.IN_PROGRESS: "In Progress",
    TaskStatus.COMPLETED: "Completed",
}


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskPriority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(raw)
        except ValueError:
            return cls.MEDIUM


class ChangeKind(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"

    @classmethod
    def from_wire(cls, raw: str | None) -> ChangeKind | None:
        """Map realtime wire event types (INSERT/UPDATE/DELETE) onto change kinds."""
        return _WIRE_KINDS.get((raw or "").strip().upper())


_WIRE_KINDS = {
    "INSERT": ChangeKind.CREATED,
    "UPDATE": ChangeKind.UPDATED,
    "DELETE": ChangeKind.DELETED,
}


# ---- value parsing ----


def _clean_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def parse_due_date(value: Any) -> date | None:
    """
    Accept a date, a datetime, or an ISO string ("2024-06-01" or a full timestamp).
    Raises ValueError for unparsable strings.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    if len(s) > 10:
        return datetime.fromisoformat(s).date()
    return date.fromisoformat(s)


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(slots=True)
class Task:
    id: str
    title: str
    user_id: str
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    description: str | None = None
    due_date: date | None = None
    assignee: str | None = None
    category: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Task:
        """Build a Task from a gateway row. Missing/garbage optional values become None."""
        try:
            due = parse_due_date(row.get("due_date"))
        except ValueError:
            due = None
        return cls(
            id=str(row["id"]),
            title=str(row.get("title") or ""),
            user_id=str(row.get("user_id") or ""),
            status=TaskStatus.from_db(row.get("status")),
            priority=TaskPriority.from_db(row.get("priority")),
            description=_clean_str(row.get("description")),
            due_date=due,
            assignee=_clean_str(row.get("assignee")),
            category=_clean_str(row.get("category")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "due_date": _iso(self.due_date),
            "assignee": self.assignee,
            "category": self.category,
            "user_id": self.user_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def merged(self, row_fields: Mapping[str, Any]) -> Task:
        """
        Return a copy with row-shaped fields merged on top.

        Unknown keys are ignored and the identity never changes.
        """
        known = {f.name for f in fields(self)}
        merged_row = self.to_row()
        merged_row.update({k: v for k, v in row_fields.items() if k in known and k != "id"})
        return Task.from_row(merged_row)


def normalize_update_fields(updates: Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate a partial update coming from a view and return it in row form.

    Raises ValidationError for immutable columns or bad values.
    """
    out: dict[str, Any] = {}
    for key, value in updates.items():
        if key not in MUTABLE_FIELDS:
            raise ValidationError(f"Field '{key}' cannot be updated")

        if key == "title":
            title = _clean_str(value)
            if not title:
                raise ValidationError("Task title is required")
            out[key] = title
        elif key == "status":
            out[key] = _parse_enum(TaskStatus, value, "status").value
        elif key == "priority":
            out[key] = _parse_enum(TaskPriority, value, "priority").value
        elif key == "due_date":
            try:
                out[key] = _iso(parse_due_date(value))
            except ValueError:
                raise ValidationError(f"Invalid due date: {value!r}") from None
        elif key == "updated_at":
            ts = parse_timestamp(value)
            out[key] = _iso(ts)
        else:
            out[key] = _clean_str(value)
    return out


def _parse_enum(enum_cls: type[StrEnum], value: Any, name: str) -> Any:
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Invalid {name} {value!r} (expected one of: {allowed})") from None


@dataclass(slots=True)
class TaskDraft:
    """
    Form input for a new task.

    Strings are trimmed on submit; empty optional strings become absent.
    """

    title: str
    description: str = ""
    status: str = TaskStatus.TODO.value
    priority: str = TaskPriority.MEDIUM.value
    due_date: date | str | None = None
    assignee: str = ""
    category: str = ""

    def to_insert_row(self, user_id: str) -> dict[str, Any]:
        title = _clean_str(self.title)
        if not title:
            raise ValidationError("Task title is required")
        try:
            due = parse_due_date(self.due_date)
        except ValueError:
            raise ValidationError(f"Invalid due date: {self.due_date!r}") from None

        return {
            "title": title,
            "description": _clean_str(self.description),
            "status": _parse_enum(TaskStatus, self.status or TaskStatus.TODO, "status").value,
            "priority": _parse_enum(TaskPriority, self.priority or TaskPriority.MEDIUM, "priority").value,
            "due_date": _iso(due),
            "assignee": _clean_str(self.assignee),
            "category": _clean_str(self.category),
            "user_id": user_id,
        }


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    """A row-level change pushed by the realtime feed."""

    kind: ChangeKind
    task_id: str
    record: Task | None = None
