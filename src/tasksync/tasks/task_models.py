# src/tasksync/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any

DUE_SOON_WINDOW = timedelta(hours=24)
NEWEST_WINDOW = timedelta(hours=24)

# Fixed reference offset for wall-clock dates when no setting is at hand.
DEFAULT_UTC_OFFSET_HOURS = -3


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Notes:
    - only PENDING / IN_PROGRESS / COMPLETED are ever stored or sent to the server
    - NEWEST / INCOMING_DUE / OVERDUE are display-only and derived by display_status()
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    INCOMING_DUE = "incoming_due"
    OVERDUE = "overdue"
    NEWEST = "newest"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def is_virtual(self) -> bool:
        return self in (TaskStatus.INCOMING_DUE, TaskStatus.OVERDUE, TaskStatus.NEWEST)

    @classmethod
    def parse(cls, raw: Any) -> TaskStatus | None:
        """
        Lenient parser: enum names in any case, display labels and
        hyphen/space variants ("In Progress", "in-progress" -> IN_PROGRESS).
        """
        if raw is None:
            return None
        if isinstance(raw, TaskStatus):
            return raw
        value = str(raw).strip()
        if not value:
            return None
        for status, label in _LABELS.items():
            if label == value:
                return status
        norm = value.replace("-", "_").replace(" ", "_").lower()
        try:
            return cls(norm)
        except ValueError:
            return None

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        return cls.parse(raw) or cls.PENDING


_LABELS = {
    TaskStatus.PENDING: "Pending",
    TaskStatus.IN_PROGRESS: "In Progress",
    TaskStatus.COMPLETED: "Completed",
    TaskStatus.INCOMING_DUE: "Incoming Due",
    TaskStatus.OVERDUE: "Overdue",
    TaskStatus.NEWEST: "Newest",
}


class SyncMarker(StrEnum):
    """Where a task stands relative to the server."""

    NEW = "new"
    PENDING_UPDATE = "pending_update"
    SYNCED = "synced"

    @classmethod
    def from_db(cls, raw: str | None) -> SyncMarker:
        if not raw:
            return cls.SYNCED
        try:
            return cls(raw)
        except ValueError:
            return cls.SYNCED


@dataclass(frozen=True, slots=True)
class Task:
    """
    Versioned task record.

    Identity is required at construction; every other attribute is optional so
    partially-known server rows can still be represented. Mutations go through
    with_changes(), which returns a new instance.
    """

    id: str
    title: str = ""
    description: str | None = None
    status: TaskStatus | None = TaskStatus.PENDING
    due_date: datetime | None = None

    folder_id: str | None = None
    folder_name: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    sync_marker: SyncMarker = SyncMarker.SYNCED
    last_sync: datetime | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Task id is required")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def with_changes(self, **changes: Any) -> Task:
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class Folder:
    folder_id: str
    folder_name: str | None = None
    created_at: datetime | None = None
    deleted_at: datetime | None = None
    last_sync: datetime | None = None


def display_status(task: Task, now: datetime | None = None) -> TaskStatus:
    """
    Derive the status shown to the user.

    Completed tasks stay completed. Otherwise a past due date wins (OVERDUE),
    then a due date inside DUE_SOON_WINDOW (INCOMING_DUE), then a task created
    inside NEWEST_WINDOW (NEWEST). Falls back to the stored status.
    """
    stored = task.status or TaskStatus.PENDING
    if stored == TaskStatus.COMPLETED:
        return stored

    now = now or datetime.now()
    if task.due_date is not None:
        if task.due_date < now:
            return TaskStatus.OVERDUE
        if task.due_date - now <= DUE_SOON_WINDOW:
            return TaskStatus.INCOMING_DUE
    if task.created_at is not None and now - task.created_at <= NEWEST_WINDOW:
        return TaskStatus.NEWEST
    return stored


def to_user_time(value: datetime, utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS) -> datetime:
    """Aware datetimes become naive wall time at the fixed user offset; naive ones pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone(timedelta(hours=utc_offset_hours))).replace(tzinfo=None)
