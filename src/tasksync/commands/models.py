# src/tasksync/commands/models.py

"""
Commands: immutable user intents recorded before any network attempt.

The set of variants is closed (Create / Update / Delete); every consumer
(projector, translator, serializer) matches on CommandType exhaustively.
An action is never "undone" in place: a compensating command is appended.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any, ClassVar, Union

from ..tasks.task_models import TaskStatus


class CommandType(StrEnum):
    CREATE_TASK = "CREATE_TASK"
    UPDATE_TASK = "UPDATE_TASK"
    DELETE_TASK = "DELETE_TASK"

    @classmethod
    def parse(cls, raw: Any) -> CommandType | None:
        """Accepts both the full names and the short server spelling (CREATE, UPDATE, DELETE)."""
        if raw is None:
            return None
        value = str(raw).strip().upper()
        if value in ("CREATE", "UPDATE", "DELETE"):
            value = f"{value}_TASK"
        try:
            return cls(value)
        except ValueError:
            return None


# Changed-field key -> Task attribute.
UPDATABLE_FIELDS: Mapping[str, str] = MappingProxyType(
    {
        "title": "title",
        "description": "description",
        "status": "status",
        "dueDate": "due_date",
        "folderId": "folder_id",
    }
)


def _new_command_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True, slots=True)
class CreateTaskCommand:
    """Complete initial state of a new task."""

    type: ClassVar[CommandType] = CommandType.CREATE_TASK

    command_id: str
    entity_id: str
    user_id: str
    timestamp: datetime
    title: str
    description: str | None = None
    status: TaskStatus | None = TaskStatus.PENDING
    due_date: datetime | None = None
    folder_id: str | None = None

    @classmethod
    def create(
        cls,
        *,
        entity_id: str,
        user_id: str,
        title: str,
        description: str | None = None,
        status: TaskStatus | None = TaskStatus.PENDING,
        due_date: datetime | None = None,
        folder_id: str | None = None,
        now: datetime | None = None,
    ) -> CreateTaskCommand:
        return cls(
            command_id=_new_command_id(),
            entity_id=entity_id,
            user_id=user_id,
            timestamp=now or datetime.now(),
            title=title,
            description=description,
            status=status,
            due_date=due_date,
            folder_id=folder_id,
        )

    def with_entity_id(self, entity_id: str) -> CreateTaskCommand:
        return replace(self, entity_id=entity_id)


@dataclass(frozen=True, slots=True)
class UpdateTaskCommand:
    """
    Sparse update: only the keys present in changed_fields are touched.

    changed_fields is wrapped in a read-only mapping at construction.
    """

    type: ClassVar[CommandType] = CommandType.UPDATE_TASK

    command_id: str
    entity_id: str
    user_id: str
    timestamp: datetime
    changed_fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "changed_fields", MappingProxyType(dict(self.changed_fields)))

    @classmethod
    def create(
        cls,
        *,
        entity_id: str,
        user_id: str,
        changed_fields: Mapping[str, Any],
        now: datetime | None = None,
    ) -> UpdateTaskCommand:
        return cls(
            command_id=_new_command_id(),
            entity_id=entity_id,
            user_id=user_id,
            timestamp=now or datetime.now(),
            changed_fields=changed_fields,
        )

    def with_entity_id(self, entity_id: str) -> UpdateTaskCommand:
        return replace(self, entity_id=entity_id)


@dataclass(frozen=True, slots=True)
class DeleteTaskCommand:
    """Soft delete; the task becomes a tombstone until the server confirms."""

    type: ClassVar[CommandType] = CommandType.DELETE_TASK

    command_id: str
    entity_id: str
    user_id: str
    timestamp: datetime
    reason: str | None = None

    @classmethod
    def create(
        cls,
        *,
        entity_id: str,
        user_id: str,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> DeleteTaskCommand:
        return cls(
            command_id=_new_command_id(),
            entity_id=entity_id,
            user_id=user_id,
            timestamp=now or datetime.now(),
            reason=reason,
        )

    def with_entity_id(self, entity_id: str) -> DeleteTaskCommand:
        return replace(self, entity_id=entity_id)


Command = Union[CreateTaskCommand, UpdateTaskCommand, DeleteTaskCommand]
