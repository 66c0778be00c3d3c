# src/tasksync/commands/projector.py

"""
Projection: base tasks + command log -> visible tasks.

Pure and deterministic. Commands are applied strictly in log order, so the
last Update naming a field wins for that field; untouched fields survive.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from ..tasks.task_models import SyncMarker, Task, TaskStatus, to_user_time
from .models import UPDATABLE_FIELDS, Command, CreateTaskCommand, DeleteTaskCommand, UpdateTaskCommand

logger = logging.getLogger(__name__)


def _coerce(attr: str, value: Any) -> Any:
    if value is None:
        return None
    if attr == "status":
        return TaskStatus.parse(value)
    if attr == "due_date":
        if not isinstance(value, datetime):
            try:
                value = datetime.fromisoformat(str(value))
            except ValueError:
                return None
        return to_user_time(value)
    return value


def task_from_create(command: CreateTaskCommand) -> Task:
    return Task(
        id=command.entity_id,
        title=command.title,
        description=command.description,
        status=command.status,
        due_date=_coerce("due_date", command.due_date),
        folder_id=command.folder_id,
        folder_name=None,
        created_at=command.timestamp,
        updated_at=command.timestamp,
        deleted_at=None,
        sync_marker=SyncMarker.NEW,
        last_sync=None,
    )


def apply_changes(task: Task, changed_fields: Mapping[str, Any], timestamp: datetime) -> Task:
    """Apply a sparse change set; keys outside UPDATABLE_FIELDS are ignored."""
    changes: dict[str, Any] = {}
    for key, value in changed_fields.items():
        attr = UPDATABLE_FIELDS.get(key)
        if attr is None:
            logger.debug("Ignoring unknown changed field %r on task %s", key, task.id)
            continue
        changes[attr] = _coerce(attr, value)

    # A moved task's cached folder name belongs to the old folder.
    if "folder_id" in changes and changes["folder_id"] != task.folder_id:
        changes["folder_name"] = None

    return task.with_changes(
        **changes,
        updated_at=timestamp,
        sync_marker=SyncMarker.PENDING_UPDATE,
    )


def apply_command(tasks: dict[str, Task], command: Command) -> None:
    """Apply one command to a working id -> Task map (in place)."""
    match command:
        case CreateTaskCommand():
            tasks[command.entity_id] = task_from_create(command)
        case UpdateTaskCommand():
            existing = tasks.get(command.entity_id)
            if existing is None:
                # Create not seen yet: only possible with a damaged log.
                logger.debug("Update for unknown task %s ignored", command.entity_id)
                return
            tasks[command.entity_id] = apply_changes(existing, command.changed_fields, command.timestamp)
        case DeleteTaskCommand():
            existing = tasks.get(command.entity_id)
            if existing is None:
                return
            tasks[command.entity_id] = existing.with_changes(
                deleted_at=command.timestamp,
                updated_at=command.timestamp,
                sync_marker=SyncMarker.PENDING_UPDATE,
            )
        case _:
            logger.warning("Unsupported command type in projection: %s", type(command).__name__)


def project(
    base_tasks: Iterable[Task],
    commands: Iterable[Command],
    *,
    include_deleted: bool = False,
) -> list[Task]:
    """
    Replay commands over base_tasks and return the resulting list.

    Tombstones (deleted_at set) are filtered out unless include_deleted is True.
    """
    working: dict[str, Task] = {t.id: t for t in base_tasks}
    for command in commands:
        apply_command(working, command)
    if include_deleted:
        return list(working.values())
    return [t for t in working.values() if not t.is_deleted]
