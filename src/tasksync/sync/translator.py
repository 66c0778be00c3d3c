# src/tasksync/sync/translator.py

"""
Outbound translator: internal commands -> wire SyncCommand dicts.

Shapes:
- CREATE_TASK: full initial state under "data" (camelCase keys, as the server stores them)
- UPDATE_TASK: empty "data"; changed fields at the root under "changedFields",
  with folderId/dueDate renamed to folder_id/due_date
- DELETE_TASK: empty "data"

Enums become their string values and datetimes ISO-8601 strings.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from ..commands.models import Command, CreateTaskCommand, DeleteTaskCommand, UpdateTaskCommand
from .wire import CommandBatch, SyncCommand

logger = logging.getLogger(__name__)

ENTITY_TYPE = "task"

# Internal changed-field key -> server key.
_WIRE_FIELD_NAMES = {
    "folderId": "folder_id",
    "dueDate": "due_date",
}


def _wire_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _envelope(command: Command, data: dict[str, Any]) -> SyncCommand:
    return {
        "command_type": command.type.value,
        "entity_type": ENTITY_TYPE,
        "entity_id": command.entity_id,
        "client_id": command.command_id,
        "timestamp": command.timestamp.isoformat(),
        "data": data,
    }


def normalize_changed_fields(changed: Mapping[str, Any]) -> dict[str, Any]:
    return {_WIRE_FIELD_NAMES.get(k, k): _wire_value(v) for k, v in changed.items()}


def to_sync_command(command: Command, *, now: datetime | None = None) -> SyncCommand | None:
    """Translate one command; returns None (and warns) for a type this build cannot ship."""
    match command:
        case CreateTaskCommand():
            return _envelope(
                command,
                {
                    "title": command.title,
                    "description": command.description,
                    "status": _wire_value(command.status),
                    "dueDate": _wire_value(command.due_date),
                    "folderId": command.folder_id,
                    "created_at": _wire_value(now or datetime.now()),
                },
            )
        case UpdateTaskCommand():
            wire = _envelope(command, {})
            wire["changedFields"] = normalize_changed_fields(command.changed_fields)
            return wire
        case DeleteTaskCommand():
            return _envelope(command, {})
        case _:
            logger.warning(
                "Dropping command of unsupported type %s (%s)",
                getattr(command, "type", type(command).__name__),
                getattr(command, "command_id", "?"),
            )
            return None


def build_batch(
    user_id: str,
    commands: Iterable[Command],
    *,
    last_sync: datetime | None,
    now: datetime | None = None,
) -> CommandBatch:
    now = now or datetime.now().astimezone()
    wire: list[SyncCommand] = []
    for c in commands:
        sc = to_sync_command(c, now=now)
        if sc is not None:
            wire.append(sc)
    return CommandBatch(user_id=user_id, client_timestamp=now, last_sync=last_sync, commands=wire)
