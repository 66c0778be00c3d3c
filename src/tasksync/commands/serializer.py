# src/tasksync/commands/serializer.py

"""
JSON (de)serialization of the command log.

Each element carries an explicit "type" discriminator so the tagged union
round-trips. Datetimes are ISO-8601 strings, statuses their enum values.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from ..tasks.task_models import TaskStatus
from .models import (
    Command,
    CommandType,
    CreateTaskCommand,
    DeleteTaskCommand,
    UpdateTaskCommand,
)

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _str_to_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _encode_changed_value(key: str, value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, TaskStatus):
        return value.value
    return value


def _decode_changed_value(key: str, value: Any) -> Any:
    if value is None:
        return None
    if key == "status":
        return TaskStatus.parse(value)
    if key == "dueDate":
        return _str_to_dt(value)
    return value


def command_to_dict(command: Command) -> dict[str, Any]:
    base: dict[str, Any] = {
        "type": command.type.value,
        "command_id": command.command_id,
        "entity_id": command.entity_id,
        "user_id": command.user_id,
        "timestamp": _dt_to_str(command.timestamp),
    }
    match command:
        case CreateTaskCommand():
            base.update(
                title=command.title,
                description=command.description,
                status=command.status.value if command.status is not None else None,
                due_date=_dt_to_str(command.due_date),
                folder_id=command.folder_id,
            )
        case UpdateTaskCommand():
            base["changed_fields"] = {
                k: _encode_changed_value(k, v) for k, v in command.changed_fields.items()
            }
        case DeleteTaskCommand():
            base["reason"] = command.reason
        case _:
            raise TypeError(f"Unsupported command: {type(command).__name__}")
    return base


def command_from_dict(data: Mapping[str, Any]) -> Command:
    """Rebuild a command; raises ValueError/KeyError on a malformed element."""
    ctype = CommandType.parse(data.get("type"))
    if ctype is None:
        raise ValueError(f"Unknown command type: {data.get('type')!r}")

    common = {
        "command_id": str(data["command_id"]),
        "entity_id": str(data["entity_id"]),
        "user_id": str(data["user_id"]),
        "timestamp": _str_to_dt(data["timestamp"]),
    }
    if common["timestamp"] is None:
        raise ValueError("Command timestamp is missing")

    if ctype == CommandType.CREATE_TASK:
        return CreateTaskCommand(
            **common,
            title=str(data.get("title") or ""),
            description=data.get("description"),
            status=TaskStatus.parse(data.get("status")),
            due_date=_str_to_dt(data.get("due_date")),
            folder_id=data.get("folder_id"),
        )
    if ctype == CommandType.UPDATE_TASK:
        raw = data.get("changed_fields") or {}
        if not isinstance(raw, Mapping):
            raise ValueError("changed_fields must be an object")
        return UpdateTaskCommand(
            **common,
            changed_fields={k: _decode_changed_value(k, v) for k, v in raw.items()},
        )
    return DeleteTaskCommand(**common, reason=data.get("reason"))


def dumps(commands: Iterable[Command], *, user_id: str) -> str:
    doc = {
        "version": FORMAT_VERSION,
        "user_id": user_id,
        "commands": [command_to_dict(c) for c in commands],
    }
    return json.dumps(doc, ensure_ascii=False, indent=2)


def loads(raw: str) -> list[Command]:
    """
    Parse a persisted log document.

    The document itself must be valid JSON (json.JSONDecodeError otherwise).
    Individual elements that cannot be rebuilt are skipped with a warning so a
    single unknown or damaged entry does not take the whole log down.
    """
    data = json.loads(raw)
    if isinstance(data, Mapping):
        items = data.get("commands")
    else:
        items = data
    if not isinstance(items, list):
        raise ValueError("Command log document has no command array")

    out: list[Command] = []
    for i, item in enumerate(items):
        if not isinstance(item, Mapping):
            logger.warning("Skipping non-object command log entry #%d", i)
            continue
        try:
            out.append(command_from_dict(item))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping unreadable command log entry #%d: %s", i, e)
    return out
