# src/tasksync/sync/wire.py

"""
Wire-level sync structures.

Outgoing: CommandBatch of SyncCommand dicts.
Incoming: SyncResponse, parsed leniently from the JSON body:
- snake_case and camelCase keys are both accepted
- "success" may be the round flag (bool) or, in the legacy format, the list
  of processed commands
- a separate "failed" list is folded into the acknowledgements as failures
- a single malformed acknowledgement is skipped (its command stays queued)
Anything else that is not shaped like a response raises ProtocolError.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..commands.models import CommandType
from ..errors import ProtocolError

logger = logging.getLogger(__name__)

SyncCommand = dict[str, Any]


@dataclass(frozen=True, slots=True)
class CommandBatch:
    user_id: str
    client_timestamp: datetime
    last_sync: datetime | None
    commands: list[SyncCommand] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "client_timestamp": self.client_timestamp.isoformat(),
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "commands": list(self.commands),
        }


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Acknowledgement of one shipped command."""

    client_id: str | None
    command_type: CommandType | None
    success: bool
    server_id: str | None = None
    entity_id: str | None = None
    error_message: str | None = None


@dataclass(frozen=True, slots=True)
class ConflictResult:
    entity_id: str | None
    conflict_type: str | None
    server_data: Mapping[str, Any] | None
    client_data: Mapping[str, Any] | None


@dataclass(frozen=True, slots=True)
class SyncResponse:
    success: bool
    server_timestamp: datetime | None
    processed_commands: list[CommandResult] = field(default_factory=list)
    server_changes: list[Mapping[str, Any]] = field(default_factory=list)
    conflicts: list[ConflictResult] = field(default_factory=list)
    error_message: str | None = None
    folders: list[Mapping[str, Any]] | None = None
    folder_version: str | None = None


# ---- parsing helpers ----


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in data and data[k] is not None:
            return data[k]
    return None


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _as_list(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ProtocolError(f"'{what}' must be a list, got {type(value).__name__}")
    return value


def parse_timestamp(value: Any) -> datetime | None:
    """ISO-8601 (with 'Z' accepted) or epoch seconds/milliseconds."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds).astimezone()
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as e:
        raise ProtocolError(f"Bad timestamp: {value!r}") from e


def _parse_result(item: Any, *, default_success: bool | None = None) -> CommandResult:
    if not isinstance(item, Mapping):
        raise ProtocolError(f"Command result must be an object, got {type(item).__name__}")

    raw_success = item.get("success", default_success)
    if raw_success is None:
        raise ProtocolError(f"Command result without success flag: {dict(item)!r}")

    return CommandResult(
        client_id=_opt_str(_pick(item, "client_id", "clientId", "commandId", "command_id")),
        command_type=CommandType.parse(_pick(item, "command_type", "commandType", "type")),
        success=bool(raw_success),
        server_id=_opt_str(_pick(item, "server_id", "serverId")),
        entity_id=_opt_str(_pick(item, "entity_id", "entityId")),
        error_message=_opt_str(_pick(item, "error_message", "errorMessage", "error")),
    )


def _parse_results(items: list[Any], *, default_success: bool | None = None) -> list[CommandResult]:
    """
    A malformed acknowledgement is skipped, not fatal: its command simply stays
    queued and is retried next round.
    """
    out: list[CommandResult] = []
    for item in items:
        try:
            out.append(_parse_result(item, default_success=default_success))
        except ProtocolError as e:
            logger.warning("Skipping malformed command result: %s", e)
    return out


def _parse_conflict(item: Any) -> ConflictResult:
    if not isinstance(item, Mapping):
        raise ProtocolError(f"Conflict entry must be an object, got {type(item).__name__}")
    server_data = _pick(item, "server_data", "serverData")
    client_data = _pick(item, "client_data", "clientData")
    if server_data is not None and not isinstance(server_data, Mapping):
        raise ProtocolError("Conflict server_data must be an object")
    return ConflictResult(
        entity_id=_opt_str(_pick(item, "entity_id", "entityId")),
        conflict_type=_opt_str(_pick(item, "conflict_type", "conflictType")),
        server_data=server_data,
        client_data=client_data if isinstance(client_data, Mapping) else None,
    )


def parse_response(data: Any) -> SyncResponse:
    if not isinstance(data, Mapping):
        raise ProtocolError(f"Sync response must be a JSON object, got {type(data).__name__}")

    raw_success = data.get("success")
    processed_raw = _pick(data, "processed_commands", "processedCommands")
    if isinstance(raw_success, list):
        # Legacy format: "success" carries the processed command list.
        if processed_raw is None:
            processed_raw = raw_success
        success = True
    elif raw_success is None:
        success = True
    else:
        success = bool(raw_success)

    results = _parse_results(_as_list(processed_raw, "processed_commands"))
    results += _parse_results(
        _as_list(_pick(data, "failed", "failed_commands", "failedCommands"), "failed"),
        default_success=False,
    )

    changes = _as_list(_pick(data, "server_changes", "serverChanges"), "server_changes")
    for row in changes:
        if not isinstance(row, Mapping):
            raise ProtocolError(f"Server change row must be an object, got {type(row).__name__}")

    conflicts = [_parse_conflict(i) for i in _as_list(data.get("conflicts"), "conflicts")]

    folders_raw = data.get("folders")
    folders = None
    if folders_raw is not None:
        folders = [f for f in _as_list(folders_raw, "folders") if isinstance(f, Mapping)]

    return SyncResponse(
        success=success,
        server_timestamp=parse_timestamp(_pick(data, "server_timestamp", "serverTimestamp")),
        processed_commands=results,
        server_changes=list(changes),
        conflicts=conflicts,
        error_message=_opt_str(_pick(data, "error_message", "errorMessage", "error")),
        folders=folders,
        folder_version=_opt_str(_pick(data, "folder_version", "folderVersion")),
    )
