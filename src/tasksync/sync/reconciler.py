# src/tasksync/sync/reconciler.py

"""
Reconciler: applies one sync response onto local state.

Atomicity:
- everything is computed on a working copy of the base index
- the index and the command log are only touched at commit time
- any error before commit aborts the whole response (ProtocolError),
  except errors while applying a single acknowledgement, which only keep
  that command queued

Order of application:
1. ids of acknowledged deletes (the anti-resurrection set)
2. acknowledgements, in command log order (creates/updates are folded into
   the base and marked synced, deletes remove the task, server ids remap)
3. server change rows (server wins), skipping ids deleted in this response
4. server side of conflicts, same as change rows
5. sync cursor
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from ..commands.command_log import CommandLog, resolve_remap
from ..commands.models import Command, CommandType, DeleteTaskCommand
from ..commands.projector import apply_command
from ..core.ports import FolderDirectory
from ..errors import ProtocolError
from ..tasks.task_index import TaskIndex
from ..tasks.task_models import SyncMarker, Task
from .assembler import FOLDER_NAME_KEYS, TaskAssembler, payload_id
from .folders import folder_from_mapping
from .wire import CommandResult, SyncResponse

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReconcileResult:
    acknowledged: list[str] = field(default_factory=list)
    failed: list[CommandResult] = field(default_factory=list)
    remaps: dict[str, str] = field(default_factory=dict)
    upserted: int = 0
    removed: int = 0
    suppressed: int = 0
    conflicts: int = 0
    last_sync: datetime | None = None


def _row_payload(row: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten {"id": ..., "data": {...}} rows; nested data wins on clashes."""
    payload = {k: v for k, v in row.items() if k != "data"}
    nested = row.get("data")
    if isinstance(nested, Mapping):
        payload.update(nested)
    return payload


class Reconciler:
    def __init__(
        self,
        index: TaskIndex,
        command_log: CommandLog,
        *,
        assembler: TaskAssembler | None = None,
        folders: FolderDirectory | None = None,
        failed_report_path: str | Path | None = None,
    ) -> None:
        self._index = index
        self._log = command_log
        self._assembler = assembler or TaskAssembler()
        self._folders = folders
        self._failed_report_path = Path(failed_report_path) if failed_report_path else None

    def apply(self, response: SyncResponse, snapshot: Iterable[Command]) -> ReconcileResult:
        """
        Reconcile response against the commands that were shipped (snapshot).
        Commits atomically or raises ProtocolError with nothing changed.
        """
        if not response.success:
            raise ProtocolError(response.error_message or "Server reported sync failure")

        commands = list(snapshot)
        try:
            tasks = {t.id: t for t in self._index.values()}
            result = self._reconcile(tasks, response, commands)
        except ProtocolError:
            raise
        except Exception as e:
            logger.exception("Reconciliation aborted, nothing applied")
            raise ProtocolError(f"Reconciliation failed: {e}") from e

        # ---- commit ----
        self._index.replace(TaskIndex(tasks.values(), result.last_sync))
        self._log.acknowledge(result.acknowledged, result.remaps)

        if result.failed:
            self._write_failed_report(result.failed)

        logger.info(
            "Reconciled: acked=%d failed=%d upserted=%d removed=%d suppressed=%d conflicts=%d",
            len(result.acknowledged),
            len(result.failed),
            result.upserted,
            result.removed,
            result.suppressed,
            result.conflicts,
        )
        return result

    # ---- steps ----

    def _reconcile(
        self,
        tasks: dict[str, Task],
        response: SyncResponse,
        commands: list[Command],
    ) -> ReconcileResult:
        result = ReconcileResult(last_sync=response.server_timestamp or self._index.last_sync)
        acks = _match_acks(response.processed_commands, commands)

        just_deleted: set[str] = set()
        for command in commands:
            ack = acks.get(command.command_id)
            if ack is not None and ack.success and isinstance(command, DeleteTaskCommand):
                just_deleted.add(command.entity_id)

        for command in commands:
            ack = acks.get(command.command_id)
            if ack is None:
                logger.debug("No acknowledgement for %s, keeping it queued", command.command_id)
                continue
            if not ack.success:
                logger.warning(
                    "Command %s (%s) rejected by server: %s",
                    command.command_id,
                    command.type.value,
                    ack.error_message or "no reason given",
                )
                result.failed.append(ack)
                continue
            try:
                self._apply_ack(tasks, command, ack, result, just_deleted)
            except Exception:
                logger.exception("Failed to apply acknowledgement for %s", command.command_id)
                result.failed.append(ack)
                continue
            result.acknowledged.append(command.command_id)

        response_folders = _folder_names(response.folders)

        for row in response.server_changes:
            self._apply_server_row(tasks, _row_payload(row), None, result, just_deleted, response_folders)

        for conflict in response.conflicts:
            result.conflicts += 1
            logger.warning(
                "Conflict on %s (%s): server wins", conflict.entity_id, conflict.conflict_type
            )
            if conflict.client_data is not None:
                logger.debug("Discarded client side of conflict %s: %r", conflict.entity_id, dict(conflict.client_data))
            if conflict.server_data is None:
                continue
            self._apply_server_row(
                tasks,
                _row_payload(conflict.server_data),
                conflict.entity_id,
                result,
                just_deleted,
                response_folders,
            )

        return result

    def _apply_ack(
        self,
        tasks: dict[str, Task],
        command: Command,
        ack: CommandResult,
        result: ReconcileResult,
        just_deleted: set[str],
    ) -> None:
        entity_id = resolve_remap(result.remaps, command.entity_id)

        if command.type == CommandType.DELETE_TASK:
            if tasks.pop(entity_id, None) is not None:
                result.removed += 1
            just_deleted.add(entity_id)
            return

        apply_command(tasks, command.with_entity_id(entity_id))

        if command.type == CommandType.CREATE_TASK and ack.server_id and ack.server_id != entity_id:
            task = tasks.pop(entity_id, None)
            if task is not None:
                tasks[ack.server_id] = task.with_changes(id=ack.server_id)
            result.remaps[command.entity_id] = ack.server_id
            logger.info("Task %s remapped to server id %s", command.entity_id, ack.server_id)
            entity_id = ack.server_id

        task = tasks.get(entity_id)
        if task is not None:
            tasks[entity_id] = task.with_changes(
                sync_marker=SyncMarker.SYNCED,
                last_sync=result.last_sync,
            )

    def _apply_server_row(
        self,
        tasks: dict[str, Task],
        payload: dict[str, Any],
        fallback_id: str | None,
        result: ReconcileResult,
        just_deleted: set[str],
        response_folders: Mapping[str, str],
    ) -> None:
        task_id = payload_id(payload) or fallback_id
        if not task_id:
            logger.warning("Server change row without id ignored: %r", payload)
            return
        task_id = resolve_remap(result.remaps, task_id)

        if task_id in just_deleted:
            # Change feed predates the delete acknowledged in this same response.
            logger.debug("Suppressed stale server row for deleted task %s", task_id)
            result.suppressed += 1
            return

        existing = tasks.get(task_id)
        task = self._assembler.merge(task_id, existing, payload, result.last_sync)

        if task.folder_id and not any(payload.get(k) is not None for k in FOLDER_NAME_KEYS):
            name = response_folders.get(task.folder_id) or self._resolve_folder(task.folder_id)
            if name:
                task = task.with_changes(folder_name=name)
            elif existing is not None and existing.folder_id != task.folder_id:
                task = task.with_changes(folder_name=None)

        if task.is_deleted:
            if tasks.pop(task_id, None) is not None:
                result.removed += 1
            return

        tasks[task_id] = task
        result.upserted += 1

    def _resolve_folder(self, folder_id: str) -> str | None:
        if self._folders is None:
            return None
        try:
            return self._folders.resolve_name(folder_id)
        except Exception:
            # Folder names are cosmetic; never fail a sync over them.
            logger.debug("Folder name lookup failed for %s", folder_id, exc_info=True)
            return None

    # ---- diagnostics ----

    def _write_failed_report(self, failed: list[CommandResult]) -> None:
        if self._failed_report_path is None:
            return
        doc = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "failures": [
                {
                    "client_id": f.client_id,
                    "entity_id": f.entity_id,
                    "command_type": f.command_type.value if f.command_type else None,
                    "error_message": f.error_message,
                }
                for f in failed
            ],
        }
        path = self._failed_report_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(doc, ensure_ascii=False, indent=2), "utf-8")
            os.replace(tmp, path)
        except OSError:
            logger.exception("Failed to write failed-command report to %s", path)
            return
        with contextlib.suppress(OSError):
            os.chmod(path, 0o600)


def _match_acks(
    results: Iterable[CommandResult],
    commands: list[Command],
) -> dict[str, CommandResult]:
    """
    command_id -> acknowledgement.

    Results are matched by client_id; a result without one falls back to the
    first unmatched command with the same entity id (and type, when given).
    """
    known = {c.command_id for c in commands}
    out: dict[str, CommandResult] = {}
    unmatched: list[CommandResult] = []

    for r in results:
        if r.client_id and r.client_id in known:
            out[r.client_id] = r
        elif r.client_id:
            logger.debug("Acknowledgement for unknown command %s ignored", r.client_id)
        else:
            unmatched.append(r)

    for r in unmatched:
        for c in commands:
            if c.command_id in out or c.entity_id != r.entity_id:
                continue
            if r.command_type is not None and r.command_type != c.type:
                continue
            out[c.command_id] = r
            break
        else:
            logger.debug("Unmatched acknowledgement for entity %s ignored", r.entity_id)

    return out


def _folder_names(raw: list[Mapping[str, Any]] | None) -> dict[str, str]:
    if not raw:
        return {}
    names: dict[str, str] = {}
    for item in raw:
        folder = folder_from_mapping(item)
        if folder is not None and folder.folder_name:
            names[folder.folder_id] = folder.folder_name
    return names
