# src/tasksync/commands/command_log.py

from __future__ import annotations

import contextlib
import logging
import os
import threading
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path

from ..errors import PersistenceError, ValidationError
from ..tasks.task_models import Task
from . import serializer
from .models import Command, CommandType
from .projector import project

logger = logging.getLogger(__name__)

CommandListener = Callable[[Command], None]


class CommandLog:
    """
    Durable, ordered, per-user queue of commands not yet acknowledged by the server.

    Persistence:
    - the whole log is rewritten (tmp file + os.replace) after every mutation
    - an unreadable file at startup is logged and treated as an empty log;
      the damaged file is moved aside as *.corrupt.json
    - a failed write degrades the log to in-memory-only (degraded=True) until
      a later write succeeds

    Thread-safety:
    - every public method takes the same re-entrant lock, so an enqueue from
      the UI side never interleaves with a snapshot taken by a sync round
    """

    def __init__(self, user_id: str, path: str | Path | None = None) -> None:
        if not user_id:
            raise ValueError("user_id is required")
        self._user_id = user_id
        self._path = Path(path) if path is not None else None
        self._lock = threading.RLock()
        self._commands: list[Command] = []
        self._listeners: list[CommandListener] = []
        self._degraded = False

        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._commands = self._load()
        logger.info(
            "CommandLog ready user=%s path=%s pending=%d",
            self._user_id,
            self._path,
            len(self._commands),
        )

    # ---- properties ----

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def degraded(self) -> bool:
        """True while the on-disk copy is known to be stale."""
        return self._degraded

    def __len__(self) -> int:
        with self._lock:
            return len(self._commands)

    def has_pending(self) -> bool:
        return len(self) > 0

    # ---- listeners ----

    def add_listener(self, listener: CommandListener) -> None:
        """Called after every successful enqueue (e.g. to request a sync)."""
        self._listeners.append(listener)

    # ---- public API ----

    def enqueue(self, command: Command) -> None:
        if command.user_id != self._user_id:
            raise ValidationError(
                f"Command user {command.user_id!r} does not match log owner {self._user_id!r}"
            )

        with self._lock:
            self._commands.append(command)
            self._persist()

        logger.info("Command enqueued: %s for entity %s", command.type.value, command.entity_id)

        for listener in list(self._listeners):
            try:
                listener(command)
            except Exception:
                logger.exception("Command listener failed for %s", command.command_id)

    def projected_tasks(self, base_tasks: Iterable[Task]) -> list[Task]:
        """Current visible tasks: base snapshot with every queued command replayed."""
        return project(base_tasks, self.pending_commands())

    def pending_commands(self) -> list[Command]:
        """Snapshot copy, safe to iterate while the log keeps changing."""
        with self._lock:
            return list(self._commands)

    def remove_commands(self, command_ids: Iterable[str]) -> int:
        """Drop only the named commands (partial acknowledgement). Returns how many were removed."""
        ids = set(command_ids)
        if not ids:
            return 0
        with self._lock:
            before = len(self._commands)
            self._commands = [c for c in self._commands if c.command_id not in ids]
            removed = before - len(self._commands)
            if removed:
                self._persist()
        logger.info("Removed %d command(s) from log", removed)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._commands = []
            self._persist()
        logger.info("Command log cleared")

    def remap_entity(self, old_id: str, new_id: str) -> int:
        """Point every queued command for old_id at new_id. Returns how many were rewritten."""
        return self.acknowledge((), {old_id: new_id})

    def acknowledge(self, command_ids: Iterable[str], remaps: Mapping[str, str]) -> int:
        """
        Apply the outcome of a sync round in one write: drop the acknowledged
        commands, then rewrite entity ids of the survivors through remaps.
        Returns the number of commands whose entity id changed.
        """
        ids = set(command_ids)
        with self._lock:
            kept: list[Command] = []
            rewritten = 0
            for c in self._commands:
                if c.command_id in ids:
                    continue
                target = resolve_remap(remaps, c.entity_id)
                if target != c.entity_id:
                    c = c.with_entity_id(target)
                    rewritten += 1
                kept.append(c)
            changed = rewritten > 0 or len(kept) != len(self._commands)
            self._commands = kept
            if changed:
                self._persist()
        if rewritten:
            logger.info("Remapped %d queued command(s) to server ids", rewritten)
        return rewritten

    def orphan_commands(self, known_ids: Iterable[str]) -> list[Command]:
        """
        Integrity check: Update/Delete commands whose entity is neither in
        known_ids nor created earlier in the log. They project as no-ops.
        """
        seen = set(known_ids)
        orphans: list[Command] = []
        for c in self.pending_commands():
            if c.type == CommandType.CREATE_TASK:
                seen.add(c.entity_id)
            elif c.entity_id not in seen:
                orphans.append(c)
        return orphans

    # ---- persistence ----

    def _persist(self) -> None:
        if self._path is None:
            return
        try:
            self._write(serializer.dumps(self._commands, user_id=self._user_id))
        except PersistenceError:
            if not self._degraded:
                logger.exception("Command log persistence failed; continuing in memory only")
            self._degraded = True
            return
        if self._degraded:
            logger.info("Command log persistence recovered (%s)", self._path)
        self._degraded = False

    def _write(self, payload: str) -> None:
        assert self._path is not None
        tmp = self._path.with_suffix(".tmp")
        try:
            tmp.write_text(payload, "utf-8")
            os.replace(tmp, self._path)
        except OSError as e:
            raise PersistenceError(f"Cannot write command log {self._path}: {e}") from e
        with contextlib.suppress(OSError):
            os.chmod(self._path, 0o600)

    def _load(self) -> list[Command]:
        assert self._path is not None
        if not self._path.exists():
            return []
        try:
            raw = self._path.read_text("utf-8")
            if not raw.strip():
                return []
            commands = serializer.loads(raw)
        except (OSError, ValueError) as e:
            # Accepted risk: local commands may be lost; startup must not fail.
            logger.error("Failed to load command log %s, starting empty: %s", self._path, e)
            with contextlib.suppress(OSError):
                os.replace(self._path, self._path.with_suffix(".corrupt.json"))
            return []

        foreign = [c for c in commands if c.user_id != self._user_id]
        if foreign:
            logger.warning(
                "Dropping %d command(s) owned by another user from %s", len(foreign), self._path
            )
            commands = [c for c in commands if c.user_id == self._user_id]

        logger.info("Loaded %d command(s) from %s", len(commands), self._path)
        return commands


def resolve_remap(remaps: Mapping[str, str], entity_id: str) -> str:
    """Follow remap chains (a -> b -> c) to the final id."""
    seen: set[str] = set()
    while entity_id in remaps and entity_id not in seen:
        seen.add(entity_id)
        entity_id = remaps[entity_id]
    return entity_id
