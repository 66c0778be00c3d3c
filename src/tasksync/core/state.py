# src/tasksync/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..commands.command_log import CommandLog
from ..sync.client import HttpSyncClient
from ..sync.folders import FolderCache
from ..sync.orchestrator import SyncOrchestrator
from ..tasks.task_index import TaskIndex
from ..tasks.task_models import Task
from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    """
    Everything the running app shares, owned by the event loop thread.

    Command producers only go through command_log.enqueue(); the index is
    written by the reconciler alone.
    """

    # Store Settings on the state for easy access in other modules later.
    settings: Any

    command_log: CommandLog
    index: TaskIndex
    task_store: TaskStore | None
    folders: FolderCache
    orchestrator: SyncOrchestrator
    transport: HttpSyncClient | None = None

    @property
    def user_id(self) -> str:
        return self.command_log.user_id

    def visible_tasks(self) -> list[Task]:
        """Base snapshot with queued commands replayed (local-first view)."""
        return self.command_log.projected_tasks(self.index.values())

    def find_task(self, task_id_or_prefix: str) -> Task | None:
        """Exact id, else a unique id prefix."""
        tasks = self.visible_tasks()
        for t in tasks:
            if t.id == task_id_or_prefix:
                return t
        matches = [t for t in tasks if t.id.startswith(task_id_or_prefix)]
        return matches[0] if len(matches) == 1 else None

    @property
    def last_synced_at(self) -> datetime | None:
        """Staleness indicator: last successful round, else the stored cursor."""
        return self.orchestrator.last_synced_at or self.index.last_sync
