# src/tasksync/tasks/task_index.py

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from datetime import datetime

from .task_models import Task

logger = logging.getLogger(__name__)


class TaskIndex:
    """
    In-memory base snapshot: tasks as last confirmed by the server, plus the
    sync cursor (last_sync).

    Only the reconciler writes here. The visible list is always
    CommandLog.projected_tasks(index.values()).

    The reconciler works on a plain dict copy of values() and publishes the
    result with replace(), so readers never observe a half-applied response.
    """

    def __init__(self, tasks: Iterable[Task] = (), last_sync: datetime | None = None) -> None:
        self._lock = threading.RLock()
        self._tasks: dict[str, Task] = {t.id: t for t in tasks}
        self._last_sync = last_sync

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    @property
    def last_sync(self) -> datetime | None:
        return self._last_sync

    def get(self, task_id: str) -> Task | None:
        with self._lock:
            return self._tasks.get(task_id)

    def values(self) -> list[Task]:
        with self._lock:
            return list(self._tasks.values())

    def ids(self) -> set[str]:
        with self._lock:
            return set(self._tasks)

    def replace(self, other: TaskIndex) -> None:
        """Adopt the content of other (used to commit a reconciled working copy)."""
        tasks = other.values()
        with self._lock:
            self._tasks = {t.id: t for t in tasks}
            self._last_sync = other.last_sync
        logger.debug("Task index replaced: %d task(s), last_sync=%s", len(tasks), other.last_sync)
