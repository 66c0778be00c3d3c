# src/tasksync/tasks/task_api.py

"""
Command producer helpers.

These only build commands and hand them to a CommandSink. They never touch
the task index: the new state becomes visible through the projection.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from ..commands.models import CreateTaskCommand, DeleteTaskCommand, UpdateTaskCommand
from ..core.ports import CommandSink
from .task_models import TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_DELETE_REASON = "User deleted"


def new_task_id() -> str:
    return str(uuid.uuid4())


def create_task(
    sink: CommandSink,
    user_id: str,
    *,
    title: str,
    description: str | None = None,
    status: TaskStatus = TaskStatus.PENDING,
    due_date: datetime | None = None,
    folder_id: str | None = None,
    task_id: str | None = None,
    now: datetime | None = None,
) -> str:
    """Enqueue a Create and return the client-side task id."""
    if not title or not title.strip():
        raise ValueError("title is required")
    if status.is_virtual:
        raise ValueError(f"status {status.value!r} is derived and cannot be stored")

    entity_id = task_id or new_task_id()
    sink.enqueue(
        CreateTaskCommand.create(
            entity_id=entity_id,
            user_id=user_id,
            title=title.strip(),
            description=description,
            status=status,
            due_date=due_date,
            folder_id=folder_id,
            now=now,
        )
    )
    return entity_id


def update_task(
    sink: CommandSink,
    user_id: str,
    task_id: str,
    changes: Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> bool:
    """
    Enqueue an Update with only the keys actually given.
    An empty change set enqueues nothing and returns False.
    """
    changed = dict(changes)
    if not changed:
        logger.debug("update_task(%s): nothing changed", task_id)
        return False
    sink.enqueue(
        UpdateTaskCommand.create(entity_id=task_id, user_id=user_id, changed_fields=changed, now=now)
    )
    return True


def complete_task(
    sink: CommandSink, user_id: str, task_id: str, *, now: datetime | None = None
) -> bool:
    return update_task(sink, user_id, task_id, {"status": TaskStatus.COMPLETED}, now=now)


def delete_task(
    sink: CommandSink,
    user_id: str,
    task_id: str,
    *,
    reason: str | None = DEFAULT_DELETE_REASON,
    now: datetime | None = None,
) -> None:
    sink.enqueue(DeleteTaskCommand.create(entity_id=task_id, user_id=user_id, reason=reason, now=now))
