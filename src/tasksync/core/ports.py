# src/tasksync/core/ports.py

"""
Ports (interfaces) used by the sync core.

The core depends on Protocols instead of concrete implementations.
This keeps the transport, folder lookup and storage swappable and makes
testing easier.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..commands.models import Command
    from ..sync.wire import CommandBatch, SyncResponse
    from ..tasks.task_models import Folder, Task


class SyncTransport(Protocol):
    """Ships one command batch and returns the parsed server response."""

    async def send_batch(self, batch: CommandBatch) -> SyncResponse: ...


class FolderSource(Protocol):
    """Remote folder listing (used to refresh the folder cache)."""

    async def fetch_folders(self) -> list[Folder]: ...


class FolderDirectory(Protocol):
    """Folder-lookup service injected into the reconciler."""

    def list_folders(self) -> list[Folder]: ...
    def resolve_name(self, folder_id: str | None) -> str | None: ...


class TaskSink(Protocol):
    """Persistence sink for the reconciled base task set."""

    def save_tasks(self, tasks: Iterable[Task], last_sync: datetime | None = None) -> None: ...


class CommandSink(Protocol):
    """
    The only thing a command producer (slash commands, a journal parser, ...)
    may touch: it appends intents and never edits the log or the index.
    """

    def enqueue(self, command: Command) -> None: ...
