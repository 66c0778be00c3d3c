# src/tasksync/errors.py

"""
Error taxonomy for the offline command log and sync engine.

Propagation rules:
- ValidationError is raised before anything is enqueued.
- PersistenceError never escapes the command log at runtime; the log degrades
  to in-memory-only and logs at ERROR.
- NetworkError / ProtocolError abort the current sync round and leave the
  command log untouched.
- MergeAmbiguity stays inside the assembler: the affected attribute resolves
  to "unset" and the rest of the payload is still merged.
"""

from __future__ import annotations


class TaskSyncError(Exception):
    """Base class for all tasksync errors."""


class ValidationError(TaskSyncError):
    """A command does not belong to the log it is being enqueued into."""


class PersistenceError(TaskSyncError):
    """The on-disk command log (or task store) cannot be read or written."""


class NetworkError(TaskSyncError):
    """Transport failure: connection, timeout, or non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(TaskSyncError):
    """Malformed, partial or server-rejected sync response."""


class MergeAmbiguity(TaskSyncError):
    """A payload carries none of the accepted keys for an attribute."""

    def __init__(self, keys: tuple[str, ...]) -> None:
        super().__init__(f"none of the keys present: {', '.join(keys)}")
        self.keys = keys
