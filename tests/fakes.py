# tests/fakes.py

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from tasksync.errors import NetworkError
from tasksync.sync.wire import CommandBatch, SyncResponse, parse_response
from tasksync.tasks.task_models import Folder

ResponseFactory = Callable[[CommandBatch], Any]


def ack_all(batch: CommandBatch, **extra: Any) -> dict[str, Any]:
    """A response body acknowledging every command of batch."""
    body: dict[str, Any] = {
        "success": True,
        "server_timestamp": "2026-10-19T12:00:00+00:00",
        "processed_commands": [
            {"client_id": c["client_id"], "command_type": c["command_type"], "success": True}
            for c in batch.commands
        ],
        "server_changes": [],
        "conflicts": [],
    }
    body.update(extra)
    return body


class FakeTransport:
    """
    Deterministic SyncTransport for unit tests.

    - Captures every batch for assertions
    - Answers from a queue of responses (dict bodies, SyncResponse, callables
      taking the batch, or exceptions to raise); defaults to ack_all
    - Optional gate: send_batch waits on it, to hold a round in flight
    """

    def __init__(self, *responses: Any) -> None:
        self.responses: list[Any] = list(responses)
        self.batches: list[CommandBatch] = []
        self.gate: asyncio.Event | None = None
        self.started = 0
        self.folders: list[Folder] = []
        self.folder_calls = 0

    async def send_batch(self, batch: CommandBatch) -> SyncResponse:
        self.started += 1
        self.batches.append(batch)
        if self.gate is not None:
            await self.gate.wait()

        answer: Any = self.responses.pop(0) if self.responses else ack_all
        if isinstance(answer, BaseException):
            raise answer
        if callable(answer):
            answer = answer(batch)
        if isinstance(answer, SyncResponse):
            return answer
        return parse_response(answer)

    async def fetch_folders(self) -> list[Folder]:
        self.folder_calls += 1
        return list(self.folders)


@dataclass(slots=True)
class FakeFolderSource:
    folders: list[Folder] = field(default_factory=list)
    fail: bool = False
    calls: int = 0

    async def fetch_folders(self) -> list[Folder]:
        self.calls += 1
        if self.fail:
            raise NetworkError("folders unavailable")
        return list(self.folders)


@dataclass(slots=True)
class FakeFolderDirectory:
    names: dict[str, str] = field(default_factory=dict)
    broken: bool = False

    def list_folders(self) -> list[Folder]:
        return [Folder(folder_id=k, folder_name=v) for k, v in self.names.items()]

    def resolve_name(self, folder_id: str | None) -> str | None:
        if self.broken:
            raise RuntimeError("lookup exploded")
        return self.names.get(folder_id or "")

