# tests/test_translator.py

from __future__ import annotations

import logging
from datetime import datetime, timezone

from tasksync.commands.models import CreateTaskCommand, DeleteTaskCommand, UpdateTaskCommand
from tasksync.sync.translator import build_batch, to_sync_command
from tasksync.tasks.task_models import TaskStatus

from .conftest import T0, USER

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def test_create_carries_full_state_in_data() -> None:
    cmd = CreateTaskCommand.create(
        entity_id="t1",
        user_id=USER,
        title="Buy milk",
        status=TaskStatus.IN_PROGRESS,
        due_date=datetime(2026, 10, 20, 9, 30),
        folder_id="f1",
        now=T0,
    )
    wire = to_sync_command(cmd, now=NOW)

    assert wire is not None
    assert wire["command_type"] == "CREATE_TASK"
    assert wire["entity_type"] == "task"
    assert wire["entity_id"] == "t1"
    assert wire["client_id"] == cmd.command_id
    assert wire["timestamp"] == T0.isoformat()
    assert wire["data"] == {
        "title": "Buy milk",
        "description": None,
        "status": "in_progress",
        "dueDate": "2026-10-20T09:30:00",
        "folderId": "f1",
        "created_at": NOW.isoformat(),
    }
    assert "changedFields" not in wire


def test_update_flattens_and_renames_changed_fields() -> None:
    cmd = UpdateTaskCommand.create(
        entity_id="t1",
        user_id=USER,
        changed_fields={
            "status": TaskStatus.COMPLETED,
            "folderId": "f2",
            "dueDate": datetime(2026, 10, 21),
            "title": "Buy oat milk",
        },
        now=T0,
    )
    wire = to_sync_command(cmd)

    assert wire is not None
    assert wire["command_type"] == "UPDATE_TASK"
    assert wire["data"] == {}
    assert wire["changedFields"] == {
        "status": "completed",
        "folder_id": "f2",
        "due_date": "2026-10-21T00:00:00",
        "title": "Buy oat milk",
    }


def test_delete_has_empty_data() -> None:
    cmd = DeleteTaskCommand.create(entity_id="t1", user_id=USER, reason="User deleted", now=T0)
    wire = to_sync_command(cmd)
    assert wire is not None
    assert wire["command_type"] == "DELETE_TASK"
    assert wire["data"] == {}


def test_unknown_command_is_dropped_with_warning(caplog) -> None:
    class ArchiveCommand:
        type = "ARCHIVE_TASK"
        command_id = "c-1"

    with caplog.at_level(logging.WARNING, logger="tasksync.sync.translator"):
        assert to_sync_command(ArchiveCommand()) is None  # type: ignore[arg-type]
    assert "unsupported" in caplog.text


def test_build_batch_skips_untranslatable_commands() -> None:
    class ArchiveCommand:
        type = "ARCHIVE_TASK"
        command_id = "c-1"

    create = CreateTaskCommand.create(entity_id="t1", user_id=USER, title="x", now=T0)
    batch = build_batch(USER, [create, ArchiveCommand()], last_sync=None, now=NOW)  # type: ignore[list-item]

    payload = batch.to_payload()
    assert payload["user_id"] == USER
    assert payload["client_timestamp"] == NOW.isoformat()
    assert payload["last_sync"] is None
    assert [c["client_id"] for c in payload["commands"]] == [create.command_id]
