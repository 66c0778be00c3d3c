# tests/test_reconciler.py

from __future__ import annotations

import json
from datetime import timedelta

import pytest

from tasksync.commands.command_log import CommandLog
from tasksync.commands.models import CreateTaskCommand, DeleteTaskCommand, UpdateTaskCommand
from tasksync.errors import ProtocolError
from tasksync.sync.reconciler import Reconciler
from tasksync.sync.wire import parse_response
from tasksync.tasks.task_index import TaskIndex
from tasksync.tasks.task_models import SyncMarker, Task, TaskStatus

from .conftest import T0, USER


def _ack(cmd, success: bool = True, **extra) -> dict:
    return {"client_id": cmd.command_id, "command_type": cmd.type.value, "success": success, **extra}


def _response(*acks, changes=(), conflicts=(), **extra):
    body = {
        "success": True,
        "server_timestamp": "2026-10-19T12:00:00+00:00",
        "processed_commands": list(acks),
        "server_changes": list(changes),
        "conflicts": list(conflicts),
    }
    body.update(extra)
    return parse_response(body)


def _create(entity_id: str = "T1", title: str = "Buy milk") -> CreateTaskCommand:
    return CreateTaskCommand.create(entity_id=entity_id, user_id=USER, title=title, now=T0)


def _update(entity_id: str, changed: dict) -> UpdateTaskCommand:
    return UpdateTaskCommand.create(
        entity_id=entity_id, user_id=USER, changed_fields=changed, now=T0 + timedelta(minutes=1)
    )


def _delete(entity_id: str) -> DeleteTaskCommand:
    return DeleteTaskCommand.create(entity_id=entity_id, user_id=USER, now=T0 + timedelta(minutes=2))


def test_full_ack_empties_log_and_marks_synced(
    reconciler: Reconciler, command_log: CommandLog, index: TaskIndex
) -> None:
    create = _create()
    update = _update("T1", {"status": TaskStatus.COMPLETED})
    command_log.enqueue(create)
    command_log.enqueue(update)
    snapshot = command_log.pending_commands()

    result = reconciler.apply(_response(_ack(create), _ack(update)), snapshot)

    assert not command_log.has_pending()
    assert result.acknowledged == [create.command_id, update.command_id]
    task = index.get("T1")
    assert task is not None
    assert task.sync_marker is SyncMarker.SYNCED
    assert task.status is TaskStatus.COMPLETED
    assert index.last_sync is not None
    (visible,) = command_log.projected_tasks(index.values())
    assert visible.sync_marker is SyncMarker.SYNCED


def test_acknowledged_delete_suppresses_stale_server_row(
    reconciler: Reconciler, command_log: CommandLog, index: TaskIndex
) -> None:
    index.replace(TaskIndex([Task(id="T1", title="Buy milk")]))
    delete = _delete("T1")
    command_log.enqueue(delete)
    assert command_log.projected_tasks(index.values()) == []

    result = reconciler.apply(
        _response(_ack(delete), changes=[{"task_id": "T1", "title": "Buy milk (stale)"}]),
        command_log.pending_commands(),
    )

    assert index.get("T1") is None
    assert result.suppressed == 1
    assert not command_log.has_pending()


def test_server_assigned_id_remaps_task_and_later_commands(
    reconciler: Reconciler, command_log: CommandLog, index: TaskIndex
) -> None:
    create = _create("local-1")
    command_log.enqueue(create)
    snapshot = command_log.pending_commands()
    # Enqueued while the round is in flight: not part of the snapshot.
    late = _update("local-1", {"title": "Buy oat milk"})
    command_log.enqueue(late)

    result = reconciler.apply(_response(_ack(create, server_id="srv-1")), snapshot)

    assert result.remaps == {"local-1": "srv-1"}
    assert index.get("local-1") is None
    assert index.get("srv-1") is not None
    (remaining,) = command_log.pending_commands()
    assert remaining.command_id == late.command_id
    assert remaining.entity_id == "srv-1"
    (visible,) = command_log.projected_tasks(index.values())
    assert (visible.id, visible.title) == ("srv-1", "Buy oat milk")


def test_update_in_same_batch_follows_remap(
    reconciler: Reconciler, command_log: CommandLog, index: TaskIndex
) -> None:
    create = _create("local-1")
    update = _update("local-1", {"description": "2 liters"})
    command_log.enqueue(create)
    command_log.enqueue(update)

    reconciler.apply(
        _response(_ack(create, server_id="srv-1"), _ack(update)), command_log.pending_commands()
    )

    task = index.get("srv-1")
    assert task is not None and task.description == "2 liters"
    assert not command_log.has_pending()


def test_failed_ack_stays_queued_and_is_reported(
    reconciler: Reconciler, command_log: CommandLog, index: TaskIndex, settings
) -> None:
    ok = _create("T1")
    bad = _create("T2", "Rejected")
    unmentioned = _create("T3", "Not processed")
    for c in (ok, bad, unmentioned):
        command_log.enqueue(c)

    result = reconciler.apply(
        _response(_ack(ok), _ack(bad, success=False, error_message="quota")),
        command_log.pending_commands(),
    )

    assert [c.command_id for c in command_log.pending_commands()] == [bad.command_id, unmentioned.command_id]
    assert [f.client_id for f in result.failed] == [bad.command_id]
    assert index.ids() == {"T1"}

    report = json.loads(settings.failed_commands_path.read_text("utf-8"))
    assert report["failures"][0]["error_message"] == "quota"


def test_server_wins_and_folder_name_is_resolved(
    reconciler: Reconciler, command_log: CommandLog, index: TaskIndex
) -> None:
    index.replace(
        TaskIndex([Task(id="s1", title="Local title", description="local", folder_id="f1", folder_name="Home")])
    )

    reconciler.apply(
        _response(changes=[{"id": "s1", "data": {"title": "Server title", "folder_id": "f2"}}]),
        [],
    )

    task = index.get("s1")
    assert task is not None
    assert task.title == "Server title"
    assert task.description == "local"
    assert (task.folder_id, task.folder_name) == ("f2", "Work")


def test_response_folders_take_precedence_for_names(
    reconciler: Reconciler, index: TaskIndex
) -> None:
    reconciler.apply(
        _response(
            changes=[{"task_id": "s1", "title": "x", "folderId": "f9"}],
            folders=[{"folder_id": "f9", "folder_name": "Errands"}],
        ),
        [],
    )
    task = index.get("s1")
    assert task is not None and task.folder_name == "Errands"


def test_folder_lookup_failure_does_not_fail_sync(
    reconciler: Reconciler, index: TaskIndex, folders
) -> None:
    folders.broken = True
    reconciler.apply(_response(changes=[{"task_id": "s1", "title": "x", "folder_id": "f1"}]), [])
    task = index.get("s1")
    assert task is not None and task.folder_name is None


def test_conflict_server_side_wins(reconciler: Reconciler, index: TaskIndex) -> None:
    index.replace(TaskIndex([Task(id="s1", title="Mine")]))
    result = reconciler.apply(
        _response(
            conflicts=[
                {
                    "entity_id": "s1",
                    "conflict_type": "concurrent_update",
                    "server_data": {"title": "Theirs"},
                    "client_data": {"title": "Mine"},
                }
            ]
        ),
        [],
    )
    assert result.conflicts == 1
    task = index.get("s1")
    assert task is not None and task.title == "Theirs"


def test_server_row_with_deleted_at_removes_task(reconciler: Reconciler, index: TaskIndex) -> None:
    index.replace(TaskIndex([Task(id="s1", title="Gone soon")]))
    reconciler.apply(_response(changes=[{"task_id": "s1", "deleted_at": "2026-10-19T10:00:00"}]), [])
    assert index.get("s1") is None


def test_server_reported_failure_changes_nothing(
    reconciler: Reconciler, command_log: CommandLog, index: TaskIndex
) -> None:
    create = _create()
    command_log.enqueue(create)

    with pytest.raises(ProtocolError, match="maintenance"):
        reconciler.apply(parse_response({"success": False, "error_message": "maintenance"}), [create])

    assert len(command_log) == 1
    assert len(index) == 0


def test_error_mid_reconciliation_is_atomic(
    reconciler: Reconciler, command_log: CommandLog, index: TaskIndex, monkeypatch
) -> None:
    index.replace(TaskIndex([Task(id="s0", title="Untouched")]))
    create = _create()
    command_log.enqueue(create)

    def boom(*_a, **_k):
        raise RuntimeError("assembler bug")

    monkeypatch.setattr(reconciler._assembler, "merge", boom)

    with pytest.raises(ProtocolError):
        reconciler.apply(
            _response(_ack(create), changes=[{"task_id": "s1", "title": "x"}]),
            command_log.pending_commands(),
        )

    assert len(command_log) == 1
    assert index.ids() == {"s0"}
    assert index.last_sync is None


def test_ack_without_client_id_matches_by_entity(
    reconciler: Reconciler, command_log: CommandLog, index: TaskIndex
) -> None:
    create = _create("T1")
    command_log.enqueue(create)

    reconciler.apply(
        _response({"entity_id": "T1", "type": "CREATE", "success": True}), command_log.pending_commands()
    )

    assert not command_log.has_pending()
    assert index.get("T1") is not None


def test_malformed_ack_leaves_only_its_command_queued(
    reconciler: Reconciler, command_log: CommandLog, index: TaskIndex
) -> None:
    good = _create("T1")
    other = _create("T2", "Call mom")
    command_log.enqueue(good)
    command_log.enqueue(other)

    result = reconciler.apply(
        _response(
            _ack(good),
            {"client_id": other.command_id, "command_type": "CREATE_TASK"},
            changes=[{"task_id": "s9", "title": "From server"}],
        ),
        command_log.pending_commands(),
    )

    assert result.acknowledged == [good.command_id]
    assert [c.command_id for c in command_log.pending_commands()] == [other.command_id]
    assert index.ids() == {"T1", "s9"}
    assert index.last_sync is not None
