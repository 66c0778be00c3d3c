# tests/conftest.py

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

from tasksync.cli.bootstrap import create_initial_state
from tasksync.commands.command_log import CommandLog
from tasksync.core.state import AppState
from tasksync.sync.assembler import TaskAssembler
from tasksync.sync.reconciler import Reconciler
from tasksync.tasks.task_index import TaskIndex

from .fakes import FakeFolderDirectory, FakeTransport

USER = "user-1"
T0 = datetime(2026, 10, 19, 9, 0, 0)


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="tasksync-test",
        log_level="DEBUG",
        user_id=USER,
        api_base_url="https://sync.example.test",
        api_token="secret",
        sync_path="/api/v2/sync/commands",
        folders_path="/api/v2/folders",
        connect_timeout_seconds=1.0,
        read_timeout_seconds=1.0,
        sync_interval_seconds=0.01,
        # Tests trigger rounds explicitly.
        sync_on_mutation=False,
        folder_cache_ttl_seconds=3600.0,
        user_utc_offset_hours=-3,
        console_enabled=False,
        data_dir=tmp_path,
        # Paths (tmp per test run)
        commands_path=tmp_path / USER / "pending_commands.json",
        tasks_db_path=tmp_path / USER / "tasks.sqlite3",
        folder_cache_path=tmp_path / USER / "folder_cache.json",
        failed_commands_path=tmp_path / USER / "failed_commands.json",
    )


@pytest.fixture()
def command_log(settings: SimpleNamespace) -> CommandLog:
    return CommandLog(USER, settings.commands_path)


@pytest.fixture()
def index() -> TaskIndex:
    return TaskIndex()


@pytest.fixture()
def folders() -> FakeFolderDirectory:
    return FakeFolderDirectory({"f1": "Home", "f2": "Work"})


@pytest.fixture()
def reconciler(index: TaskIndex, command_log: CommandLog, folders, settings) -> Reconciler:
    return Reconciler(
        index,
        command_log,
        assembler=TaskAssembler(utc_offset_hours=-3),
        folders=folders,
        failed_report_path=settings.failed_commands_path,
    )


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def state(settings: SimpleNamespace, transport: FakeTransport) -> AppState:
    """
    AppState wired through the real bootstrap with a fake transport.

    NOTE: We keep the real SQLite store and JSON command log here because
    their correctness is part of what we want to test.
    """
    return create_initial_state(settings=settings, transport=transport)
