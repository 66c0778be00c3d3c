# tests/test_config.py

from __future__ import annotations

import os
from pathlib import Path

import pytest

from tasksync.config import Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    for name in list(os.environ):
        if name.startswith("TASKSYNC_"):
            monkeypatch.delenv(name, raising=False)


def test_defaults_work_offline() -> None:
    s = Settings.from_env()

    assert s.app_name == "tasksync"
    assert s.user_id == ""
    assert s.api_base_url == ""
    assert s.api_token is None
    assert s.sync_interval_seconds == 60.0
    assert s.sync_on_mutation is True
    assert s.user_utc_offset_hours == -3
    assert not s.sync_enabled


def test_env_overrides_and_derived_paths(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TASKSYNC_USER_ID", " alice ")
    monkeypatch.setenv("TASKSYNC_API_BASE_URL", "https://sync.example.test/")
    monkeypatch.setenv("TASKSYNC_API_TOKEN", "tok")
    monkeypatch.setenv("TASKSYNC_SYNC_INTERVAL_SECONDS", "15")
    monkeypatch.setenv("TASKSYNC_SYNC_ON_MUTATION", "no")
    monkeypatch.setenv("TASKSYNC_USER_UTC_OFFSET_HOURS", "2")
    monkeypatch.setenv("TASKSYNC_DATA_DIR", str(tmp_path))

    s = Settings.from_env()

    assert s.user_id == "alice"
    assert s.api_base_url == "https://sync.example.test"
    assert s.api_token == "tok"
    assert s.sync_interval_seconds == 15.0
    assert s.sync_on_mutation is False
    assert s.user_utc_offset_hours == 2
    assert s.sync_enabled
    assert s.commands_path == tmp_path / "alice" / "pending_commands.json"
    assert s.tasks_db_path == tmp_path / "alice" / "tasks.sqlite3"
    assert s.failed_commands_path.parent == s.user_dir


def test_bad_numbers_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("TASKSYNC_SYNC_INTERVAL_SECONDS", "often")
    monkeypatch.setenv("TASKSYNC_USER_UTC_OFFSET_HOURS", "")

    s = Settings.from_env()

    assert s.sync_interval_seconds == 60.0
    assert s.user_utc_offset_hours == -3
