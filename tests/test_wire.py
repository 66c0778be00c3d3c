# tests/test_wire.py

from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest

from tasksync.commands.models import CommandType
from tasksync.errors import ProtocolError
from tasksync.sync.wire import parse_response, parse_timestamp


def test_parse_standard_response() -> None:
    resp = parse_response(
        {
            "success": True,
            "server_timestamp": "2026-10-19T12:00:00Z",
            "processed_commands": [
                {"client_id": "c1", "command_type": "CREATE_TASK", "success": True, "server_id": "s1"},
                {"client_id": "c2", "command_type": "UPDATE", "success": False, "error_message": "nope"},
            ],
            "server_changes": [{"task_id": "s1", "title": "x"}],
            "conflicts": [
                {"entity_id": "s2", "conflict_type": "update", "server_data": {"id": "s2"}, "client_data": {}}
            ],
        }
    )
    assert resp.success
    assert resp.server_timestamp == datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    ok, failed = resp.processed_commands
    assert (ok.client_id, ok.command_type, ok.server_id) == ("c1", CommandType.CREATE_TASK, "s1")
    assert (failed.success, failed.command_type, failed.error_message) == (False, CommandType.UPDATE_TASK, "nope")
    assert resp.conflicts[0].entity_id == "s2"
    assert resp.folders is None


def test_parse_legacy_aliases() -> None:
    resp = parse_response(
        {
            "success": [{"commandId": "c1", "type": "DELETE", "success": True, "entityId": "t1"}],
            "failed": [{"commandId": "c2", "error": "boom"}],
            "serverTimestamp": 1792422000,
            "serverChanges": [],
            "errorMessage": None,
            "folders": [{"id": "f1", "name": "Home"}],
            "folderVersion": "v3",
        }
    )
    assert resp.success
    first, second = resp.processed_commands
    assert (first.client_id, first.command_type, first.entity_id) == ("c1", CommandType.DELETE_TASK, "t1")
    assert (second.client_id, second.success, second.error_message) == ("c2", False, "boom")
    assert resp.server_timestamp is not None
    assert resp.folders == [{"id": "f1", "name": "Home"}]
    assert resp.folder_version == "v3"


def test_server_reported_failure_is_parsed_not_raised() -> None:
    resp = parse_response({"success": False, "error": "maintenance"})
    assert not resp.success
    assert resp.error_message == "maintenance"


@pytest.mark.parametrize(
    "body",
    [
        [],
        "ok",
        {"processed_commands": {"client_id": "c1"}},
        {"server_changes": ["row"]},
        {"server_timestamp": "yesterday"},
    ],
)
def test_malformed_responses_raise_protocol_error(body) -> None:
    with pytest.raises(ProtocolError):
        parse_response(body)


def test_parse_timestamp_variants() -> None:
    assert parse_timestamp(None) is None
    assert parse_timestamp("2026-10-19T12:00:00+00:00").tzinfo is not None
    ms = parse_timestamp(1792422000000)
    s = parse_timestamp(1792422000)
    assert ms == s


def test_malformed_ack_is_skipped_not_fatal(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="tasksync.sync.wire"):
        resp = parse_response(
            {
                "success": True,
                "server_timestamp": "2026-10-19T12:00:00Z",
                "processed_commands": [
                    {"client_id": "c1", "command_type": "CREATE_TASK", "success": True},
                    {"client_id": "c2", "command_type": "UPDATE_TASK"},
                    "c3",
                ],
                "server_changes": [{"task_id": "s1", "title": "x"}],
            }
        )

    assert [r.client_id for r in resp.processed_commands] == ["c1"]
    assert len(resp.server_changes) == 1
    assert resp.server_timestamp is not None
    assert "malformed" in caplog.text
