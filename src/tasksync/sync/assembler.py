# src/tasksync/sync/assembler.py

"""
Task assembler: heterogeneous server payload -> Task.

Every attribute has a fixed list of accepted keys, tried in order. Only the
attributes present in the payload are applied; the rest of an existing task
is left as it was. Dates go through a fallback chain and resolve to None
rather than raising.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from ..errors import MergeAmbiguity
from ..tasks.task_models import SyncMarker, Task, TaskStatus, to_user_time

logger = logging.getLogger(__name__)

ID_KEYS = ("task_id", "id", "entityId", "entity_id")
TITLE_KEYS = ("task_title", "title", "name")
DUE_KEYS = ("due_date", "dueDate")
CREATED_KEYS = ("created_at", "createdAt")
UPDATED_KEYS = ("updated_at", "updatedAt")
DELETED_KEYS = ("deleted_at", "deletedAt")
LAST_SYNC_KEYS = ("last_sync", "lastSync")
FOLDER_ID_KEYS = ("folder_id", "folderId")
FOLDER_NAME_KEYS = ("folder_name", "folderName", "folder", "folder_title")

# Values above this are taken as epoch milliseconds.
_EPOCH_MS_THRESHOLD = 1e11


def text_of(payload: Mapping[str, Any], *keys: str) -> str:
    """First non-null value among keys, as text. Raises MergeAmbiguity if none is present."""
    for k in keys:
        value = payload.get(k)
        if value is not None:
            return str(value)
    raise MergeAmbiguity(keys)


def payload_id(payload: Mapping[str, Any]) -> str | None:
    try:
        value = text_of(payload, *ID_KEYS).strip()
    except MergeAmbiguity:
        return None
    return value or None


def safe_title(title: str | None, task_id: str | None) -> str:
    if title is not None and title.strip():
        return title.strip()
    if task_id and len(task_id) >= 8:
        return f"Task {task_id[:8]}"
    return "Untitled"


def parse_datetime(value: Any, *, utc_offset_hours: int) -> datetime | None:
    """
    Fallback chain:
    1. timezone-aware ISO timestamp -> converted to the fixed user offset, made naive
    2. naive ISO timestamp -> as is
    3. epoch seconds or milliseconds -> converted to the fixed user offset
    Anything else resolves to None.
    """
    if value is None:
        return None
    zone = timezone(timedelta(hours=utc_offset_hours))

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return _from_epoch(float(value), zone)
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.lstrip("-").replace(".", "", 1).isdigit():
            # Digits only: an epoch instant, never a compact ISO date.
            return _from_epoch(float(text), zone)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable date value: %r", value)
            return None

    return to_user_time(parsed, utc_offset_hours)


def _from_epoch(raw: float, zone: timezone) -> datetime | None:
    seconds = raw / 1000.0 if abs(raw) > _EPOCH_MS_THRESHOLD else raw
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).astimezone(zone).replace(tzinfo=None)
    except (ValueError, OverflowError, OSError):
        return None


class TaskAssembler:
    """Merges server payloads into Task values using a fixed reference UTC offset."""

    def __init__(self, *, utc_offset_hours: int = -3) -> None:
        self._offset = int(utc_offset_hours)

    def time_of(self, payload: Mapping[str, Any], *keys: str) -> datetime | None:
        for k in keys:
            if payload.get(k) is not None:
                return parse_datetime(payload[k], utc_offset_hours=self._offset)
        raise MergeAmbiguity(keys)

    def merge(
        self,
        task_id: str,
        existing: Task | None,
        payload: Mapping[str, Any],
        last_sync: datetime | None = None,
    ) -> Task:
        """
        Build a Task for task_id from payload, starting from existing when given.

        The result is always marked SYNCED. A row without its own last_sync
        takes the handler's cursor.
        """
        changes: dict[str, Any] = {}

        try:
            changes["title"] = safe_title(text_of(payload, *TITLE_KEYS), task_id)
        except MergeAmbiguity:
            if existing is None:
                changes["title"] = safe_title(None, task_id)

        try:
            changes["description"] = text_of(payload, "description")
        except MergeAmbiguity:
            pass

        try:
            status = TaskStatus.parse(text_of(payload, "status"))
            if status is not None and not status.is_virtual:
                changes["status"] = status
        except MergeAmbiguity:
            pass

        for attr, keys in (
            ("due_date", DUE_KEYS),
            ("created_at", CREATED_KEYS),
            ("updated_at", UPDATED_KEYS),
            ("deleted_at", DELETED_KEYS),
        ):
            try:
                value = self.time_of(payload, *keys)
            except MergeAmbiguity:
                continue
            if value is not None:
                changes[attr] = value

        try:
            changes["last_sync"] = self.time_of(payload, *LAST_SYNC_KEYS) or last_sync
        except MergeAmbiguity:
            changes["last_sync"] = last_sync

        try:
            changes["folder_id"] = text_of(payload, *FOLDER_ID_KEYS)
        except MergeAmbiguity:
            pass

        try:
            changes["folder_name"] = text_of(payload, *FOLDER_NAME_KEYS)
        except MergeAmbiguity:
            pass

        changes["sync_marker"] = SyncMarker.SYNCED

        base = existing if existing is not None else Task(id=task_id)
        if base.id != task_id:
            changes["id"] = task_id
        return base.with_changes(**changes)
