# src/tasksync/sync/folders.py

from __future__ import annotations

import contextlib
import json
import logging
import os
import threading
import time
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

from ..core.ports import FolderSource
from ..errors import NetworkError, ProtocolError
from ..tasks.task_models import Folder

logger = logging.getLogger(__name__)

_FOLDER_ID_KEYS = ("folder_id", "id", "folderId")
_FOLDER_NAME_KEYS = ("folder_name", "name", "folderName", "title")


def _first(m: Mapping[str, Any], keys: tuple[str, ...]) -> str | None:
    for k in keys:
        v = m.get(k)
        if v is not None and str(v).strip():
            return str(v)
    return None


def _dt(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def folder_from_mapping(m: Mapping[str, Any]) -> Folder | None:
    """Accepts folder_id|id|folderId and folder_name|name|folderName|title."""
    folder_id = _first(m, _FOLDER_ID_KEYS)
    name = _first(m, _FOLDER_NAME_KEYS)
    if folder_id is None:
        folder_id = name
    if folder_id is None:
        return None
    return Folder(
        folder_id=folder_id,
        folder_name=name,
        created_at=_dt(m.get("created_at")),
        deleted_at=_dt(m.get("deleted_at")),
    )


def folders_from_payload(data: Any) -> list[Folder]:
    """The folders endpoint answers with a list, {"folders": [...]} or {"items": [...]}."""
    if isinstance(data, Mapping):
        data = data.get("folders", data.get("items"))
    if not isinstance(data, list):
        raise ProtocolError("Folders response has no folder list")
    out: list[Folder] = []
    for item in data:
        if isinstance(item, Mapping):
            folder = folder_from_mapping(item)
            if folder is not None:
                out.append(folder)
    return out


class FolderCache:
    """
    Folder-lookup collaborator used by the reconciler.

    - folder id -> Folder, replaced wholesale on update
    - TTL based staleness (needs_refresh) plus an optional server version tag
    - persisted as JSON so names resolve offline after a restart
    """

    def __init__(self, path: str | Path | None = None, *, ttl_seconds: float = 3600.0) -> None:
        self._path = Path(path) if path is not None else None
        self._ttl = max(0.0, float(ttl_seconds))
        self._lock = threading.RLock()
        self._folders: dict[str, Folder] = {}
        self._version: str | None = None
        self._refreshed_at = 0.0
        if self._path is not None:
            self._load()

    @property
    def version(self) -> str | None:
        return self._version

    def has_version(self, version: str | None) -> bool:
        return self._version == version

    def list_folders(self) -> list[Folder]:
        with self._lock:
            return list(self._folders.values())

    def resolve_name(self, folder_id: str | None) -> str | None:
        if not folder_id:
            return None
        with self._lock:
            folder = self._folders.get(folder_id)
        return folder.folder_name if folder is not None else None

    def needs_refresh(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now - self._refreshed_at > self._ttl

    def force_refresh(self) -> None:
        self._refreshed_at = 0.0

    def update_folders(self, folders: Iterable[Folder], version: str | None = None) -> None:
        with self._lock:
            self._folders = {f.folder_id: f for f in folders if f.folder_id}
            self._version = version
            self._refreshed_at = time.time()
            count = len(self._folders)
        self._persist()
        logger.info(
            "Folder cache updated: %d folder(s)%s", count, f" (version {version})" if version else ""
        )

    async def refresh(self, source: FolderSource, *, force: bool = False) -> bool:
        """
        Best-effort refresh from the server. Returns True if the cache was updated.
        Failures are logged and leave the cache as it was.
        """
        if not force and not self.needs_refresh():
            return False
        try:
            folders = await source.fetch_folders()
        except (NetworkError, ProtocolError) as e:
            logger.warning("Folder refresh failed: %s", e)
            return False
        self.update_folders(folders, self._version)
        return True

    # ---- persistence ----

    def _persist(self) -> None:
        if self._path is None:
            return
        with self._lock:
            doc = {
                "version": self._version,
                "refreshed_at": self._refreshed_at,
                "folders": [
                    {
                        "folder_id": f.folder_id,
                        "folder_name": f.folder_name,
                        "created_at": f.created_at.isoformat() if f.created_at else None,
                        "deleted_at": f.deleted_at.isoformat() if f.deleted_at else None,
                    }
                    for f in self._folders.values()
                ],
            }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(".tmp")
            tmp.write_text(json.dumps(doc, ensure_ascii=False, indent=2), "utf-8")
            os.replace(tmp, self._path)
        except OSError:
            logger.exception("Failed to persist folder cache to %s", self._path)
            return
        with contextlib.suppress(OSError):
            os.chmod(self._path, 0o600)

    def _load(self) -> None:
        assert self._path is not None
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text("utf-8"))
            folders = folders_from_payload(data)
        except (OSError, ValueError, ProtocolError) as e:
            logger.warning("Ignoring unreadable folder cache %s: %s", self._path, e)
            return

        with self._lock:
            self._folders = {f.folder_id: f for f in folders}
            if isinstance(data, Mapping):
                self._version = data.get("version")
                try:
                    self._refreshed_at = float(data.get("refreshed_at") or 0.0)
                except (TypeError, ValueError):
                    self._refreshed_at = 0.0
        logger.info("Loaded %d folder(s) from %s", len(self._folders), self._path)
