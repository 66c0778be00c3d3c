# src/tasksync/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures the per-user data directory exists,
- restores the base snapshot (SQLite) and the command log (JSON),
- wires the reconciler, folder cache and HTTP transport into AppState.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ..commands.command_log import CommandLog
from ..config import LOCAL_USER_ID, get_settings
from ..core.state import AppState
from ..errors import PersistenceError
from ..sync.assembler import TaskAssembler
from ..sync.client import HttpSyncClient
from ..sync.folders import FolderCache
from ..sync.orchestrator import SyncOrchestrator
from ..sync.reconciler import Reconciler
from ..tasks.task_index import TaskIndex
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _user_path(settings, attr: str, filename: str) -> Path:
    """Use settings.<attr> when present, else <data_dir>/<user_id>/<filename>."""
    raw = getattr(settings, attr, None)
    if raw:
        return Path(raw)
    data_dir = Path(getattr(settings, "data_dir", ".local/tasksync"))
    user_id = str(getattr(settings, "user_id", "") or LOCAL_USER_ID)
    return data_dir / user_id / filename


def _sync_enabled(settings) -> bool:
    base_url = str(getattr(settings, "api_base_url", "") or "").strip()
    user_id = str(getattr(settings, "user_id", "") or "").strip()
    return bool(base_url) and bool(user_id)


def _open_store(path: Path) -> TaskStore | None:
    try:
        return TaskStore(path)
    except PersistenceError:
        logger.exception("Task store unavailable; the base snapshot will not be saved to disk")
        return None


def _load_index(store: TaskStore | None) -> TaskIndex:
    if store is None:
        return TaskIndex()
    try:
        return TaskIndex(store.load_tasks(), store.load_last_sync())
    except PersistenceError:
        logger.exception("Failed to load stored tasks; starting with an empty base snapshot")
        return TaskIndex()


def create_initial_state(*, settings=None, transport: HttpSyncClient | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings(). A transport can be injected as well;
    otherwise one is built when sync is configured.
    """
    if settings is None:
        settings = get_settings()

    user_id = str(getattr(settings, "user_id", "") or "").strip()
    if not user_id:
        logger.warning("TASKSYNC_USER_ID is not set; working offline as %r", LOCAL_USER_ID)
        user_id = LOCAL_USER_ID

    commands_path = _user_path(settings, "commands_path", "pending_commands.json")
    commands_path.parent.mkdir(parents=True, exist_ok=True)

    store = _open_store(_user_path(settings, "tasks_db_path", "tasks.sqlite3"))
    index = _load_index(store)

    command_log = CommandLog(user_id, commands_path)
    for orphan in command_log.orphan_commands(index.ids()):
        logger.warning(
            "Queued %s %s targets unknown task %s; it will have no visible effect",
            orphan.type.value,
            orphan.command_id,
            orphan.entity_id,
        )

    folders = FolderCache(
        _user_path(settings, "folder_cache_path", "folder_cache.json"),
        ttl_seconds=float(getattr(settings, "folder_cache_ttl_seconds", 3600.0)),
    )

    if transport is None and _sync_enabled(settings):
        transport = HttpSyncClient(settings)
    if transport is None:
        logger.info("Sync is not configured; running offline only.")

    reconciler = Reconciler(
        index,
        command_log,
        assembler=TaskAssembler(utc_offset_hours=int(getattr(settings, "user_utc_offset_hours", -3))),
        folders=folders,
        failed_report_path=_user_path(settings, "failed_commands_path", "failed_commands.json"),
    )
    orchestrator = SyncOrchestrator(
        user_id=user_id,
        command_log=command_log,
        index=index,
        reconciler=reconciler,
        transport=transport,
        store=store,
        folders=folders,
        folder_source=transport,
    )

    if getattr(settings, "sync_on_mutation", True):
        command_log.add_listener(lambda _command: orchestrator.request_sync())

    return AppState(
        settings=settings,
        command_log=command_log,
        index=index,
        task_store=store,
        folders=folders,
        orchestrator=orchestrator,
        transport=transport,
    )


async def shutdown_state(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        await state.orchestrator.aclose()
    except Exception:
        logger.exception("Failed to stop the sync orchestrator.")

    if state.task_store is not None:
        try:
            state.task_store.save_tasks(state.index.values(), state.index.last_sync)
        except PersistenceError:
            logger.exception("Failed to save tasks on shutdown.")

    if state.transport is not None:
        try:
            await state.transport.aclose()
        except Exception:
            logger.debug("Transport close failed.", exc_info=True)
