# src/tasksync/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from ..errors import PersistenceError
from .task_models import SyncMarker, Task, TaskStatus

logger = logging.getLogger(__name__)

_META_LAST_SYNC = "last_sync"


def _dt_to_db(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _db_to_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.debug("Unparseable timestamp in task store: %r", value)
        return None


class TaskStore:
    """
    SQLite persistence sink for the base task index.

    The store holds a snapshot, not a journal: save_tasks() replaces the whole
    table in one transaction together with the sync cursor.

    The schema is simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._get_conn()
        except (OSError, sqlite3.Error) as e:
            raise PersistenceError(f"Cannot open task store {self._db_path}: {e}") from e
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL DEFAULT '',
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    due_date TEXT,
                    folder_id TEXT,
                    folder_name TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    deleted_at TEXT,
                    sync_marker TEXT NOT NULL DEFAULT 'synced',
                    last_sync TEXT
                )
                """
            )
            cur.execute("CREATE TABLE IF NOT EXISTS meta (key TEXT PRIMARY KEY, value TEXT)")

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("description", "TEXT")
            add_col("due_date", "TEXT")
            add_col("folder_id", "TEXT")
            add_col("folder_name", "TEXT")
            add_col("deleted_at", "TEXT")
            add_col("sync_marker", "TEXT NOT NULL DEFAULT 'synced'")
            add_col("last_sync", "TEXT")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_folder ON tasks(folder_id)")
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot initialize task store {self._db_path}: {e}") from e
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            description=row["description"],
            status=TaskStatus.from_db(row["status"]),
            due_date=_db_to_dt(row["due_date"]),
            folder_id=row["folder_id"],
            folder_name=row["folder_name"],
            created_at=_db_to_dt(row["created_at"]),
            updated_at=_db_to_dt(row["updated_at"]),
            deleted_at=_db_to_dt(row["deleted_at"]),
            sync_marker=SyncMarker.from_db(row["sync_marker"]),
            last_sync=_db_to_dt(row["last_sync"]),
        )

    @staticmethod
    def _task_to_row(task: Task) -> tuple:
        status = task.status or TaskStatus.PENDING
        return (
            task.id,
            task.title,
            task.description,
            status.value,
            _dt_to_db(task.due_date),
            task.folder_id,
            task.folder_name,
            _dt_to_db(task.created_at),
            _dt_to_db(task.updated_at),
            _dt_to_db(task.deleted_at),
            task.sync_marker.value,
            _dt_to_db(task.last_sync),
        )

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def save_tasks(self, tasks: Iterable[Task], last_sync: datetime | None = None) -> None:
        """Replace the stored snapshot (tasks + cursor) atomically."""
        rows = [self._task_to_row(t) for t in tasks]
        conn = self._get_conn()
        try:
            with conn:
                conn.execute("DELETE FROM tasks")
                conn.executemany(
                    """
                    INSERT INTO tasks(
                        id, title, description, status, due_date,
                        folder_id, folder_name,
                        created_at, updated_at, deleted_at,
                        sync_marker, last_sync
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                conn.execute(
                    "INSERT OR REPLACE INTO meta(key, value) VALUES (?, ?)",
                    (_META_LAST_SYNC, _dt_to_db(last_sync)),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot save tasks to {self._db_path}: {e}") from e
        finally:
            conn.close()
        logger.debug("Task snapshot saved: %d task(s), last_sync=%s", len(rows), last_sync)

    def load_tasks(self) -> list[Task]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM tasks ORDER BY created_at ASC, id ASC")
            return [self._row_to_task(r) for r in cur.fetchall()]
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot read tasks from {self._db_path}: {e}") from e
        finally:
            conn.close()

    def load_last_sync(self) -> datetime | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT value FROM meta WHERE key = ?", (_META_LAST_SYNC,))
            row = cur.fetchone()
            return _db_to_dt(row["value"]) if row else None
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot read sync cursor from {self._db_path}: {e}") from e
        finally:
            conn.close()
