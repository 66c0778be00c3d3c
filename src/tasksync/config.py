# src/tasksync/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Per-user data files are derived from data_dir + user_id.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "TASKSYNC"

# Owner of the local data when no user id is configured (offline only).
LOCAL_USER_ID = "local"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Identity ----
    user_id: str

    # ---- Remote sync API ----
    api_base_url: str
    api_token: Optional[str]
    sync_path: str
    folders_path: str
    connect_timeout_seconds: float
    read_timeout_seconds: float

    # ---- Sync scheduling ----
    sync_interval_seconds: float
    sync_on_mutation: bool
    folder_cache_ttl_seconds: float

    # ---- Date handling ----
    user_utc_offset_hours: int

    # ---- Connectors ----
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path

    @property
    def user_dir(self) -> Path:
        return self.data_dir / (self.user_id or LOCAL_USER_ID)

    @property
    def commands_path(self) -> Path:
        return self.user_dir / "pending_commands.json"

    @property
    def tasks_db_path(self) -> Path:
        return self.user_dir / "tasks.sqlite3"

    @property
    def folder_cache_path(self) -> Path:
        return self.user_dir / "folder_cache.json"

    @property
    def failed_commands_path(self) -> Path:
        return self.user_dir / "failed_commands.json"

    @property
    def sync_enabled(self) -> bool:
        return bool(self.api_base_url.strip()) and bool(self.user_id.strip())

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "tasksync") or "tasksync"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        user_id = (_env(_k("USER_ID"), "") or "").strip()

        api_base_url = (_env(_k("API_BASE_URL"), "") or "").strip().rstrip("/")
        api_token = _first_env(_k("API_TOKEN"), default=None)
        sync_path = _env(_k("SYNC_PATH"), "/api/v2/sync/commands")
        folders_path = _env(_k("FOLDERS_PATH"), "/api/v2/folders")

        connect_timeout_seconds = _env_float(_k("CONNECT_TIMEOUT_SECONDS"), 5.0)
        read_timeout_seconds = _env_float(_k("READ_TIMEOUT_SECONDS"), 25.0)

        sync_interval_seconds = _env_float(_k("SYNC_INTERVAL_SECONDS"), 60.0)
        sync_on_mutation = _env_bool(_k("SYNC_ON_MUTATION"), True)
        folder_cache_ttl_seconds = _env_float(_k("FOLDER_CACHE_TTL_SECONDS"), 3600.0)

        user_utc_offset_hours = _env_int(_k("USER_UTC_OFFSET_HOURS"), -3)

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/tasksync"))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            user_id=user_id,
            api_base_url=api_base_url,
            api_token=api_token,
            sync_path=sync_path,
            folders_path=folders_path,
            connect_timeout_seconds=connect_timeout_seconds,
            read_timeout_seconds=read_timeout_seconds,
            sync_interval_seconds=sync_interval_seconds,
            sync_on_mutation=sync_on_mutation,
            folder_cache_ttl_seconds=folder_cache_ttl_seconds,
            user_utc_offset_hours=user_utc_offset_hours,
            console_enabled=console_enabled,
            data_dir=data_dir,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Load settings once (reading .env on first use) and cache them."""
    global _SETTINGS
    if _SETTINGS is None:
        load_dotenv(override=False)
        _SETTINGS = Settings.from_env()
    return _SETTINGS
