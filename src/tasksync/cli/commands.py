# src/tasksync/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, cast

from ..core.state import AppState
from ..errors import ValidationError
from ..tasks import task_api
from ..tasks.task_models import DEFAULT_UTC_OFFSET_HOURS, Task, TaskStatus, display_status, to_user_time

CommandEmitter = Callable[[str], None]
CommandHandler4 = Callable[[AppState, list[str], str | None, str | None], str]
CommandHandler5 = Callable[
    [AppState, list[str], str | None, str | None, CommandEmitter | None], str
]
CommandHandler = CommandHandler4 | CommandHandler5

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        user_id: str | None = None,
        room_id: str | None = None,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 5

        if nparams >= 5:
            h5 = cast(CommandHandler5, handler)
            return h5(state, args, user_id, room_id, emit)

        h4 = cast(CommandHandler4, handler)
        return h4(state, args, user_id, room_id)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- argument helpers ----

# Option key -> changed-field key.
_OPTION_FIELDS = {
    "title": "title",
    "desc": "description",
    "description": "description",
    "status": "status",
    "due": "dueDate",
    "folder": "folderId",
}


def parse_options(args: list[str]) -> tuple[str, dict[str, str]]:
    """
    Split "free text key=value more words key2=value" into free text and options.
    A value runs until the next recognised key=.
    """
    free: list[str] = []
    opts: dict[str, list[str]] = {}
    current: str | None = None
    for tok in args:
        key, sep, value = tok.partition("=")
        if sep and key.lower() in _OPTION_FIELDS:
            current = key.lower()
            opts[current] = [value] if value else []
        elif current is not None:
            opts[current].append(tok)
        else:
            free.append(tok)
    return " ".join(free).strip(), {k: " ".join(v).strip() for k, v in opts.items()}


def _user_offset(state: AppState) -> int:
    return int(getattr(state.settings, "user_utc_offset_hours", DEFAULT_UTC_OFFSET_HOURS))


def _parse_due(raw: str, utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS) -> datetime | None:
    """ISO date or datetime; an explicit offset is converted to the user's wall time."""
    if raw.lower() in ("", "none", "-"):
        return None
    return to_user_time(datetime.fromisoformat(raw), utc_offset_hours)


def _option_value(key: str, raw: str, utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS) -> Any:
    field = _OPTION_FIELDS[key]
    if field == "dueDate":
        return _parse_due(raw, utc_offset_hours)
    if field == "status":
        status = TaskStatus.parse(raw)
        if status is None or status.is_virtual:
            raise ValueError(f"Unknown status: {raw!r}")
        return status
    if field in ("folderId", "description") and raw.lower() in ("", "none", "-"):
        return None
    return raw


def _resolve(state: AppState, args: list[str]) -> Task | str:
    if not args:
        return "Missing task id."
    task = state.find_task(args[0])
    if task is None:
        return f"No task matches {args[0]!r}."
    return task


def _fmt_dt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def format_task(task: Task, now: datetime | None = None) -> str:
    status = display_status(task, now)
    folder = task.folder_name or task.folder_id or ""
    parts = [f"[{task.id[:8]}]", f"{status.label:<12}", task.title]
    if task.due_date:
        parts.append(f"(due {_fmt_dt(task.due_date)})")
    if folder:
        parts.append(f"#{folder}")
    if task.sync_marker.value != "synced":
        parts.append(f"<{task.sync_marker.value}>")
    return " ".join(parts)


# ---- handlers ----


def cmd_help(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    orch = state.orchestrator
    last = orch.last_outcome
    last_err = last.error if last is not None and not last.ok else None
    lines = [
        "Status:",
        f"  User: {state.user_id}",
        f"  Sync: {'ON' if orch.enabled else 'OFF (offline only)'} [{orch.phase.value}]",
        f"  Pending commands: {len(state.command_log)}",
        f"  Last synced at: {_fmt_dt(state.last_synced_at)}",
    ]
    if state.command_log.degraded:
        lines.append("  WARNING: command log is not being saved to disk")
    if last_err:
        lines.append(f"  Last error: {last_err}")
    return "\n".join(lines)


def cmd_list(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """
    /list            -> open tasks
    /list all        -> including completed
    /list done       -> completed only
    """
    mode = args[0].lower() if args else "open"
    now = datetime.now()
    tasks = state.visible_tasks()
    if mode == "done":
        tasks = [t for t in tasks if t.status == TaskStatus.COMPLETED]
    elif mode != "all":
        tasks = [t for t in tasks if t.status != TaskStatus.COMPLETED]

    if not tasks:
        return "No tasks."

    tasks.sort(key=lambda t: (t.due_date or datetime.max, t.created_at or datetime.min))
    return "\n".join(format_task(t, now) for t in tasks)


def cmd_add(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """/add <title> [desc=...] [due=YYYY-MM-DDTHH:MM] [folder=<id>]"""
    title, opts = parse_options(args)
    if not title and "title" in opts:
        title = opts.pop("title")
    if not title:
        return "Usage: /add <title> [desc=...] [due=YYYY-MM-DD[THH:MM]] [folder=<id>]"

    try:
        due = _parse_due(opts["due"], _user_offset(state)) if "due" in opts else None
        status = _option_value("status", opts["status"]) if "status" in opts else TaskStatus.PENDING
        task_id = task_api.create_task(
            state.command_log,
            state.user_id,
            title=title,
            description=opts.get("desc") or opts.get("description") or None,
            status=status,
            due_date=due,
            folder_id=opts.get("folder") or None,
        )
    except (ValueError, ValidationError) as e:
        return f"Cannot add task: {e}"
    return f"Added [{task_id[:8]}] {title}"


def cmd_edit(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """/edit <id> title=... desc=... status=... due=... folder=..."""
    found = _resolve(state, args)
    if isinstance(found, str):
        return found

    _, opts = parse_options(args[1:])
    try:
        offset = _user_offset(state)
        changes = {_OPTION_FIELDS[k]: _option_value(k, v, offset) for k, v in opts.items()}
        changed = task_api.update_task(state.command_log, state.user_id, found.id, changes)
    except (ValueError, ValidationError) as e:
        return f"Cannot edit task: {e}"
    if not changed:
        return "Nothing to change. Usage: /edit <id> title=... desc=... status=... due=... folder=..."
    return f"Updated [{found.id[:8]}]: {', '.join(sorted(changes))}"


def cmd_done(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    found = _resolve(state, args)
    if isinstance(found, str):
        return found
    if found.status == TaskStatus.COMPLETED:
        return f"[{found.id[:8]}] is already completed."
    task_api.complete_task(state.command_log, state.user_id, found.id)
    return f"Completed [{found.id[:8]}] {found.title}"


def cmd_rm(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    found = _resolve(state, args)
    if isinstance(found, str):
        return found
    reason = " ".join(args[1:]).strip() or task_api.DEFAULT_DELETE_REASON
    task_api.delete_task(state.command_log, state.user_id, found.id, reason=reason)
    return f"Deleted [{found.id[:8]}] {found.title}"


def cmd_sync(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    orch = state.orchestrator
    if not orch.enabled:
        return "Sync is not configured (set TASKSYNC_API_BASE_URL and TASKSYNC_USER_ID)."
    if orch.in_flight:
        orch.request_sync()
        return "A sync round is already running; another one will follow."
    orch.request_sync()
    return f"Sync requested ({len(state.command_log)} command(s) queued). Use /status to check."


def cmd_folders(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    folders = state.folders.list_folders()
    if not folders:
        return "No folders cached yet."
    return "\n".join(f"  {f.folder_id}: {f.folder_name or '-'}" for f in folders)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show sync status and pending commands.")
registry.register("list", cmd_list, help_text="List tasks: /list | /list all | /list done.", aliases=["ls"])
registry.register("add", cmd_add, help_text="Add a task: /add <title> [desc=...] [due=...] [folder=...].")
registry.register("edit", cmd_edit, help_text="Edit a task: /edit <id> title=... status=... due=...")
registry.register("done", cmd_done, help_text="Mark a task completed: /done <id>.")
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <id> [reason].", aliases=["del"])
registry.register("sync", cmd_sync, help_text="Request a sync round now.")
registry.register("folders", cmd_folders, help_text="Show cached folders.")
