# src/tasksync/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs on one asyncio loop:
- the periodic sync loop as a background task (when sync is configured),
- the console REPL (optional); otherwise waits for a signal.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import threading
from datetime import datetime

from ..cli.bootstrap import create_initial_state, shutdown_state
from ..cli.commands import registry as command_registry
from ..config import get_settings
from ..core.state import AppState
from ..logging_setup import setup_logging
from ..sync.orchestrator import run_sync_loop

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("/exit", "/quit")


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _read_line(prompt: str) -> asyncio.Future[str]:
    """
    input() on a daemon thread, so a pending prompt never blocks shutdown
    (asyncio.to_thread workers are joined when the loop closes).
    """
    loop = asyncio.get_running_loop()
    fut: asyncio.Future[str] = loop.create_future()

    def _deliver(value: str | None, exc: BaseException | None) -> None:
        if fut.done():
            return
        if exc is not None:
            fut.set_exception(exc)
        else:
            fut.set_result(value or "")

    def _worker() -> None:
        try:
            line: str | None = input(prompt)
            exc: BaseException | None = None
        except (EOFError, KeyboardInterrupt) as e:
            line, exc = None, EOFError(str(e))
        # The loop may already be closed after shutdown.
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(_deliver, line, exc)

    threading.Thread(target=_worker, name="console-input", daemon=True).start()
    return fut


async def run_console_loop(state: AppState, stop: asyncio.Event) -> None:
    """Read commands without blocking the loop."""
    logger.info("Console started (user=%s, sync=%s).", state.user_id, state.orchestrator.enabled)
    _print_ts("[CONSOLE] Type /help for commands, /exit to quit.")

    while not stop.is_set():
        try:
            line = (await _read_line(">>> ")).strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break

        if not line:
            continue
        if line.lower() in EXIT_COMMANDS:
            logger.info("Console exit command received.")
            break

        try:
            reply = command_registry.handle(state, line, user_id=state.user_id, emit=_print_ts)
        except Exception:
            logger.exception("Command handler crashed.")
            reply = "Internal error while handling a command."

        if reply is None:
            reply = "Commands start with '/'. Use /help to list them."
        _print_ts(reply)

    stop.set()


async def _amain() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=getattr(settings, "data_dir", ".local/tasksync"), console_level=console_level)

    logger.info("Starting %s...", getattr(settings, "app_name", "tasksync"))

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows event loops).
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)

    sync_task: asyncio.Task | None = None
    if state.orchestrator.enabled:
        sync_task = asyncio.create_task(
            run_sync_loop(
                state.orchestrator,
                interval_seconds=float(getattr(settings, "sync_interval_seconds", 60.0)),
            )
        )

    try:
        if getattr(settings, "console_enabled", True):
            console = asyncio.create_task(run_console_loop(state, stop))
            await stop.wait()
            console.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await console
        else:
            logger.info("Console disabled. Running background sync only. Press Ctrl+C to stop.")
            await stop.wait()
    finally:
        if sync_task is not None:
            sync_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sync_task
        await shutdown_state(state)
        logger.info("Bye.")


def main() -> None:
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_amain())


if __name__ == "__main__":
    main()
