# src/tasksync/sync/orchestrator.py

"""
Sync orchestrator.

One round:
- snapshot the command log (commands enqueued later wait for the next round)
- translate and send the batch
- reconcile the response (atomic)
- persist the base snapshot, then refresh folders (best-effort)

At most one round is in flight. A request arriving during a round is
coalesced into a single follow-up round, run right after the current one
if commands are still queued.

Phases: IDLE -> SYNCING -> RECONCILING -> IDLE, or SYNCING/RECONCILING ->
FAILED -> IDLE. A failed round leaves the command log untouched.

All state is touched from the event loop thread only; request_sync() may be
called from other threads and hops onto the loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from ..commands.command_log import CommandLog
from ..core.ports import FolderSource, SyncTransport, TaskSink
from ..errors import NetworkError, PersistenceError, ProtocolError
from ..tasks.task_index import TaskIndex
from .folders import FolderCache, folder_from_mapping
from .reconciler import ReconcileResult, Reconciler
from .translator import build_batch

logger = logging.getLogger(__name__)


class SyncPhase(StrEnum):
    IDLE = "idle"
    SYNCING = "syncing"
    RECONCILING = "reconciling"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SyncOutcome:
    ok: bool
    shipped: int = 0
    result: ReconcileResult | None = None
    error: str | None = None
    exception: Exception | None = None
    finished_at: datetime | None = None

    @property
    def acknowledged(self) -> int:
        return len(self.result.acknowledged) if self.result else 0

    @property
    def failed(self) -> int:
        return len(self.result.failed) if self.result else 0


class SyncOrchestrator:
    def __init__(
        self,
        *,
        user_id: str,
        command_log: CommandLog,
        index: TaskIndex,
        reconciler: Reconciler,
        transport: SyncTransport | None,
        store: TaskSink | None = None,
        folders: FolderCache | None = None,
        folder_source: FolderSource | None = None,
    ) -> None:
        self._user_id = user_id
        self._log = command_log
        self._index = index
        self._reconciler = reconciler
        self._transport = transport
        self._store = store
        self._folders = folders
        self._folder_source = folder_source

        self._phase = SyncPhase.IDLE
        self._in_flight: asyncio.Task[SyncOutcome] | None = None
        self._rerun_requested = False
        self._background: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None

        self.last_outcome: SyncOutcome | None = None
        self.last_synced_at: datetime | None = None
        self.rounds_started = 0

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def enabled(self) -> bool:
        return self._transport is not None

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    # ---- triggers ----

    async def sync_now(self) -> SyncOutcome:
        """Run a round, or join the one already in flight (and ask for a follow-up)."""
        self._loop = asyncio.get_running_loop()
        if self.in_flight:
            assert self._in_flight is not None
            self._rerun_requested = True
            logger.debug("Sync already in flight; coalescing request")
            return await asyncio.shield(self._in_flight)

        self._in_flight = asyncio.create_task(self._run())
        return await asyncio.shield(self._in_flight)

    def request_sync(self) -> None:
        """Fire-and-forget trigger (after a local mutation). Safe from any thread."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            if self._loop is not None and self._loop.is_running():
                self._loop.call_soon_threadsafe(self.request_sync)
            else:
                logger.debug("No running loop; sync request left for the periodic loop")
            return

        if not self.enabled:
            return
        if self.in_flight:
            self._rerun_requested = True
            return

        task = loop.create_task(self.sync_now())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def aclose(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self._in_flight is not None and not self._in_flight.done():
            self._in_flight.cancel()
            await asyncio.gather(self._in_flight, return_exceptions=True)

    # ---- rounds ----

    async def _run(self) -> SyncOutcome:
        try:
            outcome = await self._round()
            while self._rerun_requested:
                self._rerun_requested = False
                if not outcome.ok or not self._log.has_pending():
                    break
                outcome = await self._round()
            return outcome
        finally:
            self._rerun_requested = False

    async def _round(self) -> SyncOutcome:
        if self._transport is None:
            return SyncOutcome(ok=False, error="Sync is disabled (no API base URL or user id).")

        snapshot = self._log.pending_commands()
        batch = build_batch(self._user_id, snapshot, last_sync=self._index.last_sync)
        self.rounds_started += 1
        self._phase = SyncPhase.SYNCING
        logger.info("Sync round started: %d command(s) queued", len(snapshot))

        try:
            response = await self._transport.send_batch(batch)

            self._phase = SyncPhase.RECONCILING
            result = self._reconciler.apply(response, snapshot)
        except (NetworkError, ProtocolError) as e:
            return self._fail(e, shipped=len(batch.commands))
        except Exception as e:
            logger.exception("Unexpected error during sync round")
            return self._fail(e, shipped=len(batch.commands))

        self._persist_snapshot()
        await self._refresh_folders(response.folders, response.folder_version)

        self._phase = SyncPhase.IDLE
        self.last_synced_at = datetime.now()
        outcome = SyncOutcome(
            ok=True,
            shipped=len(batch.commands),
            result=result,
            finished_at=self.last_synced_at,
        )
        self.last_outcome = outcome
        logger.info(
            "Sync round finished: acked=%d failed=%d pending=%d",
            outcome.acknowledged,
            outcome.failed,
            len(self._log),
        )
        return outcome

    def _fail(self, err: Exception, *, shipped: int) -> SyncOutcome:
        self._phase = SyncPhase.FAILED
        logger.warning("Sync round failed (%s): %s", type(err).__name__, err)
        outcome = SyncOutcome(
            ok=False,
            shipped=shipped,
            error=str(err) or type(err).__name__,
            exception=err,
            finished_at=datetime.now(),
        )
        self.last_outcome = outcome
        self._phase = SyncPhase.IDLE
        return outcome

    def _persist_snapshot(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save_tasks(self._index.values(), self._index.last_sync)
        except PersistenceError:
            logger.exception("Failed to persist reconciled tasks; keeping them in memory")

    async def _refresh_folders(self, raw_folders, version: str | None) -> None:
        """Trailing best-effort step: never undoes the reconciliation."""
        if self._folders is None:
            return
        try:
            if raw_folders is not None:
                folders = [f for f in (folder_from_mapping(m) for m in raw_folders) if f is not None]
                self._folders.update_folders(folders, version)
            elif self._folder_source is not None:
                await self._folders.refresh(self._folder_source)
        except Exception:
            logger.exception("Folder refresh failed after sync")


async def run_sync_loop(
    orchestrator: SyncOrchestrator,
    *,
    interval_seconds: float = 60.0,
) -> None:
    """
    Periodic sync.

    Every interval_seconds run one round (or join the one in flight).
    Failures are already logged by the orchestrator; the loop keeps going.

    To stop the loop, cancel the coroutine/task.
    """
    sleep_s = max(0.5, float(interval_seconds))

    while True:
        try:
            await orchestrator.sync_now()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Sync loop iteration crashed")

        await asyncio.sleep(sleep_s)
