"""Periodic and on-demand sync triggers.

``SyncScheduler`` runs in the server's event loop.  It syncs every remote
profile at startup, then every ``interval_seconds``, and immediately when
``request_sync()`` is called.  When a run fails with a network error the
scheduler watches the connection and fires a ``reconnect`` sync as soon as
Drive answers again.  The blocking engine calls run in worker threads.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from padsync.core.async_utils import run_sync, run_sync_limited
from padsync.errors import NetworkError, SyncError
from padsync.sync.engine import SyncEngine
from padsync.sync.models import SyncResult, SyncTrigger

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Drive ``SyncEngine`` from timers and wake-up requests.

    Args:
        engine: The engine to trigger.
        interval_seconds: Seconds between periodic runs; ``0`` disables
            the timer (only explicit requests trigger syncs).
        sync_on_start: Run a ``startup`` sync as soon as the loop starts.
        reconnect_seconds: Delay between connection checks while Drive is
            unreachable.
    """

    def __init__(
        self,
        engine: SyncEngine,
        interval_seconds: float = 300,
        sync_on_start: bool = True,
        reconnect_seconds: float = 30,
    ) -> None:
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.sync_on_start = sync_on_start
        self.reconnect_seconds = reconnect_seconds
        self._wake = asyncio.Event()
        self._requested = SyncTrigger.MANUAL
        self._task: asyncio.Task | None = None
        self._watch: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def offline(self) -> bool:
        """True while a connection watch is waiting for Drive to return."""
        return self._watch is not None and not self._watch.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="padsync-scheduler")
        logger.info(
            "Sync scheduler started (interval=%ss)", self.interval_seconds
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        for task in (self._watch, self._task):
            if task is None:
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._task = None
        self._watch = None
        logger.info("Sync scheduler stopped")

    def request_sync(self, trigger: SyncTrigger = SyncTrigger.RECONNECT) -> None:
        """Wake the loop for an immediate run."""
        self._requested = SyncTrigger(trigger)
        self._wake.set()

    async def run_once(self, trigger: SyncTrigger) -> list[SyncResult]:
        """Sync all remote profiles concurrently."""
        profile_ids = await run_sync(self.engine.remote_profile_ids)
        return list(
            await asyncio.gather(
                *(
                    run_sync_limited(self.engine.sync_profile, pid, trigger)
                    for pid in profile_ids
                )
            )
        )

    def _watch_if_offline(self, results: list[SyncResult]) -> None:
        """Start the connection watch when any result lost the network."""
        if self.offline:
            return
        if not any(r.error_kind == NetworkError.kind for r in results):
            return
        logger.warning(
            "Google Drive unreachable; checking again every %ss",
            self.reconnect_seconds,
        )
        self._watch = asyncio.create_task(
            self._watch_connection(), name="padsync-reconnect"
        )

    async def _watch_connection(self) -> None:
        while True:
            await asyncio.sleep(self.reconnect_seconds)
            try:
                await run_sync(self.engine.client.validate_connection)
            except SyncError as exc:
                logger.debug("Google Drive still unreachable: %s", exc)
                continue
            logger.info("Google Drive reachable again, syncing")
            self.request_sync(SyncTrigger.RECONNECT)
            return

    async def _next_trigger(self) -> SyncTrigger:
        timeout = self.interval_seconds or None
        try:
            await asyncio.wait_for(self._wake.wait(), timeout)
        except asyncio.TimeoutError:
            return SyncTrigger.PERIODIC
        self._wake.clear()
        return self._requested

    async def _run(self) -> None:
        trigger: SyncTrigger | None = (
            SyncTrigger.STARTUP if self.sync_on_start else None
        )
        while True:
            if trigger is not None:
                try:
                    results = await self.run_once(trigger)
                except Exception:
                    logger.exception("Scheduled %s sync failed", trigger.value)
                else:
                    for result in results:
                        logger.debug(
                            "Profile %s: %s", result.profile_id, result.status.value
                        )
                    self._watch_if_offline(results)
            trigger = await self._next_trigger()
