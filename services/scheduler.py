"""Periodic drivers for the status and import jobs."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Set

from core.settings import GOOGLE_SYNC, GoogleSyncSettings


logger = logging.getLogger("taskmirror.sync.scheduler")


class JobRunner:
    """Runs a blocking job on a fixed interval, at most one run at a time.

    A tick that arrives while the previous run is still busy is dropped,
    not queued. Job exceptions are logged and never leave the runner.
    """

    def __init__(self, name: str, job: Callable[[], Any], interval_minutes: float) -> None:
        self.name = name
        self.job = job
        self.interval_sec = max(float(interval_minutes), 0.0) * 60
        self._busy = False
        self._timer: asyncio.Task | None = None
        self._ticks: Set[asyncio.Task] = set()
        self.runs = 0
        self.skipped = 0

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def busy(self) -> bool:
        return self._busy

    async def tick(self) -> bool:
        """Run the job once; returns ``False`` when skipped because a run is in flight."""
        if self._busy:
            self.skipped += 1
            logger.info("%s: previous run still in progress, skipping tick", self.name)
            return False
        self._busy = True
        try:
            await asyncio.to_thread(self.job)
        except Exception:
            logger.exception("%s: job failed", self.name)
        finally:
            self._busy = False
            self.runs += 1
        return True

    def start(self) -> None:
        """Fire one tick now and one per interval. Must be called inside a running loop."""
        if self.running:
            return
        self._timer = asyncio.create_task(self._loop(), name=f"{self.name}-timer")
        logger.info("%s: started, every %.0fs", self.name, self.interval_sec)

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.info("%s: stopped", self.name)

    async def drain(self) -> None:
        """Wait for ticks already in flight."""
        if self._ticks:
            await asyncio.gather(*list(self._ticks), return_exceptions=True)

    async def _loop(self) -> None:
        while True:
            # spawned rather than awaited so an overlapping tick can be skipped
            task = asyncio.create_task(self.tick(), name=f"{self.name}-tick")
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)
            await asyncio.sleep(self.interval_sec)


class SyncScheduler:
    """Owns the status runner and the import runner under the process-wide switch."""

    def __init__(
        self,
        status_job: Callable[[], Any],
        import_job: Callable[[], Any],
        settings: GoogleSyncSettings = GOOGLE_SYNC,
    ) -> None:
        self.settings = settings
        self.status_runner = JobRunner("status-sync", status_job, settings.status_interval_minutes)
        self.import_runner = JobRunner("import", import_job, settings.import_interval_minutes)

    def start(self) -> None:
        if not self.settings.enabled:
            logger.info("Google Tasks sync disabled, scheduler not started")
            return
        if self.settings.status_sync_enabled:
            self.status_runner.start()
        if self.settings.import_enabled:
            self.import_runner.start()

    def stop(self) -> None:
        self.status_runner.stop()
        self.import_runner.stop()

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        self.start()
        waiter = stop_event or asyncio.Event()
        try:
            await waiter.wait()
        finally:
            self.stop()
            await self.status_runner.drain()
            await self.import_runner.drain()

    def flags(self) -> Dict[str, Any]:
        return {
            "enabled": self.settings.enabled,
            "statusSyncEnabled": self.settings.status_sync_enabled,
            "statusSyncRunning": self.status_runner.running,
            "statusIntervalMinutes": self.settings.status_interval_minutes,
            "importEnabled": self.settings.import_enabled,
            "importRunning": self.import_runner.running,
            "importIntervalMinutes": self.settings.import_interval_minutes,
        }


__all__ = ["JobRunner", "SyncScheduler"]
