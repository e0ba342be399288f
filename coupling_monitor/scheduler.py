"""Fixed-cadence driver for the collection pipeline.

Ticks are aligned to wall-clock multiples of the interval, so a 60 second
interval fires at the top of every minute like a ``*/1 * * * *`` cron entry.
At most one run is active at a time: a tick that lands while a run is still
in flight is dropped, because two runs would read the same watermark and
fetch overlapping windows.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from coupling_monitor.models import RunStatus, RunSummary
from coupling_monitor.pipeline import CollectionPipeline

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(
        self,
        pipeline: CollectionPipeline,
        interval_seconds: float = 60.0,
        shutdown_timeout_seconds: float = 30.0,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.pipeline = pipeline
        self.interval_seconds = interval_seconds
        self.shutdown_timeout_seconds = shutdown_timeout_seconds
        self._wall_clock = wall_clock

        self._stopping = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._run_task: Optional[asyncio.Task] = None

        self._tick_count = 0
        self._skipped_ticks = 0
        self._last_tick: Optional[datetime] = None
        self.last_run: Optional[RunSummary] = None

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def run_in_progress(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def skipped_ticks(self) -> int:
        return self._skipped_ticks

    def start(self) -> None:
        """Start ticking on the running event loop."""
        if self.is_running:
            logger.warning("Scheduler already started")
            return
        self._stopping.clear()
        self._loop_task = asyncio.create_task(self._loop(), name="coupling-monitor-scheduler")

    def _next_delay(self) -> float:
        return self.interval_seconds - (self._wall_clock() % self.interval_seconds)

    async def _loop(self) -> None:
        logger.info("Scheduler started (interval=%ss)", self.interval_seconds)
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._next_delay())
            except asyncio.TimeoutError:
                self.trigger()
        logger.info("Scheduler loop exited")

    def trigger(self) -> Optional[asyncio.Task]:
        """Handle one tick. Returns the started run, or None when the tick was dropped."""
        self._tick_count += 1
        self._last_tick = datetime.now(timezone.utc)
        if self._stopping.is_set():
            return None
        if self.run_in_progress:
            self._skipped_ticks += 1
            logger.warning("Previous collection run still in progress, skipping tick #%s", self._tick_count)
            return None
        return self._start_run()

    async def run_now(self) -> Optional[RunSummary]:
        """Run immediately and wait for the summary; None if a run is already active or stopping."""
        if self._stopping.is_set() or self.run_in_progress:
            return None
        # a cancelled caller must not cancel the run itself
        return await asyncio.shield(self._start_run())

    def _start_run(self) -> asyncio.Task:
        self._run_task = asyncio.create_task(self._run(), name="coupling-monitor-run")
        return self._run_task

    async def _run(self) -> RunSummary:
        started_at = datetime.now(timezone.utc)
        logger.info("Running collection at %s...", started_at.isoformat())
        try:
            summary = await self.pipeline.run_once()
        except asyncio.CancelledError:
            logger.warning("Collection run cancelled")
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Collection run crashed")
            summary = RunSummary(
                status=RunStatus.FAILED,
                error_kind="unexpected",
                error=repr(exc),
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
            )

        self.last_run = summary
        logger.info("Collection run completed: %s", summary.model_dump(mode="json"))
        return summary

    async def stop(self) -> None:
        """Stop ticking, then give an in-flight run up to the shutdown timeout before cancelling it."""
        self._stopping.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        run_task = self._run_task
        if run_task is not None and not run_task.done():
            logger.info("Waiting up to %ss for the in-flight run to finish", self.shutdown_timeout_seconds)
            done, _ = await asyncio.wait({run_task}, timeout=self.shutdown_timeout_seconds)
            if not done:
                logger.warning("In-flight run did not finish in time, cancelling it")
                run_task.cancel()
                await asyncio.gather(run_task, return_exceptions=True)
        logger.info("Scheduler stopped")

    def health(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "run_in_progress": self.run_in_progress,
            "tick_count": self._tick_count,
            "skipped_ticks": self._skipped_ticks,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "interval_seconds": self.interval_seconds,
            "last_run": self.last_run.model_dump(mode="json") if self.last_run else None,
        }
