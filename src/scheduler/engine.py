"""SchedulerEngine — APScheduler lifecycle for the minute tick and catchup jobs."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.config import settings
from src.scheduler.errors import StorageError
from src.scheduler.models import current_minute

if TYPE_CHECKING:
    from src.scheduler.catchup import CatchupScanner
    from src.scheduler.dispatch import Dispatcher
    from src.scheduler.store import Store

logger = logging.getLogger(__name__)

TICK_JOB_ID = "tick"
CATCHUP_JOB_ID = "catchup"
STARTUP_CATCHUP_JOB_ID = "catchup-startup"


class SchedulerEngine:
    """Fires due tasks once per minute and runs catchup passes.

    The tick is a fixed-interval job, not aligned to minute boundaries, so a
    slow cycle can drift; a late tick still finds its tasks on the next
    catchup pass.

    Args:
        store: Store queried for due tasks.
        dispatcher: Worker pool that executes the tasks.
        catchup: Scanner run at startup and every *catchup_interval_minutes*.
        tick_interval_seconds: Seconds between ticks (default from settings).
        catchup_interval_minutes: Minutes between periodic catchup passes;
            0 runs catchup only at startup (default from settings).
    """

    def __init__(
        self,
        store: Store,
        dispatcher: Dispatcher,
        catchup: CatchupScanner,
        tick_interval_seconds: int | None = None,
        catchup_interval_minutes: int | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._catchup = catchup
        self._tick_interval = tick_interval_seconds or settings.tick_interval_seconds
        self._catchup_interval = (
            settings.catchup_interval_minutes
            if catchup_interval_minutes is None
            else catchup_interval_minutes
        )
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start the dispatcher, schedule the jobs, and start the scheduler."""
        await self._dispatcher.start()

        now = datetime.now(UTC)
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self._tick_interval, timezone="UTC"),
            id=TICK_JOB_ID,
            name="Fire due tasks",
            next_run_time=now,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=None,
            replace_existing=True,
        )
        # One catchup pass at startup, then optionally on an interval
        self._scheduler.add_job(
            self._catchup.run,
            id=STARTUP_CATCHUP_JOB_ID,
            name="Catch up on missed tasks (startup)",
            next_run_time=now,
            replace_existing=True,
        )
        if self._catchup_interval > 0:
            self._scheduler.add_job(
                self._catchup.run,
                trigger=IntervalTrigger(minutes=self._catchup_interval, timezone="UTC"),
                id=CATCHUP_JOB_ID,
                name="Catch up on missed tasks",
                coalesce=True,
                max_instances=1,
                replace_existing=True,
            )

        self._scheduler.start()
        self._running = True
        logger.info(
            "Scheduler started (tick=%ds, catchup_interval=%dm)",
            self._tick_interval,
            self._catchup_interval,
        )

    async def stop(self) -> None:
        """Shut down the scheduler and the dispatcher."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            await self._dispatcher.stop()
            logger.info("Scheduler stopped")

    # -- Jobs ------------------------------------------------------------------

    async def tick(self, now: float | None = None) -> int:
        """Dispatch every task due at the current minute. Returns the count dispatched."""
        minute = current_minute(now)
        logger.debug("Calling back tasks for minute %d", minute)
        try:
            tasks = await self._store.query_due(minute)
        except StorageError:
            logger.exception("Failed to query tasks for minute %d, skipping tick", minute)
            return 0

        dispatched = 0
        for task in tasks:
            if self._dispatcher.submit(task):
                dispatched += 1
        if tasks:
            logger.info(
                "Tick %d: dispatched %d of %d due task(s)", minute, dispatched, len(tasks)
            )
        return dispatched
