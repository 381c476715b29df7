"""Catchup recovery — replay pending tasks whose trigger time has passed.

Tasks can be missed while the service is down or when the dispatch queue is
saturated.  A catchup pass scans the whole table for ``pending`` rows at or
before the current minute and hands them to the dispatcher.  Tasks that are
too late are skipped by the executor, so nothing stays pending forever.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.scheduler.errors import StorageError
from src.scheduler.models import TaskState, current_minute

if TYPE_CHECKING:
    from src.scheduler.dispatch import Dispatcher
    from src.scheduler.identity import TaskKey
    from src.scheduler.store import Store

logger = logging.getLogger(__name__)


class CatchupScanner:
    """Finds overdue pending tasks and dispatches them.

    Safe to run repeatedly; the executor's claim step keeps a task from
    running twice when the tick scheduler picks it up at the same time.
    """

    def __init__(self, store: Store, dispatcher: Dispatcher, page_size: int = 100) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._page_size = page_size

    async def run(self, now: float | None = None) -> int:
        """Run one catchup pass. Returns the number of tasks dispatched."""
        minute = current_minute(now)
        logger.info("Starting catch up (until=%d)", minute)

        dispatched = 0
        cursor: TaskKey | None = None
        while True:
            try:
                page = await self._store.scan(
                    until=minute,
                    state=TaskState.PENDING,
                    start_after=cursor,
                    limit=self._page_size,
                )
            except StorageError:
                logger.exception("Scan failed while catching up, aborting pass")
                return dispatched

            for task in page.tasks:
                logger.debug("Catching up on pending task: %s", task)
                if self._dispatcher.submit(task):
                    dispatched += 1

            if page.next is None:
                break
            cursor = page.next

        if dispatched:
            logger.info("Catch up finished: dispatched %d missed task(s)", dispatched)
        else:
            logger.info("Catch up finished: nothing to do")
        return dispatched
