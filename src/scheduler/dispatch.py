"""Dispatcher — bounded asyncio worker pool in front of the CallbackExecutor."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.scheduler.executor import CallbackExecutor
    from src.scheduler.models import Task

logger = logging.getLogger(__name__)


class Dispatcher:
    """Queues tasks for execution by a fixed number of workers.

    ``submit()`` never blocks the caller.  When the queue is full the task is
    rejected and stays ``pending`` in the store, where the next catchup pass
    will find it again.

    Args:
        executor: Executes each dequeued task.
        workers: Number of concurrent executions.
        queue_size: Maximum number of tasks waiting for a worker.
        shutdown_grace_seconds: How long ``stop()`` waits for in-flight
            executions before cancelling them.
    """

    def __init__(
        self,
        executor: CallbackExecutor,
        workers: int,
        queue_size: int,
        shutdown_grace_seconds: float = 10.0,
    ) -> None:
        self._executor = executor
        self._workers = workers
        self._queue: asyncio.Queue[Task] = asyncio.Queue(maxsize=queue_size)
        self._grace = shutdown_grace_seconds
        self._tasks: list[asyncio.Task] = []
        self._busy: set[asyncio.Task] = set()
        self._closing = False

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def pending(self) -> int:
        """Number of tasks waiting for a worker."""
        return self._queue.qsize()

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the worker tasks."""
        if self._tasks:
            return
        self._closing = False
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"dispatch-worker-{i}")
            for i in range(self._workers)
        ]
        logger.info(
            "Dispatcher started (workers=%d, queue_size=%d)",
            self._workers,
            self._queue.maxsize,
        )

    async def stop(self) -> None:
        """Stop accepting work and let in-flight executions finish.

        Idle workers exit at once.  Busy workers get ``shutdown_grace_seconds``
        to complete their current task; any still running after that are
        cancelled, and the executor returns their tasks to ``pending``.
        Queued tasks are dropped and stay pending in the store.
        """
        if not self._tasks:
            return
        self._closing = True
        for task in self._tasks:
            if task not in self._busy:
                task.cancel()

        if self._busy:
            logger.info(
                "Waiting up to %.1fs for %d in-flight callback(s)", self._grace, len(self._busy)
            )
            _, still_running = await asyncio.wait(self._tasks, timeout=self._grace)
            if still_running:
                logger.warning(
                    "Cancelling %d callback(s) still running after shutdown grace",
                    len(still_running),
                )
                for task in still_running:
                    task.cancel()

        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._busy.clear()
        logger.info("Dispatcher stopped (%d task(s) left queued)", self._queue.qsize())

    async def join(self) -> None:
        """Wait until every queued task has been executed."""
        await self._queue.join()

    # -- Dispatch --------------------------------------------------------------

    def submit(self, task: Task) -> bool:
        """Queue *task* for execution. Returns False if the pool is saturated or stopping."""
        if self._closing:
            return False
        try:
            self._queue.put_nowait(task)
        except asyncio.QueueFull:
            logger.warning(
                "Dispatch queue full (%d), deferring task %s to catchup",
                self._queue.maxsize,
                task.task_id,
            )
            return False
        return True

    async def _worker(self, index: int) -> None:
        current = asyncio.current_task()
        while not self._closing:
            task = await self._queue.get()
            self._busy.add(current)
            try:
                await self._executor.execute(task)
            except Exception:
                logger.exception("Worker %d: execution failed for task %s", index, task.task_id)
            finally:
                self._busy.discard(current)
                self._queue.task_done()
