"""CallbackExecutor — runs a due task's HTTP callback and records the outcome."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from src.scheduler.errors import StorageError
from src.scheduler.models import TaskState, current_minute
from src.scheduler.transport import send_with_retry

if TYPE_CHECKING:
    import httpx

    from src.scheduler.models import Task
    from src.scheduler.store import Store

logger = logging.getLogger(__name__)


class CallbackExecutor:
    """Executes tasks by calling their endpoint and persisting the result.

    Execution is fire-and-forget from the scheduler's point of view: errors
    are logged, never raised, and the only durable record is the task row.

    Args:
        store: Store used for state transitions and the final write.
        client: Shared HTTP client for callbacks.
    """

    def __init__(self, store: Store, client: httpx.AsyncClient) -> None:
        self._store = store
        self._client = client

    async def execute(self, task: Task, now: float | None = None) -> Task | None:
        """Run *task* if it is still within its max delay and nobody else has claimed it.

        Returns the task in its final state, or None when another dispatcher
        owns it.  The return value is for observability only.
        """
        minute = current_minute(now)
        if task.is_past_max_delay(minute):
            logger.error(
                "Skipping callback past max_delay: %s (trigger_at=%d, current_minute=%d,"
                " max_delay=%d)",
                task.task_id,
                task.trigger_at,
                minute,
                task.max_delay,
            )
            await self._mark_skipped(task)
            return task

        if not await self._claim(task):
            logger.info("Task already claimed elsewhere, not running: %s", task.task_id)
            return None

        logger.debug("Starting callback: %s", task)
        try:
            status, body = await send_with_retry(
                self._client,
                task.callback_endpoint,
                task.payload,
                {},
                task.callback_method,
                task.expected_http_status,
                task.retry,
            )
        except asyncio.CancelledError:
            await self._release(task)
            raise
        task.record_result(status, body)
        logger.info(
            "Callback completed: %s state=%s http_status=%d",
            task.task_id,
            task.task_state,
            status,
        )

        try:
            await self._store.put(task)
        except StorageError:
            logger.exception("Failed to store result for task %s", task.task_id)
        return task

    async def _claim(self, task: Task) -> bool:
        """Move pending → running. A store failure is logged and does not stop execution."""
        try:
            claimed = await self._store.transition(
                task.key, TaskState.PENDING, TaskState.RUNNING
            )
        except StorageError:
            logger.exception("Failed to mark task running, executing anyway: %s", task.task_id)
        else:
            if not claimed:
                return False
        task.task_state = TaskState.RUNNING
        return True

    async def _release(self, task: Task) -> None:
        """Return an interrupted task to pending so a later catchup pass runs it."""
        logger.warning("Callback interrupted, releasing task: %s", task.task_id)
        try:
            await self._store.transition(task.key, TaskState.RUNNING, TaskState.PENDING)
        except StorageError:
            logger.exception("Failed to release interrupted task: %s", task.task_id)
        task.task_state = TaskState.PENDING

    async def _mark_skipped(self, task: Task) -> None:
        try:
            skipped = await self._store.transition(
                task.key, TaskState.PENDING, TaskState.SKIPPED
            )
        except StorageError:
            logger.exception("Failed to mark task skipped: %s", task.task_id)
            return
        if skipped:
            task.task_state = TaskState.SKIPPED
