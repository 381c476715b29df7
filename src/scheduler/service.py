"""SchedulingService — create, reschedule, and status operations over the store."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from src.scheduler.errors import LookupFailed, StatusUnavailable, StorageError, TaskNotFound
from src.scheduler.models import Page, TaskState, current_minute, normalize_trigger_at

if TYPE_CHECKING:
    from src.scheduler.identity import TaskKey, TaskRef
    from src.scheduler.models import Task, TaskSpec
    from src.scheduler.store import Store

logger = logging.getLogger(__name__)


def _not_found(ref: TaskRef) -> TaskNotFound:
    name = ref.tag if ref.unique_id is None else f"{ref.tag}+{ref.unique_id}"
    if ref.trigger_at is not None:
        name = f"{name}@{ref.trigger_at}"
    msg = f"task not found: {name}"
    return TaskNotFound(msg)


def _is_narrowed(ref: TaskRef) -> bool:
    """True when the ref names a unique suffix or trigger time, not just a tag."""
    return ref.unique_id is not None or ref.trigger_at is not None


class SchedulingService:
    """Task lifecycle operations consumed by the HTTP API.

    Args:
        store: Task persistence.
        page_size: Default page size for status listings.
    """

    def __init__(self, store: Store, page_size: int = 100) -> None:
        self._store = store
        self._page_size = page_size

    # -- create ----------------------------------------------------------------

    async def create(self, spec: TaskSpec, now: float | None = None) -> Task:
        """Validate *spec*, normalize it into a pending Task, and persist it.

        Raises:
            TaskValidationError: if *spec* fails validation.
            StorageError: if the task could not be stored.
        """
        task = spec.to_task(now)
        logger.debug("Creating task: %s", task)
        await self._store.put(task)
        logger.info("Created task %s (trigger_at=%d)", task.task_id, task.trigger_at)
        return task

    # -- reschedule ------------------------------------------------------------

    async def reschedule(
        self,
        ref: TaskRef,
        trigger_at: str | int | None = None,
        include_all: bool = False,
        now: float | None = None,
    ) -> list[Task]:
        """Schedule failed (or, with *include_all*, all) occurrences of *ref* again.

        Each selected task keeps its tag and unique suffix, is reset to
        ``pending``, and is written under the new trigger time; the old row is
        left untouched.  Writes are not atomic: a storage failure aborts the
        call after any earlier writes have landed.

        Args:
            ref: A single task (tag + suffix + trigger time), the tasks of a tag
                narrowed to one suffix or one trigger time, or every occurrence
                of a tag.
            trigger_at: New trigger time spec; defaults to the next minute.
            include_all: Reschedule regardless of state.

        Raises:
            InvalidTimeSpec: if *trigger_at* is invalid.
            TaskNotFound: if a specific task, suffix or trigger time has no tasks.
            LookupFailed: if the candidate tasks could not be read.
            StorageError: if writing a rescheduled task failed.
        """
        if trigger_at is None or trigger_at == "":
            # A little slack in case the current minute is already being processed
            new_trigger_at = current_minute(now) + 60
        else:
            new_trigger_at = normalize_trigger_at(trigger_at, now)

        try:
            candidates = await self._collect(ref)
        except StorageError as exc:
            logger.exception("Failed to look up tasks for reschedule: %s", ref)
            msg = "failed to look up tasks to reschedule"
            raise LookupFailed(msg) from exc

        selected = [
            task for task in candidates if include_all or task.task_state == TaskState.FAILED
        ]
        for task in selected:
            task.reschedule(new_trigger_at)
            await self._store.put(task)

        logger.info(
            "Rescheduled %d of %d task(s) for %s to %d (all=%s)",
            len(selected),
            len(candidates),
            ref.tag,
            new_trigger_at,
            include_all,
        )
        return selected

    async def _collect(self, ref: TaskRef) -> list[Task]:
        if ref.is_exact:
            task = await self._store.get(ref.key())
            if task is None:
                raise _not_found(ref)
            return [task]

        tasks: list[Task] = []
        cursor: TaskKey | None = None
        while True:
            page = await self._store.query_by_tag(
                ref.tag,
                trigger_at=ref.trigger_at,
                unique_id=ref.unique_id,
                start_after=cursor,
                limit=self._page_size,
            )
            tasks.extend(page.tasks)
            if page.next is None:
                break
            cursor = page.next

        if _is_narrowed(ref) and not tasks:
            raise _not_found(ref)
        return tasks

    # -- status ----------------------------------------------------------------

    async def status(
        self,
        ref: TaskRef | None = None,
        start_from: TaskKey | None = None,
        future_only: bool = False,
        limit: int | None = None,
        now: float | None = None,
    ) -> Page:
        """Return one page of task status.

        The query mode follows the identity supplied: an exact task is a
        point lookup, a tag (optionally narrowed to one suffix or trigger
        time) uses the inverted index, and no identity scans the whole
        table.  Resume a listing by passing the returned ``Page.next`` as *start_from*.

        Raises:
            TaskNotFound: if a specific task, suffix or trigger time has no tasks.
            StatusUnavailable: if the store could not be read.
        """
        limit = limit or self._page_size
        try:
            if ref is not None and ref.is_exact:
                task = await self._store.get(ref.key())
                if task is None:
                    raise _not_found(ref)
                return Page(tasks=[task])

            if ref is not None:
                page = await self._store.query_by_tag(
                    ref.tag,
                    trigger_at=ref.trigger_at,
                    unique_id=ref.unique_id,
                    since=int(time.time() if now is None else now) if future_only else None,
                    start_after=start_from,
                    limit=limit,
                )
                if _is_narrowed(ref) and not page.tasks and start_from is None:
                    raise _not_found(ref)
                return page

            return await self._store.scan(
                after=current_minute(now) if future_only else None,
                start_after=start_from,
                limit=limit,
            )
        except StorageError as exc:
            logger.exception("Failed to retrieve status for %s", ref or "all tasks")
            raise StatusUnavailable from exc
