"""Tests for CatchupScanner — recovery of overdue pending tasks."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.scheduler.catchup import CatchupScanner
from src.scheduler.errors import StorageError
from src.scheduler.identity import TaskKey
from src.scheduler.models import Page, TaskState
from src.scheduler.store import TaskStore
from tests.helpers import make_task

T0 = 1_700_000_040
NOW = T0 + 30


@pytest.fixture
def dispatcher() -> MagicMock:
    d = MagicMock()
    d.submit.return_value = True
    return d


def _submitted(dispatcher: MagicMock) -> list[str]:
    return [c.args[0].tag for c in dispatcher.submit.call_args_list]


async def test_overdue_pending_tasks_are_dispatched(store: TaskStore, dispatcher) -> None:
    await store.put(make_task(trigger_at=T0 - 600, tag="old"))
    await store.put(make_task(trigger_at=T0, tag="now"))

    count = await CatchupScanner(store, dispatcher).run(now=NOW)

    assert count == 2
    assert _submitted(dispatcher) == ["old", "now"]


async def test_future_tasks_are_ignored(store: TaskStore, dispatcher) -> None:
    await store.put(make_task(trigger_at=T0 + 60, tag="later"))

    assert await CatchupScanner(store, dispatcher).run(now=NOW) == 0
    dispatcher.submit.assert_not_called()


async def test_non_pending_tasks_are_ignored(store: TaskStore, dispatcher) -> None:
    done = make_task(trigger_at=T0 - 60, tag="done")
    done.record_result(200, b"ok")
    running = make_task(trigger_at=T0 - 60, tag="running", task_state=TaskState.RUNNING)
    skipped = make_task(trigger_at=T0 - 60, tag="skipped", task_state=TaskState.SKIPPED)
    for task in (done, running, skipped):
        await store.put(task)
    await store.put(make_task(trigger_at=T0 - 60, tag="waiting"))

    await CatchupScanner(store, dispatcher).run(now=NOW)

    assert _submitted(dispatcher) == ["waiting"]


async def test_follows_pages(store: TaskStore, dispatcher) -> None:
    for i in range(7):
        await store.put(make_task(trigger_at=T0 - 60 * i, tag=f"t{i}"))

    count = await CatchupScanner(store, dispatcher, page_size=3).run(now=NOW)

    assert count == 7
    assert sorted(_submitted(dispatcher)) == [f"t{i}" for i in range(7)]


async def test_rejected_submissions_are_not_counted(store: TaskStore, dispatcher) -> None:
    await store.put(make_task(trigger_at=T0, tag="a"))
    await store.put(make_task(trigger_at=T0, tag="b"))
    dispatcher.submit.side_effect = [True, False]

    assert await CatchupScanner(store, dispatcher).run(now=NOW) == 1


async def test_scan_failure_aborts_pass(dispatcher) -> None:
    store = AsyncMock()
    store.scan.side_effect = [
        Page(tasks=[make_task(tag="first")], next=TaskKey(T0, "first", "a" * 32)),
        StorageError("db down"),
    ]

    count = await CatchupScanner(store, dispatcher).run(now=NOW)

    assert count == 1
    assert store.scan.await_count == 2
    assert _submitted(dispatcher) == ["first"]
