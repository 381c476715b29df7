"""Tests for the HTTP API server."""

from unittest.mock import AsyncMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from src.api.server import ApiServer, _create_web_app
from src.scheduler.errors import StorageError
from src.scheduler.models import TaskState, current_minute
from src.scheduler.service import SchedulingService
from src.scheduler.store import TaskStore
from tests.helpers import make_task

HOOK = "http://example.com/hook"


# -- Helpers -----------------------------------------------------------------


async def _make_client(service):
    """Create a TestClient for the API app."""
    server = TestServer(_create_web_app(service))
    client = TestClient(server)
    await client.start_server()
    return client


@pytest.fixture
async def client(store: TaskStore):
    c = await _make_client(SchedulingService(store, page_size=2))
    yield c
    await c.close()


def _failed(trigger_at: int, tag: str, unique_id: str):
    task = make_task(trigger_at=trigger_at, tag=tag, unique_id=unique_id)
    task.record_result(500, b"nope", executed_at=trigger_at)
    return task


# -- Health check -----------------------------------------------------------


async def test_health_check(client) -> None:
    resp = await client.get("/health")
    assert resp.status == 200
    assert (await resp.json())["status"] == "ok"


async def test_pretty_output(client) -> None:
    resp = await client.get("/health?pretty")
    assert resp.status == 200
    assert "\n    " in await resp.text()


# -- PUT /task/ -------------------------------------------------------------


async def test_create_task(client, store: TaskStore) -> None:
    resp = await client.put(
        "/task/",
        json={"tag": "backup", "trigger_at": "+5m", "callback": HOOK, "callback_method": "POST"},
    )
    assert resp.status == 200
    task_id = (await resp.json())["task_id"]
    assert task_id.startswith("backup+")

    page = await store.query_by_tag("backup")
    assert [t.task_id for t in page.tasks] == [task_id]
    assert page.tasks[0].callback_method == "POST"


async def test_create_rejects_invalid_json(client) -> None:
    resp = await client.put("/task/", data=b"{not json")
    assert resp.status == 400
    assert (await resp.json())["error"] == "invalid JSON"


async def test_create_rejects_non_object(client) -> None:
    resp = await client.put("/task/", json=["a"])
    assert resp.status == 400


@pytest.mark.parametrize(
    "body",
    [
        {"trigger_at": "+5m", "callback": HOOK},
        {"tag": "x", "trigger_at": "+5q", "callback": HOOK},
        {"tag": "x-y", "trigger_at": "+5m", "callback": HOOK},
        {"tag": "x", "trigger_at": "+5m", "callback": "ftp://example.com"},
        {"tag": "x", "trigger_at": "+5m", "callback": HOOK, "callback_method": "PATCH"},
        {"tag": "x", "trigger_at": "+5m", "callback": HOOK, "retry": -2},
        {"tag": "x", "trigger_at": "+5m", "callback": HOOK, "retry": "many"},
    ],
)
async def test_create_validation_errors(client, body) -> None:
    resp = await client.put("/task/", json=body)
    assert resp.status == 400
    assert "error" in await resp.json()


async def test_create_storage_failure() -> None:
    store = AsyncMock()
    store.put.side_effect = StorageError("db down")
    c = await _make_client(SchedulingService(store))
    try:
        resp = await c.put("/task/", json={"tag": "x", "trigger_at": "+5m", "callback": HOOK})
        assert resp.status == 500
        assert (await resp.json())["error"] == "failed to store task"
    finally:
        await c.close()


# -- POST /reschedule/<ref> -------------------------------------------------


async def test_reschedule_failed_tasks(client, store: TaskStore) -> None:
    past = current_minute() - 600
    await store.put(_failed(past, "job", "u1"))
    await store.put(make_task(trigger_at=past, tag="job", unique_id="u2"))

    resp = await client.post("/reschedule/job?trigger_at=%2B1h")
    assert resp.status == 200
    tasks = (await resp.json())["tasks"]
    assert len(tasks) == 1
    assert tasks[0]["task_state"] == "pending"
    assert tasks[0]["task_id"].startswith("job+u1@")


async def test_reschedule_all_flag(client, store: TaskStore) -> None:
    past = current_minute() - 600
    await store.put(_failed(past, "job", "u1"))
    await store.put(make_task(trigger_at=past, tag="job", unique_id="u2"))

    resp = await client.post("/reschedule/job?all")
    assert resp.status == 200
    assert len((await resp.json())["tasks"]) == 2


async def test_reschedule_unknown_task(client) -> None:
    resp = await client.post("/reschedule/job+abc@1700000040")
    assert resp.status == 404


async def test_reschedule_bad_ref(client) -> None:
    resp = await client.post("/reschedule/bad-tag")
    assert resp.status == 400


async def test_reschedule_bad_time(client, store: TaskStore) -> None:
    resp = await client.post("/reschedule/job?trigger_at=tomorrow")
    assert resp.status == 400


async def test_reschedule_lookup_failure() -> None:
    store = AsyncMock()
    store.query_by_tag.side_effect = StorageError("db down")
    c = await _make_client(SchedulingService(store))
    try:
        resp = await c.post("/reschedule/job")
        assert resp.status == 500
    finally:
        await c.close()


# -- GET /status/ -----------------------------------------------------------


async def test_status_single_task(client, store: TaskStore) -> None:
    task = make_task(tag="job", unique_id="u1")
    await store.put(task)

    resp = await client.get(f"/status/{task.task_id}")
    assert resp.status == 200
    data = await resp.json()
    assert data["next"] is None
    assert data["tasks"][0]["task_id"] == task.task_id
    assert data["tasks"][0]["task_state"] == str(TaskState.PENDING)


async def test_status_pagination(client, store: TaskStore) -> None:
    for i in range(3):
        await store.put(make_task(trigger_at=1_700_000_040 + 60 * i, tag="job", unique_id=f"u{i}"))

    first = await (await client.get("/status/job")).json()
    assert len(first["tasks"]) == 2
    assert first["next"] == "job+u1@1700000100"

    second = await (await client.get("/status/job", params={"start_from": first["next"]})).json()
    assert [t["task_id"] for t in second["tasks"]] == ["job+u2@1700000160"]
    assert second["next"] is None


async def test_status_all_with_limit(client, store: TaskStore) -> None:
    for tag in ("a", "b", "c"):
        await store.put(make_task(tag=tag))

    data = await (await client.get("/status/?limit=3")).json()
    assert [t["tag"] for t in data["tasks"]] == ["a", "b", "c"]
    assert data["next"] is None


async def test_status_not_found(client) -> None:
    resp = await client.get("/status/job+abc@1700000040")
    assert resp.status == 404


@pytest.mark.parametrize(
    "path",
    ["/status/bad-tag", "/status/?limit=0", "/status/?limit=ten", "/status/?start_from=job"],
)
async def test_status_bad_request(client, path: str) -> None:
    resp = await client.get(path)
    assert resp.status == 400


async def test_status_storage_failure() -> None:
    store = AsyncMock()
    store.scan.side_effect = StorageError("db down")
    c = await _make_client(SchedulingService(store))
    try:
        resp = await c.get("/status/")
        assert resp.status == 500
        assert (await resp.json())["error"] == "failed to retrieve status"
    finally:
        await c.close()


# -- ApiServer lifecycle ----------------------------------------------------


async def test_server_start_stop(store: TaskStore) -> None:
    server = ApiServer(SchedulingService(store), host="127.0.0.1", port=0)
    await server.start()
    await server.stop()
    await server.stop()


async def test_reschedule_suffix_ref(client, store: TaskStore) -> None:
    past = current_minute() - 600
    await store.put(_failed(past, "job", "u1"))
    await store.put(_failed(past - 60, "job", "u2"))

    resp = await client.post("/reschedule/job+u1")
    assert resp.status == 200
    tasks = (await resp.json())["tasks"]
    assert [t["unique_id"] for t in tasks] == ["u1"]


async def test_status_suffix_ref(client, store: TaskStore) -> None:
    await store.put(make_task(tag="job", unique_id="u1"))
    await store.put(make_task(tag="job", unique_id="u2"))

    resp = await client.get("/status/job+u2")
    assert resp.status == 200
    assert [t["unique_id"] for t in (await resp.json())["tasks"]] == ["u2"]


async def test_reschedule_write_failure_hides_driver_error() -> None:
    failed = _failed(current_minute() - 600, "job", "u1")
    store = AsyncMock()
    store.get.return_value = failed
    store.put.side_effect = StorageError("task store failure: disk I/O error")
    c = await _make_client(SchedulingService(store))
    try:
        resp = await c.post(f"/reschedule/{failed.task_id}")
        assert resp.status == 500
        assert (await resp.json())["error"] == "failed to reschedule task"
    finally:
        await c.close()
