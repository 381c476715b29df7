"""Test helpers shared across modules."""

import httpx

from src.scheduler.models import Task


def make_task(
    trigger_at: int = 1_700_000_040,
    tag: str = "t0",
    unique_id: str = "a" * 32,
    **kwargs,
) -> Task:
    """Build a Task with sensible defaults for tests."""
    defaults = {"callback_endpoint": "http://callback.test/hook"}
    defaults.update(kwargs)
    return Task(trigger_at=trigger_at, tag=tag, unique_id=unique_id, **defaults)


def mock_client(responses: list[int | Exception], calls: list[httpx.Request]) -> httpx.AsyncClient:
    """AsyncClient whose transport replays *responses* in order and records requests.

    Each entry is either a status code (answered with body ``"status <code>"``)
    or an exception to raise.  The last entry repeats once the list runs out.
    """
    remaining = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        item = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item, text=f"status {item}")

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
