"""Async HTTP API for creating, rescheduling, and inspecting tasks.

Routes:
    PUT  /task/                 create a task from a JSON body
    POST /reschedule/<ref>      reschedule failed (or ``?all``) occurrences
    GET  /status/[<ref>]        status of one task, a tag, or everything
    GET  /health                liveness check

``<ref>`` is ``<tag>[+<unique>][@<trigger_at>]``.  Any route accepts
``?pretty`` to indent the JSON response.
"""

from __future__ import annotations

import functools
import json
import logging
from typing import Any

import pydantic
from aiohttp import web

from src.config import settings
from src.scheduler.errors import (
    LookupFailed,
    StatusUnavailable,
    StorageError,
    TaskNotFound,
    TaskValidationError,
)
from src.scheduler.identity import format_task_id, parse_task_key, parse_task_ref
from src.scheduler.models import TaskSpec
from src.scheduler.service import SchedulingService

logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("service", SchedulingService)

_FALSE_VALUES = ("false", "0", "no")


def _respond(request: web.Request, data: Any, status: int = 200) -> web.Response:
    dumps = json.dumps
    if "pretty" in request.query:
        dumps = functools.partial(json.dumps, indent=4)
    return web.json_response(data, status=status, dumps=dumps)


def _error(request: web.Request, status: int, message: str) -> web.Response:
    return _respond(request, {"error": message}, status=status)


def _flag(request: web.Request, name: str) -> bool:
    """Query flags are set by presence (``?all``) unless explicitly false."""
    if name not in request.query:
        return False
    return request.query[name].lower() not in _FALSE_VALUES


async def _create_task(request: web.Request) -> web.Response:
    """PUT /task/ — validate and store a new task, returning its ID."""
    service = request.app[SERVICE_KEY]
    try:
        body = await request.json()
    except ValueError:
        return _error(request, 400, "invalid JSON")
    if not isinstance(body, dict):
        return _error(request, 400, "expected a JSON object")

    try:
        spec = TaskSpec.model_validate(body)
        task = await service.create(spec)
    except pydantic.ValidationError as exc:
        return _error(request, 400, str(exc))
    except TaskValidationError as exc:
        return _error(request, 400, str(exc))
    except StorageError:
        logger.exception("Failed to create task")
        return _error(request, 500, "failed to store task")

    return _respond(request, {"task_id": task.task_id})


async def _reschedule(request: web.Request) -> web.Response:
    """POST /reschedule/<ref>[?trigger_at=...&all] — move tasks to a new time."""
    service = request.app[SERVICE_KEY]
    include_all = _flag(request, "all")
    try:
        ref = parse_task_ref(request.match_info["ref"])
        tasks = await service.reschedule(
            ref, request.query.get("trigger_at"), include_all=include_all
        )
    except TaskValidationError as exc:
        return _error(request, 400, str(exc))
    except TaskNotFound as exc:
        return _error(request, 404, str(exc))
    except LookupFailed as exc:
        return _error(request, 500, str(exc))
    except StorageError:
        logger.exception("Failed to store rescheduled task(s) for %s", request.match_info["ref"])
        return _error(request, 500, "failed to reschedule task")

    logger.debug(
        "Processed /reschedule/%s (all=%s): %d task(s)",
        request.match_info["ref"],
        include_all,
        len(tasks),
    )
    return _respond(request, {"tasks": [t.to_dict() for t in tasks]})


async def _status(request: web.Request) -> web.Response:
    """GET /status/[<ref>][?start_from=...&future_only&limit=N] — one page of tasks."""
    service = request.app[SERVICE_KEY]
    raw_ref = request.match_info.get("ref", "")
    raw_start = request.query.get("start_from", "")
    raw_limit = request.query.get("limit", "")

    limit: int | None = None
    if raw_limit:
        if not raw_limit.isdigit() or int(raw_limit) < 1:
            return _error(request, 400, "limit must be a positive integer")
        limit = int(raw_limit)

    try:
        ref = parse_task_ref(raw_ref) if raw_ref else None
        start_from = parse_task_key(raw_start) if raw_start else None
        page = await service.status(
            ref, start_from, future_only=_flag(request, "future_only"), limit=limit
        )
    except TaskValidationError as exc:
        return _error(request, 400, str(exc))
    except TaskNotFound as exc:
        return _error(request, 404, str(exc))
    except StatusUnavailable as exc:
        return _error(request, 500, str(exc))

    return _respond(
        request,
        {
            "tasks": [t.to_dict() for t in page.tasks],
            "next": format_task_id(page.next) if page.next else None,
        },
    )


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return _respond(request, {"status": "ok"})


def _create_web_app(service: SchedulingService) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application()
    app[SERVICE_KEY] = service
    app.router.add_get("/health", _health)
    app.router.add_put("/task/", _create_task)
    app.router.add_post("/reschedule/{ref}", _reschedule)
    app.router.add_get("/status/", _status)
    app.router.add_get("/status/{ref}", _status)
    return app


class ApiServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        service: SchedulingService,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self._service = service
        self.host = settings.listen_ip if host is None else host
        self.port = settings.listen_port if port is None else port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for API requests."""
        app = _create_web_app(self._service)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("API server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("API server stopped")
