"""Task data model, validation, and trigger-time normalization."""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field

from src.scheduler.errors import (
    IncompleteTask,
    InvalidCallbackURL,
    InvalidTag,
    InvalidTimeSpec,
    NegativeField,
    UnsupportedMethod,
)
from src.scheduler.identity import TAG_PATTERN, TaskKey, format_task_id

DEFAULT_CALLBACK_METHOD = "GET"
DEFAULT_RETRY = 1
DEFAULT_EXPECTED_HTTP_STATUS = 200
DEFAULT_MAX_DELAY = 10  # minutes
MAX_RESPONSE_BYTES = 256
ALLOWED_METHODS = ("GET", "POST", "PUT", "DELETE")

_RELATIVE_SPEC = re.compile(r"\+([0-9]+)([mhd])")
_ABSOLUTE_SPEC = re.compile(r"[0-9]+")
_UNIT_SECONDS = {"m": 60, "h": 3600, "d": 86400}


class TaskState(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESSFUL = "successful"
    FAILED = "failed"
    SKIPPED = "skipped"


def current_minute(now: float | None = None) -> int:
    """Return the Unix timestamp floored to the minute."""
    ts = int(time.time() if now is None else now)
    return ts - ts % 60


def normalize_trigger_at(spec: str | int, now: float | None = None) -> int:
    """Turn a trigger time specification into a minute-aligned Unix timestamp.

    Accepts either an absolute timestamp (a multiple of 60, strictly in the
    future) or a relative ``+<N>{m|h|d}`` spec, which is added to the
    current minute.  Re-applying it to its own output is a no-op as long as
    that minute is still in the future.

    Raises:
        InvalidTimeSpec: if *spec* cannot be parsed or violates a rule.
    """
    text = str(spec)
    # Neither form can be shorter than 3 characters
    if len(text) < 3:
        msg = f"invalid time specification: '{text}'"
        raise InvalidTimeSpec(msg)

    minute = current_minute(now)

    if text.startswith("+"):
        match = _RELATIVE_SPEC.fullmatch(text)
        if match is None:
            msg = f"relative time specification '{text}' does not match +<int>{{m|h|d}}"
            raise InvalidTimeSpec(msg)
        amount, unit = match.groups()
        return minute + int(amount) * _UNIT_SECONDS[unit]

    if not _ABSOLUTE_SPEC.fullmatch(text):
        msg = f"invalid Unix timestamp: '{text}'"
        raise InvalidTimeSpec(msg)
    timestamp = int(text)
    if timestamp % 60:
        msg = "timestamp must be on 1-minute resolution"
        raise InvalidTimeSpec(msg)
    if timestamp <= minute:
        msg = "timestamp must be in the future"
        raise InvalidTimeSpec(msg)
    return timestamp


def validate_tag(tag: str) -> None:
    """Raise InvalidTag unless *tag* is alphanumeric (the empty string is allowed)."""
    if not TAG_PATTERN.fullmatch(tag):
        msg = f"invalid tag '{tag}': only letters and digits are allowed"
        raise InvalidTag(msg)


def _validate_callback_url(url: str) -> None:
    try:
        parts = urlsplit(url)
    except ValueError as exc:
        msg = f"invalid callback URL: {url}"
        raise InvalidCallbackURL(msg) from exc
    if parts.scheme not in ("http", "https") or not parts.hostname:
        msg = f"invalid callback URL: {url}"
        raise InvalidCallbackURL(msg)


def make_unique_id() -> str:
    """Generate the unique suffix that makes a tag individually addressable."""
    return uuid.uuid4().hex


class TaskSpec(BaseModel):
    """A task as submitted by a client, before defaults and normalization.

    Field names match the JSON accepted by ``PUT /task/``; the callback
    endpoint travels as ``callback``.
    """

    model_config = ConfigDict(populate_by_name=True)

    trigger_at: str | int | None = None
    tag: str | None = None
    payload: str | None = None
    callback_endpoint: str | None = Field(default=None, alias="callback")
    callback_method: str | None = None
    retry: int | None = None
    expected_http_status: int | None = None
    max_delay: int | None = None

    def set_defaults(self) -> None:
        """Fill unset optional fields. Zero and empty values count as unset."""
        if not self.callback_method:
            self.callback_method = DEFAULT_CALLBACK_METHOD
        if not self.retry:
            self.retry = DEFAULT_RETRY
        if not self.expected_http_status:
            self.expected_http_status = DEFAULT_EXPECTED_HTTP_STATUS
        if not self.max_delay:
            self.max_delay = DEFAULT_MAX_DELAY
        if self.payload is None:
            self.payload = ""

    def ensure_valid(self) -> None:
        """Check required fields, method, tag, callback URL and numeric fields.

        Raises the matching TaskValidationError subclass for the first
        problem found.
        """
        missing = [
            name
            for name, value in (
                ("tag", self.tag),
                ("trigger_at", self.trigger_at),
                ("callback", self.callback_endpoint),
            )
            if value is None or value == ""
        ]
        if missing:
            msg = f"missing required field(s): {', '.join(missing)}"
            raise IncompleteTask(msg)

        method = self.callback_method or DEFAULT_CALLBACK_METHOD
        if method not in ALLOWED_METHODS:
            msg = f"unsupported HTTP method: {method}"
            raise UnsupportedMethod(msg)

        validate_tag(self.tag)
        _validate_callback_url(self.callback_endpoint)

        if self.retry is not None and self.retry < 0:
            msg = "retry must be a non-negative integer"
            raise NegativeField(msg)
        if self.max_delay is not None and self.max_delay < 0:
            msg = "max_delay must be a non-negative integer"
            raise NegativeField(msg)

    def to_task(self, now: float | None = None) -> Task:
        """Apply defaults, validate, normalize the trigger time and assign an identity."""
        self.set_defaults()
        self.ensure_valid()
        return Task(
            trigger_at=normalize_trigger_at(self.trigger_at, now),
            tag=self.tag,
            callback_endpoint=self.callback_endpoint,
            callback_method=self.callback_method,
            payload=self.payload,
            retry=self.retry,
            expected_http_status=self.expected_http_status,
            max_delay=self.max_delay,
        )


@dataclass
class Task:
    """A unit of deferred work, mapping one-to-one to a row in ``tasks``.

    Attributes:
        trigger_at: Minute-aligned Unix timestamp at which the task is due.
        tag: User-supplied alphanumeric name; not unique on its own.
        callback_endpoint: Absolute http(s) URL to call.
        unique_id: Generated suffix that, with tag and trigger_at, forms the key.
        callback_method: GET, POST, PUT or DELETE.
        payload: Request body sent to the callback.
        retry: Maximum number of callback attempts.
        expected_http_status: Response status that counts as success.
        max_delay: Minutes past trigger_at after which the task is skipped.
        task_state: Lifecycle state.
        response_status: Last observed HTTP status (0 on transport failure).
        response_body: First ``MAX_RESPONSE_BYTES`` of the last response body.
        executed_at: Unix timestamp of the completed execution.
    """

    trigger_at: int
    tag: str
    callback_endpoint: str
    unique_id: str = field(default_factory=make_unique_id)
    callback_method: str = DEFAULT_CALLBACK_METHOD
    payload: str = ""
    retry: int = DEFAULT_RETRY
    expected_http_status: int = DEFAULT_EXPECTED_HTTP_STATUS
    max_delay: int = DEFAULT_MAX_DELAY
    task_state: TaskState = TaskState.PENDING
    response_status: int | None = None
    response_body: str = ""
    executed_at: int | None = None

    def __str__(self) -> str:
        return f"{self.task_id} -> {self.callback_endpoint}"

    # -- Identity --------------------------------------------------------------

    @property
    def key(self) -> TaskKey:
        return TaskKey(self.trigger_at, self.tag, self.unique_id)

    @property
    def task_id(self) -> str:
        """Wire identity ``<tag>+<unique_id>@<trigger_at>``."""
        return format_task_id(self.key)

    # -- Lifecycle -------------------------------------------------------------

    def is_past_max_delay(self, minute: int) -> bool:
        """True when executing at *minute* would be later than max_delay allows."""
        return minute > self.trigger_at + self.max_delay * 60

    def record_result(self, status: int, body: bytes, executed_at: int | None = None) -> None:
        """Store the outcome of a callback and move to successful or failed."""
        if status == self.expected_http_status:
            self.task_state = TaskState.SUCCESSFUL
        else:
            self.task_state = TaskState.FAILED
        self.response_status = status
        self.response_body = body[:MAX_RESPONSE_BYTES].decode("utf-8", errors="replace")
        self.executed_at = int(time.time()) if executed_at is None else executed_at

    def reschedule(self, trigger_at: int) -> None:
        """Move to a new trigger time as a fresh pending entry, keeping the identity suffix."""
        self.trigger_at = trigger_at
        self.task_state = TaskState.PENDING
        self.response_status = None
        self.response_body = ""
        self.executed_at = None

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``tasks`` column order."""
        return (
            self.trigger_at,
            self.tag,
            self.unique_id,
            self.callback_endpoint,
            self.callback_method,
            self.payload,
            self.retry,
            self.expected_http_status,
            self.max_delay,
            str(self.task_state),
            self.response_status,
            self.response_body,
            self.executed_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Task:
        """Deserialize from a database row.

        Raises:
            ValueError: if the row is malformed or holds an unknown state.
        """
        if len(row) != 13:
            msg = f"expected 13 columns, got {len(row)}"
            raise ValueError(msg)
        return cls(
            trigger_at=int(row[0]),
            tag=row[1],
            unique_id=row[2],
            callback_endpoint=row[3],
            callback_method=row[4],
            payload=row[5] or "",
            retry=int(row[6]),
            expected_http_status=int(row[7]),
            max_delay=int(row[8]),
            task_state=TaskState(row[9]),
            response_status=None if row[10] is None else int(row[10]),
            response_body=row[11] or "",
            executed_at=None if row[12] is None else int(row[12]),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation used by the HTTP API."""
        return {
            "task_id": self.task_id,
            "trigger_at": self.trigger_at,
            "tag": self.tag,
            "unique_id": self.unique_id,
            "callback": self.callback_endpoint,
            "callback_method": self.callback_method,
            "payload": self.payload,
            "retry": self.retry,
            "expected_http_status": self.expected_http_status,
            "max_delay": self.max_delay,
            "task_state": str(self.task_state),
            "response_status": self.response_status,
            "response_body": self.response_body,
            "executed_at": self.executed_at,
        }


@dataclass
class Page:
    """One page of tasks plus the key to resume from, if more rows exist."""

    tasks: list[Task]
    next: TaskKey | None = None
