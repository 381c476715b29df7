"""Task identity: structured keys internally, delimited strings on the wire.

A stored task is addressed by ``TaskKey(trigger_at, tag, unique_id)``.  The
string form ``<tag>+<unique_id>@<trigger_at>`` exists only at the API
boundary, for task IDs and pagination cursors.
"""

from __future__ import annotations

import re
from typing import NamedTuple

from src.scheduler.errors import InvalidTaskId

TAG_DELIMITER = "+"
ID_DELIMITER = "@"

TAG_PATTERN = re.compile(r"[A-Za-z0-9]*")
_UNIQUE_PATTERN = re.compile(r"[A-Za-z0-9]+")
_TIMESTAMP_PATTERN = re.compile(r"[0-9]+")


class TaskKey(NamedTuple):
    """Primary key of a stored task, ordered the way the store sorts rows."""

    trigger_at: int
    tag: str
    unique_id: str


class TaskRef(NamedTuple):
    """A possibly partial task identity supplied by a client."""

    tag: str
    unique_id: str | None = None
    trigger_at: int | None = None

    @property
    def is_exact(self) -> bool:
        """True when the ref names exactly one stored task."""
        return self.unique_id is not None and self.trigger_at is not None

    def key(self) -> TaskKey:
        if self.unique_id is None or self.trigger_at is None:
            msg = f"task reference '{self}' is not a full key"
            raise InvalidTaskId(msg)
        return TaskKey(self.trigger_at, self.tag, self.unique_id)


def format_task_id(key: TaskKey) -> str:
    """Encode a key as ``<tag>+<unique_id>@<trigger_at>``."""
    return f"{key.tag}{TAG_DELIMITER}{key.unique_id}{ID_DELIMITER}{key.trigger_at}"


def parse_task_ref(text: str) -> TaskRef:
    """Parse ``<tag>[+<unique_id>][@<trigger_at>]`` into a TaskRef.

    Raises:
        InvalidTaskId: if any component is empty, malformed, or contains a
            reserved delimiter.
    """
    name, has_time, trigger_text = text.partition(ID_DELIMITER)
    tag, has_unique, unique_id = name.partition(TAG_DELIMITER)

    if not tag or not TAG_PATTERN.fullmatch(tag):
        msg = f"invalid task id '{text}': tag must be a non-empty alphanumeric string"
        raise InvalidTaskId(msg)

    if has_unique and not _UNIQUE_PATTERN.fullmatch(unique_id):
        msg = f"invalid task id '{text}': malformed unique suffix"
        raise InvalidTaskId(msg)

    trigger_at: int | None = None
    if has_time:
        if not _TIMESTAMP_PATTERN.fullmatch(trigger_text):
            msg = f"invalid task id '{text}': trigger time must be a Unix timestamp"
            raise InvalidTaskId(msg)
        trigger_at = int(trigger_text)
        if trigger_at % 60:
            msg = f"invalid task id '{text}': trigger time must be on 1-minute resolution"
            raise InvalidTaskId(msg)

    return TaskRef(tag=tag, unique_id=unique_id if has_unique else None, trigger_at=trigger_at)


def parse_task_key(text: str) -> TaskKey:
    """Parse a complete ``<tag>+<unique_id>@<trigger_at>`` identity."""
    ref = parse_task_ref(text)
    if not ref.is_exact:
        msg = f"invalid task id '{text}': expected <tag>+<unique>@<trigger_at>"
        raise InvalidTaskId(msg)
    return ref.key()
