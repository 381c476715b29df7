"""TaskStore — libsql persistence for tasks, with a tag inverted index."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Protocol

from src.db import AsyncConnection, connect
from src.scheduler.errors import StorageError
from src.scheduler.identity import TaskKey
from src.scheduler.models import Page, Task, TaskState

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS tasks (
    trigger_at INTEGER NOT NULL,
    tag TEXT NOT NULL,
    unique_id TEXT NOT NULL,
    callback_endpoint TEXT NOT NULL,
    callback_method TEXT NOT NULL DEFAULT 'GET',
    payload TEXT NOT NULL DEFAULT '',
    retry INTEGER NOT NULL DEFAULT 1,
    expected_http_status INTEGER NOT NULL DEFAULT 200,
    max_delay INTEGER NOT NULL DEFAULT 10,
    task_state TEXT NOT NULL,
    response_status INTEGER,
    response_body TEXT NOT NULL DEFAULT '',
    executed_at INTEGER,
    PRIMARY KEY (trigger_at, tag, unique_id)
)
"""

# Inverted index: all occurrences of a tag without a full scan
_CREATE_TAG_INDEX = """
CREATE INDEX IF NOT EXISTS tasks_by_tag ON tasks (tag, trigger_at, unique_id)
"""

_COLUMNS = (
    "trigger_at, tag, unique_id, callback_endpoint, callback_method, payload, retry,"
    " expected_http_status, max_delay, task_state, response_status, response_body,"
    " executed_at"
)


class Store(Protocol):
    """Persistence operations the scheduling core relies on."""

    async def get(self, key: TaskKey) -> Task | None: ...

    async def put(self, task: Task) -> None: ...

    async def transition(
        self, key: TaskKey, from_state: TaskState, to_state: TaskState
    ) -> bool: ...

    async def query_due(self, trigger_at: int) -> list[Task]: ...

    async def query_by_tag(
        self,
        tag: str,
        *,
        trigger_at: int | None = None,
        unique_id: str | None = None,
        since: int | None = None,
        start_after: TaskKey | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page: ...

    async def scan(
        self,
        *,
        until: int | None = None,
        after: int | None = None,
        state: TaskState | None = None,
        start_after: TaskKey | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page: ...


def _decode_rows(rows: list[tuple]) -> list[Task]:
    """Deserialize rows, logging and skipping any that cannot be decoded."""
    tasks: list[Task] = []
    for row in rows:
        try:
            tasks.append(Task.from_row(row))
        except (ValueError, TypeError):
            logger.exception("Skipping undecodable task row: %r", row[:3])
    return tasks


def _paginate(rows: list[tuple], limit: int) -> Page:
    """Build a Page from up to ``limit + 1`` rows; the extra row signals more data."""
    has_more = len(rows) > limit
    rows = rows[:limit]
    tasks = _decode_rows(rows)
    next_key = None
    if has_more and rows:
        last = rows[-1]
        next_key = TaskKey(int(last[0]), last[1], last[2])
    return Page(tasks=tasks, next=next_key)


class TaskStore:
    """Persists tasks in SQLite / Turso.

    Singleton accessed via ``TaskStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).  Every driver
    failure surfaces as :class:`StorageError`.
    """

    _instance: TaskStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    @classmethod
    def get(cls) -> TaskStore:
        """Return the shared TaskStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncConnection]:
        try:
            async with connect(self._db_path) as db:
                if not self._initialised:
                    await db.execute(_CREATE_TABLE)
                    await db.execute(_CREATE_TAG_INDEX)
                    await db.commit()
                    self._initialised = True
                yield db
        except StorageError:
            raise
        except Exception as exc:
            msg = f"task store failure: {exc}"
            raise StorageError(msg) from exc

    async def _fetch(self, sql: str, params: tuple) -> list[tuple]:
        async with self._session() as db:
            cursor = await db.execute(sql, params)
            return await cursor.fetchall()

    # -- Point operations ------------------------------------------------------

    async def get(self, key: TaskKey) -> Task | None:
        """Fetch a task by primary key, or None if not found."""
        rows = await self._fetch(
            f"SELECT {_COLUMNS} FROM tasks"
            " WHERE trigger_at = ? AND tag = ? AND unique_id = ?",
            (key.trigger_at, key.tag, key.unique_id),
        )
        tasks = _decode_rows(rows)
        return tasks[0] if tasks else None

    async def put(self, task: Task) -> None:
        """Insert or replace a task."""
        async with self._session() as db:
            await db.execute(
                f"INSERT OR REPLACE INTO tasks ({_COLUMNS})"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                task.to_row(),
            )
            await db.commit()
        logger.debug("Stored task %s (%s)", task.task_id, task.task_state)

    async def transition(
        self, key: TaskKey, from_state: TaskState, to_state: TaskState
    ) -> bool:
        """Conditionally move a task between states.

        Returns True only if the row existed and was still in *from_state*;
        concurrent callers racing on the same row see exactly one True.
        """
        async with self._session() as db:
            cursor = await db.execute(
                "UPDATE tasks SET task_state = ?"
                " WHERE trigger_at = ? AND tag = ? AND unique_id = ? AND task_state = ?",
                (str(to_state), key.trigger_at, key.tag, key.unique_id, str(from_state)),
            )
            await db.commit()
            return cursor.rowcount > 0

    # -- Range operations ------------------------------------------------------

    async def query_due(self, trigger_at: int) -> list[Task]:
        """Return every task in the *trigger_at* partition."""
        rows = await self._fetch(
            f"SELECT {_COLUMNS} FROM tasks WHERE trigger_at = ? ORDER BY tag, unique_id",
            (trigger_at,),
        )
        return _decode_rows(rows)

    async def query_by_tag(
        self,
        tag: str,
        *,
        trigger_at: int | None = None,
        unique_id: str | None = None,
        since: int | None = None,
        start_after: TaskKey | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page:
        """Page through all occurrences of *tag* using the inverted index.

        Args:
            tag: Tag to look up.
            trigger_at: Restrict to this exact trigger time.
            unique_id: Restrict to occurrences with this unique suffix.
            since: Restrict to ``trigger_at >= since``.
            start_after: Resume after this key (exclusive).
            limit: Maximum number of tasks in the page.
        """
        clauses = ["tag = ?"]
        params: list = [tag]
        if trigger_at is not None:
            clauses.append("trigger_at = ?")
            params.append(trigger_at)
        if unique_id is not None:
            clauses.append("unique_id = ?")
            params.append(unique_id)
        if since is not None:
            clauses.append("trigger_at >= ?")
            params.append(since)
        if start_after is not None:
            clauses.append("(trigger_at, unique_id) > (?, ?)")
            params.extend([start_after.trigger_at, start_after.unique_id])
        params.append(limit + 1)

        rows = await self._fetch(
            f"SELECT {_COLUMNS} FROM tasks WHERE {' AND '.join(clauses)}"
            " ORDER BY trigger_at, unique_id LIMIT ?",
            tuple(params),
        )
        return _paginate(rows, limit)

    async def scan(
        self,
        *,
        until: int | None = None,
        after: int | None = None,
        state: TaskState | None = None,
        start_after: TaskKey | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page:
        """Page through the whole table in primary-key order.

        Args:
            until: Restrict to ``trigger_at <= until``.
            after: Restrict to ``trigger_at > after``.
            state: Restrict to tasks in this state.
            start_after: Resume after this key (exclusive).
            limit: Maximum number of tasks in the page.
        """
        clauses: list[str] = []
        params: list = []
        if until is not None:
            clauses.append("trigger_at <= ?")
            params.append(until)
        if after is not None:
            clauses.append("trigger_at > ?")
            params.append(after)
        if state is not None:
            clauses.append("task_state = ?")
            params.append(str(state))
        if start_after is not None:
            clauses.append("(trigger_at, tag, unique_id) > (?, ?, ?)")
            params.extend(start_after)
        params.append(limit + 1)

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._fetch(
            f"SELECT {_COLUMNS} FROM tasks{where}"
            " ORDER BY trigger_at, tag, unique_id LIMIT ?",
            tuple(params),
        )
        return _paginate(rows, limit)
