"""Async database connections over libsql.

The ``libsql`` driver is synchronous, so every call is pushed onto a worker
thread with ``asyncio.to_thread()``.  The connection target comes from
settings:

- **Production**: ``TURSO_DATABASE_URL`` + ``TURSO_AUTH_TOKEN`` → remote Turso
- **Dev/test**: no Turso env vars → local SQLite file via ``database_path``

Use :func:`connect` as an async context manager so the connection is always
closed::

    async with connect(path) as db:
        cursor = await db.execute("SELECT 1")
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import libsql

if TYPE_CHECKING:
    from pathlib import Path

from src.config import settings

_BUSY_TIMEOUT_MS = 5000


class AsyncCursor:
    """Async facade over a synchronous libsql cursor."""

    def __init__(self, cursor: Any) -> None:
        self._cursor = cursor

    async def fetchone(self) -> tuple | None:
        return await asyncio.to_thread(self._cursor.fetchone)

    async def fetchall(self) -> list[tuple]:
        return await asyncio.to_thread(self._cursor.fetchall)

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount


class AsyncConnection:
    """Async facade over a synchronous libsql connection."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    async def execute(self, sql: str, params: tuple = ()) -> AsyncCursor:
        cursor = await asyncio.to_thread(self._conn.execute, sql, params)
        return AsyncCursor(cursor)

    async def commit(self) -> None:
        await asyncio.to_thread(self._conn.commit)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


def _open_local(path: str) -> Any:
    conn = libsql.connect(path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(f"PRAGMA busy_timeout={_BUSY_TIMEOUT_MS}")
    return conn


def _open_remote(url: str, auth_token: str) -> Any:
    return libsql.connect(database=url, auth_token=auth_token)


async def open_connection(local_path: Path | None = None) -> AsyncConnection:
    """Open a connection to the task database.

    An explicit *local_path* (test isolation) takes priority over
    ``TURSO_DATABASE_URL``, which in turn takes priority over
    ``database_path``.
    """
    if local_path is None and settings.turso_database_url:
        conn = await asyncio.to_thread(
            _open_remote, settings.turso_database_url, settings.turso_auth_token
        )
        return AsyncConnection(conn)

    path = local_path or settings.database_path
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = await asyncio.to_thread(_open_local, str(path))
    return AsyncConnection(conn)


@asynccontextmanager
async def connect(local_path: Path | None = None) -> AsyncIterator[AsyncConnection]:
    """Yield an open connection and close it on exit."""
    db = await open_connection(local_path)
    try:
        yield db
    finally:
        await db.close()
