"""Shared test fixtures."""

from pathlib import Path

import pytest

from src.scheduler.store import TaskStore


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("src.config.settings.turso_database_url", "")


@pytest.fixture
def store(tmp_path: Path, _no_turso: None) -> TaskStore:
    """Create a TaskStore backed by a temp database."""
    return TaskStore(db_path=tmp_path / "test.db")


@pytest.fixture
def no_backoff(monkeypatch: pytest.MonkeyPatch) -> list[int]:
    """Make retry backoff instant; returns the attempt index of every backoff."""
    attempts: list[int] = []

    async def _backoff(attempt: int) -> None:
        attempts.append(attempt)

    monkeypatch.setattr("src.scheduler.transport.backoff", _backoff)
    return attempts
