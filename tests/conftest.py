"""
Shared pytest fixtures for coord-spine tests.

This module provides:
- An in-memory SQLite connection with the durable schema applied
- Controllable clocks (monotonic seconds for the store, UTC datetimes for the
  retry engine and token provider)
- An in-memory coordination store and lock managers for two distinct instances

Usage:
    def test_something(store, lock_a, lock_b):
        assert lock_a.try_lock("job", 60)
        assert not lock_b.try_lock("job", 60)
"""

from __future__ import annotations

import os
import sqlite3
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from coordspine.core.schema import create_tables
from coordspine.core.settings import clear_settings_cache
from coordspine.core.store import InMemoryCoordinationStore
from coordspine.scheduling.history import ExecutionHistoryRepository
from coordspine.scheduling.lock_manager import DistributedLockManager


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark CLI tests as integration tests, everything else as unit."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if test_path.parts[0] == "cli":
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Clocks
# =============================================================================


class FakeClock:
    """Monotonic seconds that only move when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUtcClock:
    """UTC datetimes that only move when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def utc_clock() -> FakeUtcClock:
    return FakeUtcClock()


# =============================================================================
# Store and locks
# =============================================================================


@pytest.fixture
def store(clock: FakeClock) -> InMemoryCoordinationStore:
    return InMemoryCoordinationStore(clock=clock)


@pytest.fixture
def lock_a(store: InMemoryCoordinationStore) -> DistributedLockManager:
    return DistributedLockManager(store, owner_id="instance-a")


@pytest.fixture
def lock_b(store: InMemoryCoordinationStore) -> DistributedLockManager:
    return DistributedLockManager(store, owner_id="instance-b")


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def conn() -> Generator[sqlite3.Connection, None, None]:
    """In-memory SQLite with core tables."""
    db = sqlite3.connect(":memory:", check_same_thread=False)
    create_tables(db)
    yield db
    db.close()


@pytest.fixture
def history(conn: sqlite3.Connection) -> ExecutionHistoryRepository:
    return ExecutionHistoryRepository(conn)


# =============================================================================
# Settings isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Every test starts from default settings and an in-memory store URL."""
    for key in list(os.environ):
        if key.startswith("COORD_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("COORD_REDIS_URL", "memory://")
    clear_settings_cache()
    yield
    clear_settings_cache()
