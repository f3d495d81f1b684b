"""Shared fixtures for the SQLExplain test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from sqlexplain.cache import InMemoryCacheStore, ResultCache
from sqlexplain.settings import BackendKind, Environment, Settings


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock) -> InMemoryCacheStore:
    return InMemoryCacheStore(clock=clock)


@pytest.fixture
def result_cache(memory_store: InMemoryCacheStore) -> ResultCache:
    return ResultCache(memory_store)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Test settings: deterministic backend, in-memory cache, throwaway SQLite file."""
    return Settings(
        environment=Environment.TEST,
        backend=BackendKind.STUB,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        redis_url=None,
        metrics_enabled=True,
    )
