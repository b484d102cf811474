"""
Shared pytest fixtures for the tenantfill tests.

This module provides:
- FakeClock: Manually advanced monotonic clock for TTL and rate tests
- Store fixtures (memory_store, seeded_store, sqlite_store)
- Job fixtures (chats_job, products_job)
- Engine fixtures (engine_config, make_engine)
- Tracing fixture (mock_tracer)

The seeded collections are shaped like the console's data: reference
users in ``iboard_users`` and chats whose ``users`` list holds candidate
user ids in priority order.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from tenantfill.migration.config import EngineConfig, JobConfig, get_job
from tenantfill.migration.engine import MigrationEngine
from tenantfill.observability import MockTracer
from tenantfill.stores.in_memory import InMemoryDocumentStore
from tenantfill.stores.sqlite import SQLiteDocumentStore


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# Sample data
# ============================================================================

REFERENCE_USERS: dict[str, dict[str, Any]] = {
    "u1": {"name": "Ada", "company_id": "CO-100"},
    "u2": {"name": "Ben", "company_id": ""},
    "u3": {"name": "Cy"},
    "u4": {"name": "Dee", "company_id": "  CO-200  "},
}

# Ordered by id: c1..c7. See test_engine.py for the expected outcome of each.
CHATS: dict[str, dict[str, Any]] = {
    "c1": {"users": ["u2", "u1"]},
    "c2": {"company_id": "CO-9", "users": ["u1"]},
    "c3": {"users": "u1"},
    "c4": {"users": []},
    "c5": {"users": ["missing", "u3"]},
    "c6": {"title": "no participants"},
    "c7": {"users": [None, 42, "u4"]},
}


# ============================================================================
# Clock and tracing
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_tracer() -> MockTracer:
    return MockTracer()


# ============================================================================
# Stores
# ============================================================================


@pytest.fixture
def memory_store() -> InMemoryDocumentStore:
    """Empty in-memory store with tracing disabled."""
    return InMemoryDocumentStore(enable_tracing=False)


@pytest.fixture
def seeded_store() -> InMemoryDocumentStore:
    """In-memory store holding REFERENCE_USERS and CHATS."""
    return InMemoryDocumentStore(
        {"iboard_users": REFERENCE_USERS, "chats": CHATS},
        enable_tracing=False,
    )


@pytest_asyncio.fixture
async def sqlite_store(tmp_path: Path) -> AsyncGenerator[SQLiteDocumentStore, None]:
    """File-backed SQLite store, initialized and closed around each test."""
    store = SQLiteDocumentStore(str(tmp_path / "documents.db"), enable_tracing=False)
    await store.initialize()
    yield store
    await store.close()


# ============================================================================
# Jobs and engines
# ============================================================================


@pytest.fixture
def chats_job() -> JobConfig:
    return get_job("chats")


@pytest.fixture
def products_job() -> JobConfig:
    return get_job("products")


@pytest.fixture
def engine_config() -> EngineConfig:
    """Three records per page, no throttle between pages or read retries."""
    return EngineConfig(page_size=3, throttle_seconds=0, read_retry_delay=0)


@pytest.fixture
def make_engine(
    seeded_store: InMemoryDocumentStore,
    chats_job: JobConfig,
    engine_config: EngineConfig,
    clock: FakeClock,
) -> Callable[..., MigrationEngine]:
    """Factory for engines over the seeded store; keyword overrides pass through."""

    def factory(**overrides: Any) -> MigrationEngine:
        kwargs: dict[str, Any] = {
            "config": engine_config,
            "clock": clock,
            "enable_tracing": False,
        }
        kwargs.update(overrides)
        store = kwargs.pop("store", seeded_store)
        job = kwargs.pop("job", chats_job)
        return MigrationEngine(store, job, **kwargs)

    return factory
