"""Pytest configuration and shared fixtures.

Tests run without external services: the database backend is exercised
against SQLite files through aiosqlite, and time is simulated with
FakeClock so retry delays and lease expiry need no real waiting.

Set TEST_DATABASE_URL to a PostgreSQL URL to run the tests marked
`integration` against a real server.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from jobqueue.core.settings import clear_settings_cache
from jobqueue.db import create_schema, create_session_factory
from jobqueue.services.backends.database import DatabaseBackend
from jobqueue.services.backends.memory import MemoryBackend
from jobqueue.services.job_types import JobTypeRegistry
from jobqueue.services.queue import Queue
from tests.factories import (
    EchoTestJobType,
    FailingJobType,
    FakeClock,
    FlexibleJobType,
    RaisingJobType,
)


# ---------------------------------------------------------------------------
# Clock and settings fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def clock() -> FakeClock:
    """Simulated clock starting at a fixed timestamp."""
    return FakeClock()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Remove JOBQUEUE_ variables and reset the settings cache."""
    for key in list(os.environ):
        if key.startswith("JOBQUEUE_"):
            monkeypatch.delenv(key)
    # Never pick up a developer's .env file
    monkeypatch.chdir(os.path.dirname(__file__))
    clear_settings_cache()
    yield monkeypatch
    clear_settings_cache()


# ---------------------------------------------------------------------------
# Registry fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def registry() -> JobTypeRegistry:
    """Registry with the test job types."""
    registry = JobTypeRegistry()
    registry.register("echo", EchoTestJobType)
    registry.register("flexible", FlexibleJobType)
    registry.register("failing", FailingJobType(max_retries=2, retry_delay=5))
    registry.register("raising", RaisingJobType(max_retries=3))
    return registry


# ---------------------------------------------------------------------------
# Backend fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def memory_backend(clock: FakeClock) -> MemoryBackend:
    """In-memory backend for the 'default' queue."""
    return MemoryBackend("default", clock=clock)


@pytest.fixture
def memory_queue(memory_backend: MemoryBackend) -> Queue:
    """Cron queue backed by memory_backend."""
    return Queue(id="default", backend=memory_backend, processing_time=90)


@pytest.fixture
def sqlite_url(tmp_path) -> str:
    """URL of a fresh SQLite database file."""
    return f"sqlite+aiosqlite:///{tmp_path / 'jobqueue.db'}"


@pytest_asyncio.fixture
async def session_factory(
    sqlite_url: str,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory for a SQLite database with the schema created."""
    engine = create_async_engine(sqlite_url)
    await create_schema(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def database_backend(session_factory, clock: FakeClock) -> DatabaseBackend:
    """Database backend for the 'default' queue."""
    return DatabaseBackend("default", session_factory, clock=clock)


@pytest_asyncio.fixture(params=["memory", "database"])
async def backend(request, clock: FakeClock, sqlite_url: str):
    """Each backend implementation, for contract tests."""
    if request.param == "memory":
        yield MemoryBackend("default", clock=clock)
        return

    engine = create_async_engine(sqlite_url)
    await create_schema(engine)
    yield DatabaseBackend("default", create_session_factory(engine), clock=clock)
    await engine.dispose()
