"""jobqueue database module.

Database models and migrations:
- SQLAlchemy 2.x ORM models
- Alembic migration configuration
- Async engine and session factory built from settings
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

if TYPE_CHECKING:
    from jobqueue.core.config import DatabaseSettings

logger = logging.getLogger(__name__)

# Module-level engine and session factory (initialized on first use)
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def to_async_url(url: str) -> str:
    """Rewrite a database URL to use an async driver.

    PostgreSQL URLs get the psycopg driver and SQLite URLs get aiosqlite.
    URLs that already name a driver are returned unchanged.
    """
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def create_engine_from_settings(database: DatabaseSettings) -> AsyncEngine:
    """Create an async engine for the configured database."""
    url = to_async_url(database.url)
    if url.startswith("sqlite"):
        # SQLite uses a static/null pool; pool sizing options do not apply
        return create_async_engine(url, echo=database.echo)
    return create_async_engine(
        url,
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
        pool_timeout=database.pool_timeout,
        pool_pre_ping=True,
        echo=database.echo,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the given engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


def _init_engine() -> None:
    """Initialize the database engine and session factory."""
    global _engine, _async_session_factory

    if _engine is not None:
        return

    from jobqueue.core.settings import get_settings

    settings = get_settings()
    _engine = create_engine_from_settings(settings.database)
    _async_session_factory = create_session_factory(_engine)


def get_engine() -> AsyncEngine:
    """Get the shared engine, creating it on first use."""
    _init_engine()

    if _engine is None:
        msg = "Database engine not initialized"
        raise RuntimeError(msg)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the shared session factory, creating the engine on first use.

    Raises:
        RuntimeError: If the factory could not be initialized.
    """
    _init_engine()

    if _async_session_factory is None:
        msg = "Database session factory not initialized"
        raise RuntimeError(msg)
    return _async_session_factory


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet.

    Intended for development and tests; production databases are managed
    with Alembic migrations.
    """
    from jobqueue.db.models import Base

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    logger.info("Database schema created")


async def close_engine() -> None:
    """Close the database engine.

    Call this during application shutdown to clean up connections.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
