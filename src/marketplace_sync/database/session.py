"""Engine and session setup for the marketplace database."""

import os
import logging
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./marketplace.db"

# Process-wide engine used by the admin API
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def normalize_database_url(url: str) -> str:
    """Point bare Postgres URLs at the asyncpg driver."""
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def get_database_url() -> str:
    """DATABASE_URL from the environment, or a local SQLite file."""
    url = os.getenv("DATABASE_URL")
    if not url:
        return DEFAULT_DATABASE_URL
    return normalize_database_url(url)


def _sql_echo() -> bool:
    return os.getenv("SQL_ECHO", "").lower() in ("1", "true", "yes")


def create_async_engine(
    database_url: Optional[str] = None,
    echo: Optional[bool] = None,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """
    Create an async engine for the marketplace database.

    Args:
        database_url: Connection URL. If None, uses get_database_url().
        echo: Log SQL statements. Defaults to the SQL_ECHO environment flag.
        pool_size: Pooled connections for Postgres.
        max_overflow: Extra Postgres connections beyond pool_size.

    Returns:
        AsyncEngine instance.
    """
    url = normalize_database_url(database_url or get_database_url())
    echo = _sql_echo() if echo is None else echo

    if url.startswith("sqlite"):
        # One shared connection, so an in-memory database is visible to every session
        return sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return sa_create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create any missing marketplace tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def get_async_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to ``engine``, or to the engine from init_db().

    Sessions neither expire objects on commit nor autoflush: the sync commits
    once per record and the repositories flush explicitly.

    Raises:
        RuntimeError: If no engine is given and init_db() has not run.
    """
    if engine is None:
        if _session_factory is None:
            raise RuntimeError("Database not initialized. Call init_db() first.")
        return _session_factory

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(database_url: Optional[str] = None, create_tables: bool = True) -> AsyncEngine:
    """
    Open the process-wide engine used by the admin API.

    Args:
        database_url: Connection URL. If None, uses get_database_url().
        create_tables: Create missing tables on startup.

    Returns:
        The engine.
    """
    global _engine, _session_factory

    _engine = create_async_engine(database_url)
    _session_factory = get_async_session_factory(_engine)
    if create_tables:
        await create_schema(_engine)

    logger.info(f"Database ready at {_engine.url.render_as_string(hide_password=True)}")
    return _engine


async def close_db() -> None:
    """Dispose of the process-wide engine."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connection closed.")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a session for one request.

    Records are committed one at a time by the store; anything still pending
    when the request fails is rolled back.
    """
    async with get_async_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
