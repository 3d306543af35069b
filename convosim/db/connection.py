"""Database connection management for ConvoSim.

Provides asynchronous database access using SQLAlchemy over aiosqlite.
Every durable read and write in the simulation engine is an await point,
so the event loop keeps other conversations moving while SQLite works.

Usage:
    from convosim.db.connection import AsyncSessionLocal, async_init_db

    await async_init_db()
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(SimulationRun))
"""

import logging
import os
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from convosim.db.models import Base

logger = logging.getLogger(__name__)


def get_database_url() -> str:
    """Get database URL from environment or use default SQLite.

    Precedence:
    1. DATABASE_URL (canonical)
    2. CONVOSIM_DB_PATH (path to a SQLite file, converted to sqlite URL)
    3. sqlite:///<user data dir>/convosim.db
    """
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if database_url:
        return database_url

    db_path = os.environ.get("CONVOSIM_DB_PATH", "").strip()
    if db_path:
        if db_path.startswith("sqlite:"):
            return db_path
        return f"sqlite:///{db_path}"

    from convosim.utils.paths import get_default_db_path
    return f"sqlite:///{get_default_db_path()}"


def to_async_url(url: str) -> str:
    """Convert a sync SQLite URL to its aiosqlite equivalent.

    URLs that already name an async driver, or other dialects, pass through.
    """
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


def get_async_database_url() -> str:
    """Get async database URL derived from the configured sync URL."""
    return to_async_url(get_database_url())


def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Configure SQLite pragmas for correctness and concurrency.

    Enables:
    - foreign_keys=ON: Referential integrity (disabled by default in SQLite).
    - journal_mode=WAL: Concurrent readers alongside the single writer.
    - synchronous=NORMAL: Durable after WAL fsync.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=NORMAL;")
    cursor.close()


def create_engine_for_url(url: str, **kwargs: Any) -> AsyncEngine:
    """Create an async engine, wiring SQLite pragmas when applicable.

    Args:
        url: Sync or async database URL.
        **kwargs: Extra keyword arguments for create_async_engine.

    Returns:
        Configured AsyncEngine.
    """
    async_url = to_async_url(url)
    kwargs.setdefault("echo", os.environ.get("SQL_ECHO", "").lower() == "true")
    engine = create_async_engine(async_url, **kwargs)
    if async_url.startswith("sqlite"):
        event.listen(engine.sync_engine, "connect", _set_sqlite_pragma)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the session factory used by the durable job store."""
    return async_sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# Engine creation
ASYNC_DATABASE_URL = get_async_database_url()
async_engine = create_engine_for_url(ASYNC_DATABASE_URL)
AsyncSessionLocal = create_session_factory(async_engine)


async def async_init_db(engine: AsyncEngine | None = None) -> None:
    """Create all database tables asynchronously.

    Safe to call multiple times - will not recreate existing tables.

    Args:
        engine: Engine to initialise. Defaults to the module engine.
    """
    target = engine or async_engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug("Database schema ensured for %s", target.url)


async def close_async_db(engine: AsyncEngine | None = None) -> None:
    """Close the async engine and dispose of connection pool."""
    await (engine or async_engine).dispose()
