"""Engine, session factory and transactional session scopes."""

import os
import logging
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from . import models

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """
    Read DATABASE_URL from the environment.

    Plain Postgres URLs are rewritten to use the asyncpg driver.
    """
    db_url = os.getenv("DATABASE_URL")
    if db_url:
        if db_url.startswith("postgresql://"):
            db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif db_url.startswith("postgres://"):
            db_url = db_url.replace("postgres://", "postgresql+asyncpg://", 1)
        return db_url
    return "sqlite+aiosqlite:///./church_payouts.db"


def create_async_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """
    Build the engine for the payouts database.

    Args:
        database_url: Connection URL, defaulting to get_database_url().
        echo: Echo emitted SQL to the log.
        pool_size: Persistent Postgres connections.
        max_overflow: Extra Postgres connections allowed under load.
    """
    url = database_url or get_database_url()

    # SQLite keeps one shared connection so in-memory databases survive across sessions
    if "sqlite" in url:
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


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Return the global session factory.

    Also used as a FastAPI dependency by endpoints that schedule background
    work needing its own session.

    Raises:
        RuntimeError: If init_db() has not been called.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database not initialized. Call init_db() first."
        )
    return _session_factory


async def init_db(
    database_url: Optional[str] = None,
    echo: bool = False,
    create_tables: bool = True,
) -> None:
    """
    Set up the process-wide engine and session factory.

    Schema changes in production go through the Alembic migrations;
    ``create_tables`` is meant for local SQLite databases and tests.
    """
    global _engine, _session_factory

    logger.info("Connecting to payouts database")

    _engine = create_async_engine(database_url, echo=echo)
    _session_factory = make_session_factory(_engine)

    if create_tables:
        async with _engine.begin() as conn:
            await conn.run_sync(models.Base.metadata.create_all)
            logger.info("Created payouts schema")

    logger.info("Payouts database ready")


async def close_db() -> None:
    """Dispose of the engine created by init_db()."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Payouts database connection closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Per-request session, committed on success and rolled back on error."""
    async with session_scope(get_async_session_factory()) as session:
        yield session


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for sessions outside of FastAPI dependency injection.

    Example:
        async with session_scope(factory) as db:
            await TransactionReconciler(db, client).reconcile_payout(...)
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_db_context():
    """session_scope() over the factory created by init_db()."""
    return session_scope(get_async_session_factory())
