"""
Database engine, session factory, and declarative base.

Uses async SQLAlchemy 2.0 with asyncpg (prod) or aiosqlite (dev, tests).
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from ecobin.config import settings
from ecobin.exceptions import TransientStoreError

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for pipeline models."""

    pass


# Lazy-initialized singletons
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Get or create the async database engine."""
    global _engine
    if _engine is None:
        url = settings.async_database_url
        kwargs = {"echo": settings.debug}
        if not url.startswith("sqlite"):
            kwargs.update(
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_recycle=settings.db_pool_recycle,
                pool_pre_ping=True,
            )
        _engine = create_async_engine(url, **kwargs)
        logger.info("database_engine_created")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (ConnectionError, TimeoutError))


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    One unit of work: commit on success, roll back on any failure.

    Connectivity failures are re-raised as TransientStoreError so callers
    and the scheduler can tell "retry next tick" apart from real bugs.
    Cancellation (shutdown, job timeout) also rolls back, so no partial
    writes survive an aborted tick.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException as exc:
            await session.rollback()
            if _is_transient(exc):
                raise TransientStoreError(f"Store unavailable: {exc}") from exc
            raise


async def init_db() -> None:
    """Initialize the database engine and create tables if needed.

    In development mode, auto-creates all tables from ORM models.
    In production, expects tables to be managed via Alembic migrations.
    """
    engine = get_engine()

    # Import all models so Base.metadata is populated
    import ecobin.db.models  # noqa: F401

    if settings.environment.lower() == "development":
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("tables_created", mode="development")
    else:
        logger.info("skipping_auto_create", reason="production uses alembic")

    logger.info("database_initialized")


async def close_db() -> None:
    """Close the database engine (call at shutdown)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("database_closed")
