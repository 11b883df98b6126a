"""
Database Persistence Layer - Core Engine.

============================================================
RELATIONAL PERSISTENCE
============================================================

Async engine, session and transaction helpers for the optional
SQL storage backend.

Requirements:
- SQLAlchemy asyncio ORM (aiosqlite by default, any async URL works)
- Explicit transaction management
- Hard failures on persistence errors (callers decide how to degrade)

============================================================
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool


logger = logging.getLogger(__name__)

# =============================================================
# DECLARATIVE BASE
# =============================================================

Base = declarative_base()

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///cryptopricer.db"

# Plain driver names mapped to their asyncio drivers
ASYNC_DRIVERS = {
    "sqlite": "sqlite+aiosqlite",
    "postgresql": "postgresql+asyncpg",
}


# =============================================================
# DATABASE ENGINE
# =============================================================


def to_async_url(url: str) -> str:
    """
    Convert a plain database URL to its asyncio driver form.

    URLs that already name a driver are returned unchanged.
    """
    scheme, sep, rest = url.partition("://")
    if not sep:
        raise ValueError(f"Invalid database URL: {url!r}")
    return f"{ASYNC_DRIVERS.get(scheme, scheme)}://{rest}"


def _redact(url: str) -> str:
    return url.split("@")[-1]


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (url.endswith("://") or url.endswith(":memory:"))


def create_database_engine(database_url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    """
    Create SQLAlchemy async engine.

    Args:
        database_url: SQLAlchemy URL, plain or async form (defaults to local SQLite)
        echo: Log SQL statements

    Returns:
        AsyncEngine
    """
    url = to_async_url(database_url or DEFAULT_DATABASE_URL)
    logger.info(f"Creating database engine for: {_redact(url)}")

    kwargs = {"echo": echo}
    if _is_memory_sqlite(url):
        # One shared connection, otherwise each checkout sees an empty database
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}

    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


# =============================================================
# SESSION MANAGEMENT
# =============================================================


@asynccontextmanager
async def transaction_scope(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for explicit transaction boundaries.

    Commits only if no exception occurs.
    Rolls back on ANY exception.

    Usage:
        async with transaction_scope(factory) as session:
            session.add(record)
            # Commits automatically at end
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
            logger.debug("Database transaction committed successfully")
        except SQLAlchemyError as e:
            logger.error(f"Database transaction failed, rolling back: {e}")
            await session.rollback()
            raise DatabasePersistenceError(f"Transaction failed: {e}") from e
        except Exception as e:
            logger.error(f"Transaction failed with unexpected error: {e}")
            await session.rollback()
            raise


# =============================================================
# DATABASE INITIALIZATION
# =============================================================


async def create_all_tables(engine: AsyncEngine) -> None:
    """
    Create all tables defined in ORM models.

    Raises:
        DatabaseInitializationError if table creation fails
    """
    from . import models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database tables: {e}")
        raise DatabaseInitializationError(f"Table creation failed: {e}") from e


# =============================================================
# CUSTOM EXCEPTIONS
# =============================================================


class DatabasePersistenceError(Exception):
    """Raised when database persistence fails."""
    pass


class DatabaseInitializationError(DatabasePersistenceError):
    """Raised when database initialization fails."""
    pass


__all__ = [
    "Base",
    "DEFAULT_DATABASE_URL",
    "to_async_url",
    "create_database_engine",
    "create_session_factory",
    "transaction_scope",
    "create_all_tables",
    "DatabasePersistenceError",
    "DatabaseInitializationError",
]
