"""Database connection management for ReviewRouter.

This module provides factory functions for creating SQLAlchemy async engines
and session factories, configured from the application's DatabaseConfig.

Production deployments use asyncpg against PostgreSQL with connection
pooling. SQLite (aiosqlite) is supported for tests and local development;
pool sizing arguments are not passed for it.

Example usage:
    >>> from reviewrouter.config import DatabaseConfig
    >>> from reviewrouter.database.connection import get_engine, get_session_factory
    >>>
    >>> config = DatabaseConfig(url="postgresql+asyncpg://localhost/reviewrouter")
    >>> engine = get_engine(config)
    >>> SessionFactory = get_session_factory(engine)
    >>>
    >>> async with SessionFactory() as session:
    ...     result = await session.execute(select(Organization))
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Any, TypeVar

from sqlalchemy import event
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from reviewrouter.config import DatabaseConfig
from reviewrouter.errors import StoreUnavailable

T = TypeVar("T")


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def get_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create an async SQLAlchemy engine from database configuration.

    Configures connection pooling using the pool_size and max_overflow
    settings from DatabaseConfig. For SQLite URLs the pool arguments are
    omitted and foreign key enforcement is switched on per connection.

    Args:
        config: Database configuration containing URL, pool settings,
                and SQL echo preference.

    Returns:
        Configured AsyncEngine instance.
    """
    kwargs: dict[str, Any] = {"echo": config.echo}
    if not _is_sqlite(config.url):
        kwargs["pool_size"] = config.pool_size
        kwargs["max_overflow"] = config.max_overflow

    engine = create_async_engine(config.url, **kwargs)

    if _is_sqlite(config.url):

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the given engine.

    The returned factory produces AsyncSession instances configured with
    expire_on_commit=False so attributes stay readable after commit without
    triggering lazy loads in async contexts.

    Args:
        engine: AsyncEngine to bind sessions to.

    Returns:
        Configured async_sessionmaker that produces AsyncSession instances.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def bounded_store_call(
    awaitable: Awaitable[T],
    timeout: float,
    operation: str,
) -> T:
    """Await a store operation with a timeout, normalizing failures.

    Args:
        awaitable: Store coroutine to run.
        timeout: Upper bound in seconds.
        operation: Operation name used in the error.

    Returns:
        The coroutine's result.

    Raises:
        StoreUnavailable: On timeout or a connection-level database error.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise StoreUnavailable(operation, f"timed out after {timeout}s") from e
    except (OperationalError, InterfaceError) as e:
        raise StoreUnavailable(operation, str(e.orig or e)) from e
