"""Async database engine and session management.

psycopg3 against PostgreSQL in production; when the database is not
configured the engine falls back to sqlite+aiosqlite so the service and its
tests run without external infrastructure.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from confession_service.core.database import Base
from confession_service.core.settings import get_db_settings
from confession_service.infra.metrics.prometheus import (
    database_connections_active,
    database_query_duration_seconds,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

db_settings = get_db_settings()

engine = create_async_engine(
    db_settings.get_sqlalchemy_url(),
    **db_settings.engine_kwargs(),
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

_SQL_OPERATIONS = ("SELECT", "INSERT", "UPDATE", "DELETE", "BEGIN", "COMMIT", "ROLLBACK")


# ============================================================================
# Database Metrics Instrumentation
# ============================================================================


@event.listens_for(engine.sync_engine.pool, "connect")
def _receive_connect(dbapi_conn: Any, connection_record: Any) -> None:
    _ = dbapi_conn, connection_record
    database_connections_active.inc()


@event.listens_for(engine.sync_engine.pool, "close")
def _receive_close(dbapi_conn: Any, connection_record: Any) -> None:
    _ = dbapi_conn, connection_record
    database_connections_active.dec()


@event.listens_for(engine.sync_engine, "before_cursor_execute")
def _before_cursor_execute(
    conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: Any
) -> None:
    _ = conn, cursor, statement, parameters, executemany
    context._query_start_time = time.perf_counter()


@event.listens_for(engine.sync_engine, "after_cursor_execute")
def _after_cursor_execute(
    conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: Any
) -> None:
    """Record query duration and link it to the current trace via exemplar."""
    _ = conn, cursor, parameters, executemany
    duration = time.perf_counter() - context._query_start_time

    head = statement.lstrip()[:8].upper() if statement else ""
    operation = next((op for op in _SQL_OPERATIONS if head.startswith(op)), "UNKNOWN")

    span = trace.get_current_span()
    if span and span.get_span_context().is_valid:
        trace_id = format(span.get_span_context().trace_id, "032x")
        database_query_duration_seconds.labels(operation=operation).observe(
            duration, exemplar={"trace_id": trace_id}
        )
    else:
        database_query_duration_seconds.labels(operation=operation).observe(duration)


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Get a transactional async database session.

    Commits when the block exits cleanly and rolls back on any exception.

    Example:
        async with get_async_session() as session:
            notification = await repo.get(session, notification_id)
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_database() -> None:
    """Verify connectivity and create tables when configured to.

    Table creation runs when DB_CREATE_TABLES is set or when the SQLite
    fallback is in use.
    """
    logger.info(
        "Initializing database connection",
        extra={"configured": db_settings.is_configured},
    )
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if db_settings.create_tables or not db_settings.is_configured:
                await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error("Failed to connect to database", extra={"error": str(e)})
        raise
    logger.info("Database connection established successfully")


async def close_database() -> None:
    """Dispose of the engine's connection pool."""
    logger.info("Closing database connection")
    await engine.dispose()


__all__ = [
    "AsyncSessionLocal",
    "close_database",
    "engine",
    "get_async_session",
    "init_database",
]
