"""
Database Management and Configuration.

This module sets up the asynchronous store behind the data gateway. It uses
SQLAlchemy with `asyncio` support and SQLModel for the table definitions.

Key Components:
- `build_engine`: Creates an async engine for a database URL. SQLite (via
  `aiosqlite`) is used for development and tests, PostgreSQL (via `asyncpg`)
  for production. In-memory SQLite URLs share one connection so every session
  sees the same database.
- `build_session_factory`: An `async_sessionmaker` producing SQLModel
  `AsyncSession`s with `expire_on_commit=False`, so returned rows stay readable
  after the session closes.
- `engine` / `async_session`: The process-wide defaults built from settings.
- `create_db_and_tables`: Startup hook creating all tables from SQLModel
  metadata.
- `get_database_info`: Diagnostic information for health checks.
"""

import logging
from typing import Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool, StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from core.config import settings

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine configured for the database type"""
    if database_url.startswith("sqlite"):
        db_engine = _build_sqlite_engine(database_url)
        # Cascading deletes of likes and comments rely on enforced foreign keys
        event.listen(db_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return db_engine

    # PostgreSQL configuration with asyncpg
    return create_async_engine(
        database_url,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Validate connections before use
        echo=False,
    )


def _build_sqlite_engine(database_url: str) -> AsyncEngine:
    if ":memory:" in database_url:
        # One shared connection, otherwise each checkout gets an empty database
        return create_async_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    return create_async_engine(
        database_url,
        connect_args={"check_same_thread": False},
        poolclass=AsyncAdaptedQueuePool,
        echo=False,
    )


def build_session_factory(db_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.database_url)
async_session = build_session_factory(engine)


async def create_db_and_tables(db_engine: Optional[AsyncEngine] = None):
    """
    Initialize the database and create all tables.
    Called during application startup.
    """
    db_engine = db_engine or engine
    try:
        async with db_engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("PinPrompt database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to create PinPrompt database tables: {e}")
        raise


def _database_type(database_url: str) -> str:
    return "postgresql" if "postgresql" in database_url else "sqlite"


async def get_database_info():
    """
    Get basic database information for health checks.
    """
    try:
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.scalar()
            connection_healthy = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        connection_healthy = False

    database_url = settings.database_url
    return {
        "database_url": database_url.split("@")[1]
        if "@" in database_url
        else "masked",  # Hide credentials
        "connection_healthy": connection_healthy,
        "database_type": _database_type(database_url),
    }
