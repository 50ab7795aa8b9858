"""
Database infrastructure.

This module provides the async SQLAlchemy engine, session factory,
and declarative base for all database models.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import Pool

from makergrade.core.config import settings

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for a database URL.

    SQLite connections get foreign keys enabled so image and label rows
    cascade with their item.
    """
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo, future=True)

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_conn: Any, connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_async_engine(
        url,
        pool_size=10,
        max_overflow=5,
        pool_recycle=3600,  # Recycle connections after 1 hour
        echo=echo,
        future=True,
        pool_reset_on_return="rollback",
    )


engine: AsyncEngine = create_engine_for(settings.DATABASE_URL, echo=settings.DB_ECHO)

# Create async session factory with explicit transaction control
AsyncSessionLocal: async_sessionmaker[AsyncSession] = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,  # Don't expire objects after commit (avoid extra queries)
    autoflush=False,
)


class Base(DeclarativeBase):
    """
    Base class for all database models.

    Provides common columns that all models inherit:
    - created_at: Timezone-aware timestamp of record creation (UTC)
    - updated_at: Timezone-aware timestamp of last update (UTC)

    Primary keys are declared by each model since jobs, items and images
    all use string identities.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


@event.listens_for(Pool, "connect")
def receive_connect(dbapi_conn: Any, connection_record: Any) -> None:
    """Log when a new connection is established to the database."""
    logger.debug("Database connection established")


def _db_info(url: str) -> str:
    """Database location without credentials, for logging."""
    return url.split("@")[-1] if "@" in url else url


async def init_db(target: AsyncEngine | None = None) -> None:
    """
    Initialize the database on process startup.

    Verifies that the database is accessible and creates any missing
    tables. Fails fast if the database is not available.

    Args:
        target: Engine to initialize (defaults to the module engine)

    Raises:
        Exception: If database connection cannot be established
    """
    # Import models so their tables are registered on the metadata
    import makergrade.models  # noqa: F401

    target = target or engine
    try:
        async with target.begin() as conn:
            result = await conn.execute(text("SELECT 1"))
            assert result.scalar() == 1
            await conn.run_sync(Base.metadata.create_all)
        logger.info(
            "Database initialized",
            extra={"database_url": _db_info(str(target.url))},
        )
    except Exception as e:
        logger.error(
            "Failed to initialize database",
            extra={"error": str(e), "database_url": _db_info(str(target.url))},
            exc_info=True,
        )
        raise


async def close_db(target: AsyncEngine | None = None) -> None:
    """Dispose of the connection pool on shutdown."""
    await (target or engine).dispose()
    logger.info("Database connections closed and pool disposed")
