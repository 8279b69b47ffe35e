"""Database configuration and connection management."""

from typing import Any

import structlog
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from vetcare.config import Settings, settings as default_settings

logger = structlog.get_logger(__name__)


def create_engine(settings: Settings | None = None, **kwargs: Any) -> AsyncEngine:
    """
    Create an async engine for the configured database.

    PostgreSQL gets a connection pool; SQLite gets foreign keys and a busy
    timeout so concurrent writers wait instead of failing.
    """
    settings = settings or default_settings
    url = settings.async_database_url

    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            echo=settings.debug,
            connect_args={"timeout": 30},
            **kwargs,
        )

        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn: Any, connection_record: Any) -> None:
            """Set SQLite connection parameters."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        return engine

    return create_async_engine(
        url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_recycle=3600,
        connect_args={
            "server_settings": {
                "application_name": settings.app_name,
            },
        },
        **kwargs,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Async session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine: AsyncEngine = create_engine()
AsyncSessionLocal = create_session_factory(engine)


async def check_database_connection(db_engine: AsyncEngine | None = None) -> bool:
    """Check if database connection is healthy."""
    try:
        async with (db_engine or engine).connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        return False
