"""Script to initialize the database."""

import asyncio

import structlog

from vetcare.core.logging import configure_logging
from vetcare.database import engine
from vetcare.models import metadata

logger = structlog.get_logger(__name__)


async def init_db() -> None:
    """Create appointment and notification tables without running migrations."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    logger.info("database_initialized", tables=sorted(metadata.tables))


if __name__ == "__main__":
    configure_logging()
    asyncio.run(init_db())
