import asyncio
import logging

from chat_sync.core.logging import configure_logging
from chat_sync.db.session import create_tables, engine

logger = logging.getLogger(__name__)


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    await create_tables()
    await engine.dispose()


if __name__ == "__main__":
    configure_logging()
    asyncio.run(init_db())
    logger.info("Database initialized at %s", engine.url.render_as_string(hide_password=True))
