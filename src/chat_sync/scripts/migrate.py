# src/chat_sync/scripts/migrate.py
"""Apply Alembic migrations to the configured database."""
from __future__ import annotations

import argparse
import logging
import os

from alembic import command
from alembic.config import Config

from chat_sync.core.logging import configure_logging
from chat_sync.core.settings import settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "..", "..", "..", "migrations")
)


def alembic_config(url: str | None = None) -> Config:
    """Build an Alembic config pointing at the bundled migrations."""
    cfg = Config(os.path.join(MIGRATIONS_DIR, "alembic.ini"))
    cfg.set_main_option("script_location", MIGRATIONS_DIR)
    # Alembic runs on the sync driver (psycopg / pysqlite).
    cfg.set_main_option("sqlalchemy.url", url or settings.database_url_sync)
    return cfg


def run_upgrade(revision: str = "head", url: str | None = None) -> None:
    logger.info("Upgrading database to %s", revision)
    command.upgrade(alembic_config(url), revision)


def main() -> None:
    parser = argparse.ArgumentParser(description="Migrate the chat sync database")
    parser.add_argument("revision", nargs="?", default="head")
    parser.add_argument("--url", default=None, help="Override the sync database URL")
    args = parser.parse_args()

    configure_logging()
    run_upgrade(args.revision, args.url)


if __name__ == "__main__":
    main()
