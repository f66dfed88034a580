"""Logging bootstrap for processes embedding the sync engine."""

from __future__ import annotations

import logging

from chat_sync.core.settings import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once, using ``LOG_LEVEL`` when no level is given."""
    resolved = (level or settings.log_level).upper()
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    logging.getLogger("chat_sync").setLevel(resolved)
