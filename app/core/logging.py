"""Logging configuration."""
import logging
import sys

from app.core.config import settings

# Chatty libraries that only matter when something is already wrong
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite", "asyncio")


def setup_logging() -> None:
    """
    Configure application logging.

    ``TELNYX_DEBUG`` lowers the level to DEBUG, which adds the outbound
    preflight dumps and per-page pagination traces.
    """
    level = logging.DEBUG if settings.telnyx_debug else logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
