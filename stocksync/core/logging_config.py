# stocksync/core/logging_config.py
"""
Logging setup shared by the API process and the CLI.

Sync engine and webhook logs stay at LOG_LEVEL. Drivers, HTTP clients and the
scheduler only report warnings, otherwise every push and query floods the log.
"""

import logging
from typing import Optional

from stocksync.core.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

QUIET_LOGGERS = (
    "httpx",
    "httpcore",
    "sqlalchemy",
    "sqlalchemy.engine",
    "asyncpg",
    "aiosqlite",
    "apscheduler",
)


def configure_logging(level: Optional[str] = None):
    """Configure root logging. `level` overrides the LOG_LEVEL setting."""
    level_name = (level or get_settings().LOG_LEVEL or "INFO").upper()
    numeric_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("stocksync").setLevel(numeric_level)

    logging.getLogger(__name__).debug(f"Logging configured at {level_name}")
