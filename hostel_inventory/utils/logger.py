"""Process-wide logging setup shared by every inventory module."""

from __future__ import annotations

import logging
import sys
import time
from typing import Optional

from hostel_inventory.utils.config import get_settings


_LOGGER_INITIALIZED = False

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Outbound feed fetches log every request at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore")


class UTCFormatter(logging.Formatter):
    """Ledger timestamps are UTC, so log timestamps are too."""

    converter = time.gmtime


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process-wide logging once.

    Every module logs through the same pipe-delimited format so ledger
    mutations, sweeps and feed syncs can be correlated in one stream.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    settings = get_settings()
    resolved_level = (level or settings.log_level).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(UTCFormatter(LOG_FORMAT))
    logging.basicConfig(level=resolved_level, handlers=[handler])
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)
