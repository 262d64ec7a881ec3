"""
Console logging setup for scripts and ad-hoc sessions.

The library itself only creates module loggers under ``pulsescope``; call
:func:`configure_logging` from an entry point to see their output.
"""

import logging
import os
from typing import Optional

LOG_LEVEL_ENV = "PULSESCOPE_LOG_LEVEL"
LOG_FORMAT = "[%(levelname)s][%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Attach a stream handler to the ``pulsescope`` logger.

    Args:
        level: Level name (DEBUG/INFO/WARNING/ERROR).  Falls back to the
            ``PULSESCOPE_LOG_LEVEL`` environment variable, then INFO.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger("pulsescope")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    level_name = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    return logger


def get_log_level() -> str:
    """Return the current package log level name."""
    return logging.getLevelName(logging.getLogger("pulsescope").level)
