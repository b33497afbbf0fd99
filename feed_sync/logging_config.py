"""Logging setup for feed_sync.

All output goes to stderr because stdout carries the STDIO transport.
"""

import logging
import sys
from typing import Optional

from feed_sync.config import ServerConfig

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger("feed_sync")


def setup_logging(config: Optional[ServerConfig] = None) -> logging.Logger:
    """Attach a stderr handler to the package logger.

    Calling this more than once only updates the level.

    Args:
        config: Server configuration supplying the log level

    Returns:
        The package logger
    """
    level_name = config.log_level if config else "INFO"
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False

    logger.setLevel(level)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a module logger nested under the package logger."""
    if name == "feed_sync" or name.startswith("feed_sync."):
        return logging.getLogger(name)
    return logger.getChild(name)
