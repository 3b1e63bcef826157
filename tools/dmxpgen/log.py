"""
Logging setup for dmxpgen.

protoc reads the plugin response from stdout, so everything goes to stderr.
"""

import logging
import os
import sys
from typing import Optional

LOGGER_NAME = "dmxpgen"


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Configure the ``dmxpgen`` logger.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR). Falls back to the
            DMXPGEN_LOG_LEVEL environment variable, then WARNING.
    """
    if level is None:
        level = os.environ.get("DMXPGEN_LOG_LEVEL", "WARNING")

    log_level = getattr(logging, level.upper(), logging.WARNING)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(log_level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter("%(name)s: %(levelname)s: %(message)s"))
    logger.addHandler(handler)

    logger.propagate = False
    return logger


def set_level(level: str):
    """Change the level of an already configured logger (``log_level=`` parameter)."""
    log_level = getattr(logging, level.upper(), None)
    if not isinstance(log_level, int):
        return
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(log_level)
    for handler in logger.handlers:
        handler.setLevel(log_level)


def get_logger(name: str) -> logging.Logger:
    """Logger for a module; pass ``__name__``."""
    if name.startswith(LOGGER_NAME + ".") or name == LOGGER_NAME:
        return logging.getLogger(name)
    short = name.rsplit(".", 1)[-1]
    return logging.getLogger(f"{LOGGER_NAME}.{short}")
