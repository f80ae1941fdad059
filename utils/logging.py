"""Logging setup for TagWatch."""

from __future__ import annotations

import logging
import os
import sys

ROOT_LOGGER_NAME = 'tagwatch'
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

_configured = False


def configure_logging(level: str | None = None) -> None:
    """
    Install a single stream handler on the tagwatch root logger.

    Calling again with an explicit level only changes the level.
    """
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)

    level_name = (level or os.environ.get('TAGWATCH_LOG_LEVEL', 'INFO')).upper()
    if not _configured or level:
        root.setLevel(getattr(logging, level_name, logging.INFO))

    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger, configuring the tagwatch handler on first use."""
    configure_logging()
    return logging.getLogger(name)
