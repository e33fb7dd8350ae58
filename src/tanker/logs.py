"""Logging configuration for tanker.

stdout carries the git-lfs protocol, so log records go to a file (and,
for the interactive commands, to stderr). Nothing here writes to stdout.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional, Union

from .utils import ensure_path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_HANDLER_MARKER = "_tanker_handler"


def resolve_level(level: str) -> int:
    """Map a level name to a logging level; ``DEBUG=1`` forces debug."""
    if os.environ.get("DEBUG"):
        return logging.DEBUG
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(
    path: Optional[Union[str, Path]] = None,
    level: str = "INFO",
    stderr: bool = False,
) -> None:
    """
    Configure the ``tanker`` logger.

    Calling it again replaces the handlers installed by a previous call.

    Args:
        path: Log file to append to; None for no file
        level: Level name (DEBUG, INFO, WARNING, ...)
        stderr: Also log to stderr
    """
    logger = logging.getLogger("tanker")
    logger.setLevel(resolve_level(level))
    logger.propagate = False

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()

    handlers = []
    if path is not None:
        handlers.append(logging.FileHandler(ensure_path(path), encoding="utf-8"))
    if stderr:
        handlers.append(logging.StreamHandler(sys.stderr))

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARKER, True)
        logger.addHandler(handler)
