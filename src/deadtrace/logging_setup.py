from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

from .config import DEFAULT_LOG_FORMAT

ROOT_LOGGER = "deadtrace"


def setup_logging(level: str = "INFO", fmt: Optional[str] = None, stream: Optional[TextIO] = None) -> logging.Logger:
    """Attach a single stderr handler to the ``deadtrace`` logger.

    Calling it again replaces the handler, so the CLI can reconfigure after
    reading the config file without duplicating output.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_deadtrace", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_LOG_FORMAT))
    handler._deadtrace = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger
