# red2blue/logging_setup.py
from __future__ import annotations

import sys

from loguru import logger

from red2blue.config import LOG_LEVEL

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Install a single stderr sink at LOG_LEVEL. Safe to call repeatedly."""
    global _configured
    if _configured:
        return
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or LOG_LEVEL),
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function} - {message}",
    )
    _configured = True
