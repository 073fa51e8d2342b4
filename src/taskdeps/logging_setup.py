"""Route engine logging through a single loguru sink."""

from __future__ import annotations

import sys
from typing import Any, Optional, TextIO

from loguru import logger

from .constants import DEFAULT_LOG_LEVEL

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> | "
    "{message}"
)

_handler_id: Optional[int] = None


def configure_logging(level: str = DEFAULT_LOG_LEVEL, sink: Optional[TextIO] = None) -> int:
    """Install the engine's sink, replacing the one from an earlier call.

    Only the sink this module added is swapped out; sinks other code attached
    to loguru are left alone.  Returns the loguru handler id.
    """
    global _handler_id
    if _handler_id is None:
        # First call: drop loguru's default stderr handler.
        logger.remove()
    else:
        logger.remove(_handler_id)
    target: Any = sink if sink is not None else sys.stderr
    _handler_id = logger.add(target, level=level.upper(), format=LOG_FORMAT)
    return _handler_id
