"""User-facing notification hook."""
from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger(__name__)

# (level, message) where level is one of "success", "info", "warning", "error".
Notifier = Callable[[str, str], None]

_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.WARNING,
}


def log_notifier(level: str, message: str) -> None:
    """Default notifier used when no display layer is attached."""
    logger.log(_LEVELS.get(level, logging.INFO), "notify level=%s message=%s", level, message)
