"""Shared Opik client used by tracing and metrics when enabled."""
from __future__ import annotations

import logging
from typing import Optional

import opik

from compass.core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[opik.Opik] = None


def init_opik() -> Optional[opik.Opik]:
    """Create the process-wide Opik client; ``None`` while OPIK_ENABLED is false."""
    global _client
    if not settings.opik_enabled:
        logger.info("Opik disabled (OPIK_ENABLED=false); traces and metrics go to the log only")
        return None
    if _client is None:
        _client = opik.Opik(project_name=settings.opik_project, api_key=settings.opik_api_key)
        logger.info("Opik enabled for project %s", settings.opik_project)
    return _client


def get_opik_client() -> Optional[opik.Opik]:
    if not settings.opik_enabled:
        return None
    return _client


def flush_opik() -> None:
    if _client is not None:
        _client.flush()
