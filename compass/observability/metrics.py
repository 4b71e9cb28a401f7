"""Named numeric metrics, logged and sent to Opik as feedback scores when enabled."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from compass.observability import client as opik_client
from compass.observability.tracing import current_span

logger = logging.getLogger("compass.metrics")


def log_metric(name: str, value: float, metadata: Optional[Dict[str, Any]] = None) -> None:
    """Record a named numeric metric.

    Inside a :func:`~compass.observability.tracing.trace` block the score is
    attached to that trace; otherwise a one-off ``metric.<name>`` trace carries it.
    """
    logger.info("metric name=%s value=%s metadata=%s", name, value, metadata or {})
    client = opik_client.get_opik_client()
    if client is None:
        return
    span = current_span()
    if span is not None and span.opik_trace is not None:
        span.opik_trace.log_feedback_score(name=name, value=float(value))
        return
    metric_trace = client.trace(name=f"metric.{name}", metadata=dict(metadata or {}))
    metric_trace.log_feedback_score(name=name, value=float(value))
    metric_trace.end()
