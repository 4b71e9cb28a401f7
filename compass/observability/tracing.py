"""Span-style timing of client operations, mirrored to Opik when enabled."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from time import perf_counter
from typing import Any, Dict, Iterator, Optional

from compass.observability import client as opik_client

logger = logging.getLogger("compass.tracing")

_current_span: ContextVar[Optional["Span"]] = ContextVar("compass_current_span", default=None)


class Span:
    __slots__ = ("name", "metadata", "attributes", "started_at", "duration_ms", "opik_trace")

    def __init__(self, name: str, metadata: Optional[Dict[str, Any]], attributes: Dict[str, Any]) -> None:
        self.name = name
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self.attributes = attributes
        self.started_at = perf_counter()
        self.duration_ms: float | None = None
        self.opik_trace: Any = None

    def update(self, metadata: Optional[Dict[str, Any]] = None) -> None:
        if metadata:
            self.metadata.update(metadata)

    def finish(self, error: Optional[str] = None) -> None:
        self.duration_ms = (perf_counter() - self.started_at) * 1000
        status = "error" if error else "ok"
        if error:
            logger.warning(
                "span=%s status=error error=%s duration_ms=%.1f metadata=%s",
                self.name,
                error,
                self.duration_ms,
                self.metadata,
            )
        else:
            logger.debug("span=%s status=ok duration_ms=%.1f metadata=%s", self.name, self.duration_ms, self.metadata)
        if self.opik_trace is not None:
            output: Dict[str, Any] = {"status": status, "duration_ms": round(self.duration_ms, 1)}
            if error:
                output["error"] = error
            self.opik_trace.update(metadata=self.metadata, output=output)
            self.opik_trace.end()


def current_span() -> Optional[Span]:
    return _current_span.get()


@contextmanager
def trace(name: str, metadata: Optional[Dict[str, Any]] = None, **attributes: Any) -> Iterator[Span]:
    """Time the wrapped block and record its outcome; exceptions propagate unchanged."""
    span = Span(name, metadata, attributes)
    client = opik_client.get_opik_client()
    if client is not None:
        span.opik_trace = client.trace(name=name, input=attributes or None, metadata=span.metadata)
    token = _current_span.set(span)
    error: Optional[str] = None
    try:
        yield span
    except Exception as exc:
        error = type(exc).__name__
        raise
    finally:
        _current_span.reset(token)
        span.finish(error)
