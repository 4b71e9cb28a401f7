"""Human-readable elapsed time for active slices."""
from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Callable, Optional

from compass.services.event_projector import local_timezone, parse_timestamp

JUST_STARTED = "Just started"


def elapsed_minutes(start: datetime, now: datetime) -> int:
    # Truncates toward zero, so 59.9 seconds is still zero minutes.
    return int((now - start).total_seconds() / 60)


def format_elapsed(start: str | datetime, now: datetime) -> str:
    """``"Just started"``, ``"42m"``, ``"2h"`` or ``"2h 5m"``."""
    started = parse_timestamp(start)
    if started is None:
        raise ValueError(f"Invalid start timestamp: {start!r}")
    minutes = elapsed_minutes(started, now)
    if minutes < 1:
        return JUST_STARTED
    if minutes < 60:
        return f"{minutes}m"
    hours, remainder = divmod(minutes, 60)
    if remainder == 0:
        return f"{hours}h"
    return f"{hours}h {remainder}m"


def format_start_time(start: str | datetime, tz: tzinfo | None = None) -> str:
    """Clock time such as ``"9:05 AM"`` in the configured zone."""
    started = parse_timestamp(start)
    if started is None:
        raise ValueError(f"Invalid start timestamp: {start!r}")
    local = started.astimezone(tz or local_timezone())
    hour = local.hour % 12 or 12
    return f"{hour}:{local.minute:02d} {'AM' if local.hour < 12 else 'PM'}"


class ElapsedTimeDisplay:
    """Elapsed label for one slice, recomputed on every clock tick."""

    def __init__(self, start: str | datetime, now: datetime, tz: tzinfo | None = None) -> None:
        self.start = start
        self.started_at = format_start_time(start, tz)
        self.label = format_elapsed(start, now)
        self._unsubscribe: Optional[Callable[[], None]] = None

    def on_tick(self, now: datetime) -> None:
        self.label = format_elapsed(self.start, now)

    def attach(self, ticker) -> None:
        self.detach()
        self._unsubscribe = ticker.subscribe(self.on_tick)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
