"""Collision checks between a candidate interval and projected events."""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, List

from compass.api.schemas.calendar import CalendarEvent


def overlaps(candidate_start: datetime, candidate_end: datetime, existing_events: Iterable[CalendarEvent]) -> bool:
    """True when ``[candidate_start, candidate_end)`` intersects any event interval.

    Intervals are half-open, so an event ending at 11:00 does not collide with a
    candidate starting at 11:00.
    """
    return any(event.start < candidate_end and candidate_start < event.end for event in existing_events)


def conflicting_events(
    candidate_start: datetime,
    candidate_end: datetime,
    existing_events: Iterable[CalendarEvent],
) -> List[CalendarEvent]:
    return [event for event in existing_events if event.start < candidate_end and candidate_start < event.end]
