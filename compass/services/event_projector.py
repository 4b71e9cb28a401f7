"""Projection of scheduled tasks and daily plan blocks onto calendar events."""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, tzinfo
from typing import List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from compass.api.schemas.calendar import CalendarEvent, EventType
from compass.api.schemas.daily_plan import DailyPlan, TimeBlock
from compass.api.schemas.task import Task
from compass.core.config import settings
from compass.services.planning_blocks import hhmm_to_minutes

logger = logging.getLogger(__name__)

# (plan attribute, id prefix, event type); deep-work titles use the block focus.
_FIXED_BLOCKS: Tuple[Tuple[str, str, EventType], ...] = (
    ("deep_work_block1", "dw1", "deepWork"),
    ("deep_work_block2", "dw2", "deepWork"),
    ("admin_block", "admin", "admin"),
    ("buffer_block", "buffer", "buffer"),
)

_FIXED_TITLES = {
    "admin": "Admin Time",
    "buffer": "Buffer Time",
}


def local_timezone() -> tzinfo:
    return ZoneInfo(settings.timezone)


def parse_timestamp(value: object, tz: tzinfo | None = None) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; anything missing or malformed yields ``None``.

    Timestamps without an offset are read in ``tz`` (the configured zone by default).
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz or local_timezone())
    return parsed


def project_task_events(scheduled_tasks: Sequence[Task], tz: tzinfo | None = None) -> List[CalendarEvent]:
    events: List[CalendarEvent] = []
    for task in scheduled_tasks:
        start = parse_timestamp(task.scheduled_start, tz)
        if start is None:
            logger.debug("Skipping task %s with unusable scheduledStart=%r", task.id, task.scheduled_start)
            continue
        events.append(
            CalendarEvent(
                id=task.id,
                title=task.name,
                start=start,
                end=start + timedelta(minutes=task.duration),
                type="task",
                task=task,
            )
        )
    return events


def project_plan_events(plan: DailyPlan, today: date, tz: tzinfo | None = None) -> List[CalendarEvent]:
    zone = tz or local_timezone()
    events: List[CalendarEvent] = []

    for attribute, prefix, event_type in _FIXED_BLOCKS:
        block = getattr(plan, attribute)
        if block is None:
            continue
        title = f"Deep Work: {block.focus}" if event_type == "deepWork" else _FIXED_TITLES[event_type]
        event = _block_event(f"{prefix}-{plan.id}", title, event_type, block, today, zone)
        if event is not None:
            events.append(event)

    return events


def project(
    scheduled_tasks: Sequence[Task],
    plan: Optional[DailyPlan],
    *,
    today: date | None = None,
    tz: tzinfo | None = None,
) -> List[CalendarEvent]:
    """Task events in input order, followed by today's plan blocks."""
    zone = tz or local_timezone()
    events = project_task_events(scheduled_tasks, zone)
    if plan is not None:
        events.extend(project_plan_events(plan, today or datetime.now(zone).date(), zone))
    return events


class EventProjector:
    """Memoizing wrapper around :func:`project`.

    Returns the very same list object while the tasks, plan and day are equal to
    the previous call, so consumers can compare results by identity.
    """

    def __init__(self, tz: tzinfo | None = None) -> None:
        self._tz = tz
        self._inputs: Optional[Tuple[Tuple[Task, ...], Optional[DailyPlan], date]] = None
        self._events: List[CalendarEvent] = []

    def __call__(
        self,
        scheduled_tasks: Sequence[Task],
        plan: Optional[DailyPlan],
        *,
        today: date | None = None,
    ) -> List[CalendarEvent]:
        zone = self._tz or local_timezone()
        inputs = (tuple(scheduled_tasks), plan, today or datetime.now(zone).date())
        if self._inputs is not None and self._inputs == inputs:
            return self._events
        self._events = project(inputs[0], plan, today=inputs[2], tz=zone)
        self._inputs = inputs
        return self._events

    def task_events(self) -> List[CalendarEvent]:
        return [event for event in self._events if event.type == "task"]


def _block_event(
    event_id: str,
    title: str,
    event_type: EventType,
    block: TimeBlock,
    today: date,
    tz: tzinfo,
) -> Optional[CalendarEvent]:
    start = _combine(today, block.start, tz)
    end = _combine(today, block.end, tz)
    if start is None or end is None or end <= start:
        logger.debug("Skipping plan block %s with invalid window %s-%s", event_id, block.start, block.end)
        return None
    return CalendarEvent(id=event_id, title=title, start=start, end=end, type=event_type)


def _combine(day: date, hhmm: str, tz: tzinfo) -> Optional[datetime]:
    minutes = hhmm_to_minutes(hhmm)
    if minutes is None:
        return None
    return datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=tz)
