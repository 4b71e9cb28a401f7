from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from compass.api.schemas.daily_plan import DailyPlan
from compass.services.event_projector import EventProjector, parse_timestamp, project, project_plan_events
from fakes import build_task

TODAY = date(2030, 1, 15)
UTC = timezone.utc


def _plan(**blocks) -> DailyPlan:
    return DailyPlan.model_validate({"id": "plan-1", "date": "2030-01-15", **blocks})


def test_task_event_ends_after_its_duration():
    task = build_task("task-1", scheduledStart="2030-01-15T10:00:00.000Z", duration=45)

    [event] = project([task], None, today=TODAY, tz=UTC)

    assert event.id == "task-1"
    assert event.title == "Write report"
    assert event.type == "task"
    assert event.task is task
    assert event.start == datetime(2030, 1, 15, 10, 0, tzinfo=UTC)
    assert event.end - event.start == timedelta(minutes=45)


def test_tasks_with_missing_or_malformed_start_are_skipped():
    tasks = [
        build_task("task-1", scheduledStart="2030-01-15T10:00:00.000Z"),
        build_task("task-2"),
        build_task("task-3", scheduledStart="tomorrow-ish"),
        build_task("task-4", scheduledStart="2030-01-15T13:30:00.000Z"),
    ]

    events = project(tasks, None, today=TODAY, tz=UTC)

    assert [event.id for event in events] == ["task-1", "task-4"]


def test_plan_blocks_follow_tasks_in_fixed_order():
    plan = _plan(
        deepWorkBlock1={"start": "09:00", "end": "11:00", "focus": "Writing"},
        adminBlock={"start": "16:00", "end": "17:00"},
    )

    events = project([], plan, today=TODAY, tz=UTC)

    assert [event.title for event in events] == ["Deep Work: Writing", "Admin Time"]
    assert [event.id for event in events] == ["dw1-plan-1", "admin-plan-1"]
    assert events[0].start == datetime(2030, 1, 15, 9, 0, tzinfo=UTC)
    assert events[1].end == datetime(2030, 1, 15, 17, 0, tzinfo=UTC)


def test_all_fixed_blocks_in_order_and_planned_blocks_not_projected():
    plan = _plan(
        deepWorkBlock1={"start": "08:00", "end": "10:00", "focus": "Thesis"},
        deepWorkBlock2={"start": "13:00", "end": "15:00", "focus": "Code"},
        adminBlock={"start": "15:00", "end": "16:00"},
        bufferBlock={"start": "16:00", "end": "16:30"},
        plannedBlocks=[
            {"id": "pb-1", "start": "18:00", "end": "19:00", "label": "FITNESS - Run"},
            {"id": "pb-2", "start": "19:30", "end": "20:00", "label": "Call grandma"},
        ],
    )
    task = build_task("task-1", scheduledStart="2030-01-15T11:00:00.000Z")

    events = project([task], plan, today=TODAY, tz=UTC)

    assert [(event.type, event.title) for event in events] == [
        ("task", "Write report"),
        ("deepWork", "Deep Work: Thesis"),
        ("deepWork", "Deep Work: Code"),
        ("admin", "Admin Time"),
        ("buffer", "Buffer Time"),
    ]
    assert {event.type for event in events} <= {"task", "deepWork", "admin", "buffer"}


def test_planned_blocks_alone_produce_no_events():
    plan = _plan(plannedBlocks=[{"id": "pb-1", "start": "18:00", "end": "19:00", "label": "FITNESS - Run"}])

    assert project([], plan, today=TODAY, tz=UTC) == []


def test_plan_blocks_use_the_given_zone():
    plan = _plan(adminBlock={"start": "09:00", "end": "10:00"})
    zone = ZoneInfo("America/New_York")

    [event] = project_plan_events(plan, TODAY, zone)

    assert event.start.utcoffset() == timedelta(hours=-5)
    assert event.start.astimezone(UTC).hour == 14


def test_invalid_plan_windows_are_skipped():
    plan = _plan(
        adminBlock={"start": "17:00", "end": "16:00"},
        bufferBlock={"start": "25:00", "end": "26:00"},
        deepWorkBlock2={"start": "10:00", "end": "11:00", "focus": "Reading"},
    )

    events = project([], plan, today=TODAY, tz=UTC)

    assert [event.id for event in events] == ["dw2-plan-1"]


def test_projector_returns_same_list_for_equal_inputs():
    projector = EventProjector(tz=UTC)
    tasks = [build_task("task-1", scheduledStart="2030-01-15T10:00:00.000Z")]
    plan = _plan(adminBlock={"start": "16:00", "end": "17:00"})

    first = projector(tasks, plan, today=TODAY)
    again = projector(list(tasks), _plan(adminBlock={"start": "16:00", "end": "17:00"}), today=TODAY)
    moved = projector([build_task("task-1", scheduledStart="2030-01-15T12:00:00.000Z")], plan, today=TODAY)

    assert again is first
    assert moved is not first
    assert [event.id for event in projector.task_events()] == ["task-1"]
    assert projector.task_events()[0].start.hour == 12


def test_parse_timestamp_handles_offsets_and_naive_values():
    assert parse_timestamp("2030-01-15T10:00:00Z") == datetime(2030, 1, 15, 10, 0, tzinfo=UTC)
    assert parse_timestamp("2030-01-15T10:00:00+02:00") == datetime(2030, 1, 15, 8, 0, tzinfo=UTC)
    naive = parse_timestamp("2030-01-15T10:00:00", ZoneInfo("Europe/Berlin"))
    assert naive.astimezone(UTC).hour == 9
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp("not a date") is None
