from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from compass.api.errors import ApiError
from compass.api.schemas.time_slice import TimeDimension, TimeSlice
from compass.services.time_engine import (
    ENGINE_STATE_KEY,
    ActiveSliceConflictError,
    DimensionAlreadyActiveError,
    DimensionIdleError,
    EmptyCategoryError,
    TimeEngine,
    build_engine_state,
)
from fakes import FIXED_NOW


def _engine(api_client, cache, notifier) -> TimeEngine:
    return TimeEngine(api_client, cache, notifier=notifier)


def _slice(slice_id, dimension, category, *, minutes_ago=30, ended=False):
    start = FIXED_NOW - timedelta(minutes=minutes_ago)
    return TimeSlice(
        id=slice_id,
        dimension=dimension,
        category=category,
        start=start,
        end=FIXED_NOW if ended else None,
    )


async def test_dimensions_start_independently(api_client, cache, fake_api, notifier):
    engine = _engine(api_client, cache, notifier)

    primary, social = await asyncio.gather(
        engine.start(TimeDimension.PRIMARY, "Focus"),
        engine.start(TimeDimension.SOCIAL, "Call"),
    )

    assert primary.dimension is TimeDimension.PRIMARY
    assert social.dimension is TimeDimension.SOCIAL
    state = await engine.load()
    assert state.primary.category == "Focus"
    assert state.social.category == "Call"
    assert state.work_mode is None
    assert state.segment is None


async def test_start_records_linked_task(api_client, cache, fake_api, notifier):
    engine = _engine(api_client, cache, notifier)

    time_slice = await engine.start(TimeDimension.PRIMARY, "  Deep Work  ", source="SHORTCUT", linked_task_id="task-7")

    assert time_slice.category == "Deep Work"
    assert time_slice.linked_task_id == "task-7"
    assert fake_api.slices[0]["source"] == "SHORTCUT"
    assert engine.state.primary.linked_task_id == "task-7"
    assert cache.is_stale(ENGINE_STATE_KEY)


async def test_start_rejects_active_dimension(api_client, cache, fake_api, notifier, notifications):
    engine = _engine(api_client, cache, notifier)
    await engine.start(TimeDimension.WORK_MODE, "Deep")
    calls_before = len(fake_api.calls)

    with pytest.raises(DimensionAlreadyActiveError):
        await engine.start(TimeDimension.WORK_MODE, "Shallow")

    assert [call for call in fake_api.calls[calls_before:] if call[1] == "/engine/start"] == []
    assert notifications[-1] == ("error", "Work Mode is already being tracked. Stop it first.")
    assert not engine.is_pending(TimeDimension.WORK_MODE)


async def test_stop_rejects_idle_dimension(api_client, cache, fake_api, notifier, notifications):
    engine = _engine(api_client, cache, notifier)

    with pytest.raises(DimensionIdleError):
        await engine.stop(TimeDimension.SEGMENT)

    assert ("POST", "/engine/stop") not in fake_api.calls
    assert notifications == [("error", "No active segment slice to stop")]


async def test_empty_category_is_rejected_without_a_request(api_client, cache, fake_api, notifier, notifications):
    engine = _engine(api_client, cache, notifier)

    with pytest.raises(EmptyCategoryError):
        await engine.start(TimeDimension.PRIMARY, "   ")

    assert fake_api.calls == []
    assert notifications == [("error", "Please choose a category")]


async def test_stop_returns_dimension_to_idle(api_client, cache, fake_api, notifier):
    engine = _engine(api_client, cache, notifier)
    await engine.start(TimeDimension.PRIMARY, "Focus")
    await engine.start(TimeDimension.SOCIAL, "Call")

    stopped = await engine.stop(TimeDimension.PRIMARY)

    assert stopped.end is not None
    state = await engine.load()
    assert state.primary is None
    assert state.social.category == "Call"


async def test_repeated_stop_while_pending_is_ignored(api_client, cache, fake_api, notifier):
    engine = _engine(api_client, cache, notifier)
    await engine.start(TimeDimension.PRIMARY, "Focus")
    fake_api.gate = asyncio.Event()
    calls_before = len(fake_api.calls)

    first = asyncio.create_task(engine.stop(TimeDimension.PRIMARY))
    while len(fake_api.calls) == calls_before:
        await asyncio.sleep(0)

    assert engine.is_stopping(TimeDimension.PRIMARY)
    assert await engine.stop(TimeDimension.PRIMARY) is None

    fake_api.gate.set()
    stopped = await first
    assert stopped is not None
    assert [call for call in fake_api.calls if call == ("POST", "/engine/stop")] == [("POST", "/engine/stop")]
    assert not engine.is_pending(TimeDimension.PRIMARY)


async def test_api_failure_on_start_is_reported_and_state_untouched(api_client, cache, fake_api, notifier, notifications):
    engine = _engine(api_client, cache, notifier)
    await engine.load()
    fake_api.fail_next(400, {"error": "Category not allowed for this dimension"})

    with pytest.raises(ApiError):
        await engine.start(TimeDimension.SEGMENT, "Lunch")

    assert notifications == [("error", "Category not allowed for this dimension")]
    assert engine.state.segment is None
    assert not engine.is_starting(TimeDimension.SEGMENT)


def test_build_engine_state_maps_open_slices():
    state = build_engine_state(
        [
            _slice("a", TimeDimension.PRIMARY, "Focus"),
            _slice("b", TimeDimension.PRIMARY, "Email", ended=True),
            _slice("c", TimeDimension.SEGMENT, "Morning"),
        ]
    )

    assert state.primary.id == "a"
    assert state.segment.category == "Morning"
    assert state.active_dimensions() == [TimeDimension.PRIMARY, TimeDimension.SEGMENT]


def test_build_engine_state_refuses_two_open_slices_in_one_dimension():
    with pytest.raises(ActiveSliceConflictError):
        build_engine_state(
            [
                _slice("a", TimeDimension.SOCIAL, "Call"),
                _slice("b", TimeDimension.SOCIAL, "Meeting"),
            ]
        )


def test_rebuild_from_slices_replaces_cached_state(api_client, cache, notifier):
    engine = _engine(api_client, cache, notifier)

    state = engine.rebuild_from_slices([_slice("a", TimeDimension.WORK_MODE, "Deep")])

    assert cache.get(ENGINE_STATE_KEY) == state
    assert state.work_mode.category == "Deep"


async def test_repeated_start_while_pending_is_ignored(api_client, cache, fake_api, notifier):
    engine = _engine(api_client, cache, notifier)
    await engine.load()
    fake_api.gate = asyncio.Event()

    first = asyncio.create_task(engine.start(TimeDimension.PRIMARY, "Focus"))
    while ("POST", "/engine/start") not in fake_api.calls:
        await asyncio.sleep(0)

    assert engine.is_starting(TimeDimension.PRIMARY)
    assert await engine.start(TimeDimension.PRIMARY, "Focus") is None

    other = asyncio.create_task(engine.start(TimeDimension.SOCIAL, "Call"))
    while fake_api.calls.count(("POST", "/engine/start")) < 2:
        await asyncio.sleep(0)
    assert engine.is_starting(TimeDimension.SOCIAL)

    fake_api.gate.set()
    started, social = await asyncio.gather(first, other)

    assert started.category == "Focus"
    assert social.category == "Call"
    assert fake_api.calls.count(("POST", "/engine/start")) == 2
    assert sorted(item["dimension"] for item in fake_api.slices) == ["PRIMARY", "SOCIAL"]
    assert not engine.is_pending(TimeDimension.PRIMARY)
