from __future__ import annotations

import asyncio

from compass.api.schemas.task import TaskFilters
from compass.services.query_cache import (
    DEFAULT_TASK_LIST_KEY,
    TASK_LISTS_PREFIX,
    QueryCache,
    restore_infinite_tasks,
    task_detail_key,
    task_list_key,
    task_list_keys,
    update_infinite_tasks,
)
from fakes import build_task, seed_list


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _rename(task):
    return task.model_copy(update={"name": "Renamed"})


def test_default_list_key_is_next_status():
    assert DEFAULT_TASK_LIST_KEY == ("tasks", "list", TaskFilters(status="NEXT"), "infinite")


def test_update_patches_only_pages_containing_the_task(cache):
    first_page = [build_task("task-2")]
    original = seed_list(cache, TaskFilters(status="NEXT"), first_page, [build_task("task-1")])
    key = task_list_key(TaskFilters(status="NEXT"))

    result = update_infinite_tasks(cache, key, lambda task: task.id == "task-1", _rename)

    updated = cache.get(key)
    assert result.snapshot is original
    assert result.updated_count == 1
    assert result.version == cache.version(key)
    assert updated.pages[0] is original.pages[0]
    assert updated.pages[1].items[0].name == "Renamed"
    assert updated.page_params == original.page_params


def test_update_without_match_leaves_cache_alone(cache):
    seed_list(cache, None, [build_task("task-2")])
    version = cache.version(task_list_key())

    assert update_infinite_tasks(cache, task_list_key(), lambda task: task.id == "task-1", _rename) is None
    assert update_infinite_tasks(cache, task_list_key(TaskFilters(status="DONE")), lambda task: True, _rename) is None
    assert cache.version(task_list_key()) == version


def test_restore_puts_snapshot_back(cache):
    original = seed_list(cache, None, [build_task("task-1")])
    update_infinite_tasks(cache, task_list_key(), lambda task: True, _rename)

    restore_infinite_tasks(cache, task_list_key(), original)

    assert cache.get(task_list_key()) == original


def test_task_list_keys_ignores_detail_entries(cache):
    seed_list(cache, TaskFilters(status="NEXT"), [build_task("task-1")])
    seed_list(cache, TaskFilters(category="MUSIC"), [])
    cache.set(task_detail_key("task-1"), build_task("task-1"))

    assert sorted(task_list_keys(cache), key=repr) == sorted(
        [task_list_key(TaskFilters(status="NEXT")), task_list_key(TaskFilters(category="MUSIC"))],
        key=repr,
    )


def test_invalidate_marks_prefix_stale_and_keeps_data(cache):
    seed_list(cache, None, [build_task("task-1")])
    cache.set(task_detail_key("task-1"), build_task("task-1"))

    invalidated = cache.invalidate(TASK_LISTS_PREFIX)

    assert invalidated == [task_list_key()]
    assert cache.is_stale(task_list_key())
    assert not cache.is_stale(task_detail_key("task-1"))
    assert cache.get(task_list_key()) is not None


def test_entries_go_stale_after_max_age():
    clock = FakeClock()
    cache = QueryCache(clock=clock)
    cache.set(("timeEngine", "state"), {"primary": None})

    assert not cache.is_stale(("timeEngine", "state"), max_age=10)
    clock.now += 11
    assert cache.is_stale(("timeEngine", "state"), max_age=10)
    assert cache.is_stale(("missing",))


def test_subscribers_see_every_write(cache):
    seen = []
    unsubscribe = cache.subscribe(lambda key, data: seen.append(key))

    cache.set(("a",), 1)
    unsubscribe()
    cache.set(("b",), 2)

    assert seen == [("a",)]


async def test_fetch_uses_fresh_cache(cache):
    calls = []

    async def fetcher():
        calls.append(1)
        return "loaded"

    assert await cache.fetch(("k",), fetcher) == "loaded"
    assert await cache.fetch(("k",), fetcher) == "loaded"
    assert calls == [1]


async def test_fetch_discards_result_when_key_written_meanwhile(cache):
    release = asyncio.Event()

    async def slow_fetcher():
        await release.wait()
        return "old server state"

    pending = asyncio.create_task(cache.fetch(("k",), slow_fetcher))
    await asyncio.sleep(0)
    cache.set(("k",), "optimistic state")
    release.set()

    assert await pending == "optimistic state"
    assert cache.get(("k",)) == "optimistic state"


async def test_refetch_reloads_stale_fetched_entries(cache):
    values = iter(["first", "second"])

    async def fetcher():
        return next(values)

    await cache.fetch(("tasks", "list", None, "infinite"), fetcher)
    cache.set(("tasks", "detail", "task-1"), "never fetched")
    cache.invalidate(("tasks",))

    refreshed = await cache.refetch(("tasks",))

    assert refreshed == [("tasks", "list", None, "infinite")]
    assert cache.get(("tasks", "list", None, "infinite")) == "second"
    assert not cache.is_stale(("tasks", "list", None, "infinite"))


def test_failing_subscriber_does_not_block_write_or_other_subscribers(cache, caplog):
    seen = []

    def broken(key, data):
        raise RuntimeError("reader gone")

    cache.subscribe(broken)
    cache.subscribe(lambda key, data: seen.append(data))

    caplog.set_level("ERROR")
    version = cache.set(("k",), "value")

    assert cache.get(("k",)) == "value"
    assert cache.version(("k",)) == version
    assert seen == ["value"]
    assert "Cache listener" in caplog.text
