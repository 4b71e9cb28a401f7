"""Explicit key/value query cache shared by the calendar view.

Keys are tuples; a key "matches" a prefix when it starts with it, so
``invalidate(("tasks", "list"))`` reaches every cached task list regardless of
its filters. Each write bumps a global version counter which lets readers and
transactions detect that somebody else wrote in the meantime.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from compass.api.schemas.task import Task, TaskFilters, TaskPage

logger = logging.getLogger(__name__)

QueryKey = Tuple[Any, ...]
Listener = Callable[[QueryKey, Any], None]

TASKS_PREFIX: QueryKey = ("tasks",)
TASK_LISTS_PREFIX: QueryKey = ("tasks", "list")


def task_list_key(filters: TaskFilters | None = None) -> QueryKey:
    return ("tasks", "list", filters, "infinite")


def task_detail_key(task_id: str) -> QueryKey:
    return ("tasks", "detail", task_id)


DEFAULT_TASK_LIST_KEY = task_list_key(TaskFilters(status="NEXT"))


@dataclass
class CacheEntry:
    data: Any
    version: int
    written_at: float
    stale: bool = False
    fetcher: Optional[Callable[[], Awaitable[Any]]] = field(default=None, repr=False)


class QueryCache:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[QueryKey, CacheEntry] = {}
        self._listeners: List[Listener] = []
        self._clock = clock
        self._version = 0

    def get(self, key: QueryKey) -> Any:
        entry = self._entries.get(key)
        return entry.data if entry else None

    def version(self, key: QueryKey) -> int:
        entry = self._entries.get(key)
        return entry.version if entry else 0

    def set(self, key: QueryKey, data: Any) -> int:
        """Store ``data`` under ``key`` and notify listeners; returns the new version."""
        self._version += 1
        previous = self._entries.get(key)
        self._entries[key] = CacheEntry(
            data=data,
            version=self._version,
            written_at=self._clock(),
            fetcher=previous.fetcher if previous else None,
        )
        for listener in list(self._listeners):
            try:
                listener(key, data)
            except Exception:
                logger.exception("Cache listener %r failed for %s", listener, key)
        return self._version

    def remove(self, key: QueryKey) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self, prefix: QueryKey = ()) -> List[QueryKey]:
        return [key for key in self._entries if key[: len(prefix)] == prefix]

    def invalidate(self, prefix: QueryKey) -> List[QueryKey]:
        """Mark every entry under ``prefix`` stale so the next read refetches it."""
        keys = self.keys(prefix)
        for key in keys:
            self._entries[key].stale = True
        if keys:
            logger.debug("Invalidated %s cache entr(ies) under %s", len(keys), prefix)
        return keys

    def is_stale(self, key: QueryKey, max_age: float | None = None) -> bool:
        entry = self._entries.get(key)
        if entry is None or entry.stale:
            return True
        if max_age is None:
            return False
        return self._clock() - entry.written_at > max_age

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def fetch(
        self,
        key: QueryKey,
        fetcher: Callable[[], Awaitable[Any]],
        *,
        max_age: float | None = None,
    ) -> Any:
        """Return cached data while fresh, otherwise load it through ``fetcher``.

        A result whose key was written while the fetch was in flight is
        discarded in favour of the newer cached value.
        """
        if not self.is_stale(key, max_age):
            return self.get(key)
        started_version = self.version(key)
        data = await fetcher()
        if self.version(key) != started_version:
            logger.debug("Discarding stale fetch result for %s", key)
            return self.get(key)
        self.set(key, data)
        self._entries[key].fetcher = fetcher
        return data

    async def refetch(self, prefix: QueryKey) -> List[QueryKey]:
        """Reload stale entries under ``prefix`` that were loaded through :meth:`fetch`."""
        refreshed: List[QueryKey] = []
        for key in self.keys(prefix):
            entry = self._entries.get(key)
            if entry is None or not entry.stale or entry.fetcher is None:
                continue
            await self.fetch(key, entry.fetcher)
            refreshed.append(key)
        return refreshed


@dataclass(frozen=True)
class InfiniteTasks:
    """A paginated task list as cached: the pages loaded so far, in order."""

    pages: Tuple[TaskPage, ...]
    page_params: Tuple[Optional[str], ...]

    @property
    def next_cursor(self) -> Optional[str]:
        return self.pages[-1].next_cursor if self.pages else None

    def tasks(self) -> List[Task]:
        return [task for page in self.pages for task in page.items]


@dataclass(frozen=True)
class CacheUpdateResult:
    snapshot: InfiniteTasks
    updated_count: int
    version: int


def task_list_keys(cache: QueryCache) -> List[QueryKey]:
    """Every cached paginated task list key."""
    return [key for key in cache.keys(TASK_LISTS_PREFIX) if key[-1] == "infinite"]


def update_infinite_tasks(
    cache: QueryCache,
    key: QueryKey,
    predicate: Callable[[Task], bool],
    updater: Callable[[Task], Task],
) -> Optional[CacheUpdateResult]:
    """Patch matching tasks in one cached list, rebuilding only the pages that change."""
    current: Optional[InfiniteTasks] = cache.get(key)
    if current is None:
        return None

    updated_count = 0
    pages: List[TaskPage] = []
    for page in current.pages:
        page_changed = False
        items: List[Task] = []
        for task in page.items:
            if predicate(task):
                items.append(updater(task))
                page_changed = True
                updated_count += 1
            else:
                items.append(task)
        pages.append(page.model_copy(update={"items": tuple(items)}) if page_changed else page)

    if updated_count == 0:
        return None

    version = cache.set(key, InfiniteTasks(pages=tuple(pages), page_params=current.page_params))
    return CacheUpdateResult(snapshot=current, updated_count=updated_count, version=version)


def restore_infinite_tasks(cache: QueryCache, key: QueryKey, snapshot: Optional[InfiniteTasks]) -> None:
    if snapshot is None:
        return
    cache.set(key, snapshot)

