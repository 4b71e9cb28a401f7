"""Loading paginated task lists into the query cache."""
from __future__ import annotations

import logging
from typing import List, Optional

from compass.api.client import CompassApiClient
from compass.api.schemas.task import Task, TaskFilters
from compass.core.config import settings
from compass.services.query_cache import InfiniteTasks, QueryCache, task_list_key

logger = logging.getLogger(__name__)


async def load_task_list(
    cache: QueryCache,
    client: CompassApiClient,
    filters: TaskFilters | None = None,
) -> InfiniteTasks:
    """Return the cached first page(s) for ``filters``, fetching when stale."""

    async def fetch_first_page() -> InfiniteTasks:
        page = await client.get_tasks(filters)
        return InfiniteTasks(pages=(page,), page_params=(None,))

    return await cache.fetch(
        task_list_key(filters),
        fetch_first_page,
        max_age=settings.task_list_stale_seconds,
    )


async def load_next_page(
    cache: QueryCache,
    client: CompassApiClient,
    filters: TaskFilters | None = None,
) -> Optional[InfiniteTasks]:
    """Append the next page to a cached list; ``None`` when there is nothing more to load."""
    key = task_list_key(filters)
    current: Optional[InfiniteTasks] = cache.get(key)
    if current is None or not current.next_cursor:
        return current

    cursor = current.next_cursor
    started_version = cache.version(key)
    page = await client.get_tasks(filters, cursor=cursor)
    if cache.version(key) != started_version:
        logger.debug("Task list %s changed while loading cursor=%s; dropping page", key, cursor)
        return cache.get(key)

    updated = InfiniteTasks(pages=current.pages + (page,), page_params=current.page_params + (cursor,))
    cache.set(key, updated)
    return updated


def split_by_schedule(tasks: List[Task]) -> tuple[List[Task], List[Task]]:
    """Partition tasks into (scheduled, unscheduled) for the calendar sidebar."""
    scheduled = [task for task in tasks if task.is_scheduled]
    unscheduled = [task for task in tasks if not task.is_scheduled]
    return scheduled, unscheduled
