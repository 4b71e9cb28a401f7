"""Historical time slices: querying, correcting and deleting."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from compass.api.client import CompassApiClient
from compass.api.errors import ApiError
from compass.api.schemas.time_slice import TimeDimension, TimeSlice, TimeSliceQuery, TimeSliceUpdate
from compass.observability.metrics import log_metric
from compass.services.notifications import Notifier, log_notifier
from compass.services.query_cache import QueryCache, QueryKey
from compass.services.time_engine import ENGINE_STATE_KEY, TIME_HISTORY_PREFIX

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7
HISTORY_STALE_SECONDS = 30


def time_history_key(query: TimeSliceQuery) -> QueryKey:
    return ("timeHistory", "slices", query)


class TimeHistory:
    def __init__(
        self,
        client: CompassApiClient,
        cache: QueryCache,
        *,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._notify = notifier or log_notifier
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def build_query(
        self,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        dimension: TimeDimension | None = None,
        category: str | None = None,
        linked_task_id: str | None = None,
    ) -> TimeSliceQuery:
        """Defaults to the seven days ending now."""
        end = end_date or self._clock()
        start = start_date or end - timedelta(days=DEFAULT_WINDOW_DAYS)
        return TimeSliceQuery(
            start_date=start,
            end_date=end,
            dimension=dimension,
            category=category or None,
            linked_task_id=linked_task_id or None,
        )

    async def list_slices(self, query: TimeSliceQuery | None = None) -> List[TimeSlice]:
        query = query or self.build_query()
        return await self._cache.fetch(
            time_history_key(query),
            lambda: self._client.get_time_slices(query),
            max_age=HISTORY_STALE_SECONDS,
        )

    async def update_slice(self, slice_id: str, update: TimeSliceUpdate) -> TimeSlice:
        try:
            updated = await self._client.update_time_slice(slice_id, update)
        except ApiError as exc:
            self._notify("error", exc.user_message or "Failed to update time slice")
            raise
        self._after_write("update", slice_id)
        return updated

    async def delete_slice(self, slice_id: str) -> None:
        try:
            await self._client.delete_time_slice(slice_id)
        except ApiError as exc:
            self._notify("error", exc.user_message or "Failed to delete time slice")
            raise
        self._after_write("delete", slice_id)

    def cached(self, query: TimeSliceQuery) -> Optional[List[TimeSlice]]:
        return self._cache.get(time_history_key(query))

    def _after_write(self, action: str, slice_id: str) -> None:
        # An edited slice may be the active one, so the engine state goes stale too.
        self._cache.invalidate(TIME_HISTORY_PREFIX)
        self._cache.invalidate(ENGINE_STATE_KEY)
        log_metric(f"time_history.{action}.success", 1, metadata={"slice_id": slice_id})
        logger.info("Time slice %s %sd", slice_id, action)
