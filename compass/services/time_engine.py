"""Live time tracking across the four independent dimensions."""
from __future__ import annotations

import logging
from typing import Iterable, Optional, Set

from compass.api.client import CompassApiClient
from compass.api.errors import ApiError
from compass.api.schemas.time_slice import (
    ActiveSlice,
    EngineState,
    StartSliceRequest,
    StopSliceRequest,
    TimeDimension,
    TimeSlice,
    TimeSource,
)
from compass.core.config import settings
from compass.observability.metrics import log_metric
from compass.observability.tracing import trace
from compass.services.notifications import Notifier, log_notifier
from compass.services.query_cache import QueryCache, QueryKey

logger = logging.getLogger(__name__)

ENGINE_STATE_KEY: QueryKey = ("timeEngine", "state")
TIME_HISTORY_PREFIX: QueryKey = ("timeHistory",)


class TimeEngineError(ValueError):
    def __init__(self, user_message: str) -> None:
        super().__init__(user_message)
        self.user_message = user_message


class EmptyCategoryError(TimeEngineError):
    pass


class DimensionAlreadyActiveError(TimeEngineError):
    pass


class DimensionIdleError(TimeEngineError):
    pass


class ActiveSliceConflictError(TimeEngineError):
    """More than one open slice in a single dimension."""


def build_engine_state(slices: Iterable[TimeSlice]) -> EngineState:
    """Resolve each dimension to its open slice, if any."""
    active: dict[TimeDimension, TimeSlice] = {}
    for time_slice in slices:
        if not time_slice.is_active:
            continue
        existing = active.get(time_slice.dimension)
        if existing is not None:
            raise ActiveSliceConflictError(
                f"Slices {existing.id} and {time_slice.id} are both active for {time_slice.dimension.value}"
            )
        active[time_slice.dimension] = time_slice
    return EngineState(
        **{dimension.state_key: ActiveSlice.from_slice(time_slice) for dimension, time_slice in active.items()}
    )


class TimeEngine:
    """Start/stop state machine per dimension, mirrored from the engine API.

    A dimension is Idle when the engine state has no slice for it and Active
    otherwise. Starting an Active dimension or stopping an Idle one is rejected;
    repeated requests for a dimension whose action is still in flight are
    ignored.
    """

    def __init__(
        self,
        client: CompassApiClient,
        cache: QueryCache,
        *,
        notifier: Notifier | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._notify = notifier or log_notifier
        self._pending: Set[TimeDimension] = set()
        self._starting: Set[TimeDimension] = set()
        self._stopping: Set[TimeDimension] = set()

    @property
    def state(self) -> Optional[EngineState]:
        return self._cache.get(ENGINE_STATE_KEY)

    def is_pending(self, dimension: TimeDimension) -> bool:
        return dimension in self._pending

    def is_starting(self, dimension: TimeDimension) -> bool:
        return dimension in self._starting

    def is_stopping(self, dimension: TimeDimension) -> bool:
        return dimension in self._stopping

    async def load(self) -> EngineState:
        """Cached engine state, refetched once older than the stale window."""
        return await self._cache.fetch(
            ENGINE_STATE_KEY,
            self._client.get_engine_state,
            max_age=settings.engine_stale_seconds,
        )

    async def refresh(self) -> EngineState:
        self._cache.invalidate(ENGINE_STATE_KEY)
        return await self.load()

    def rebuild_from_slices(self, slices: Iterable[TimeSlice]) -> EngineState:
        state = build_engine_state(slices)
        self._cache.set(ENGINE_STATE_KEY, state)
        return state

    async def start(
        self,
        dimension: TimeDimension,
        category: str,
        source: TimeSource = "MANUAL",
        linked_task_id: str | None = None,
    ) -> Optional[TimeSlice]:
        category = category.strip()
        if not category:
            raise self._rejected(EmptyCategoryError("Please choose a category"))
        if dimension in self._pending:
            logger.debug("Ignoring start for %s: action already pending", dimension.value)
            return None

        metadata = {"dimension": dimension.value, "category": category, "source": source}
        self._pending.add(dimension)
        self._starting.add(dimension)
        try:
            state = await self.load()
            if state.for_dimension(dimension) is not None:
                raise self._rejected(
                    DimensionAlreadyActiveError(f"{dimension.label} is already being tracked. Stop it first.")
                )
            request = StartSliceRequest(
                category=category,
                dimension=dimension,
                source=source,
                linked_task_id=linked_task_id,
            )
            with trace("time_engine.start", metadata=metadata):
                time_slice = await self._client.start_time_slice(request)
        except ApiError as exc:
            log_metric("time_engine.start.failure", 1, metadata=metadata)
            self._notify("error", exc.user_message or "Failed to start time slice")
            raise
        finally:
            self._pending.discard(dimension)
            self._starting.discard(dimension)

        self._record(dimension, ActiveSlice.from_slice(time_slice))
        log_metric("time_engine.start.success", 1, metadata=metadata)
        logger.info("Started %s slice category=%s id=%s", dimension.value, category, time_slice.id)
        return time_slice

    async def stop(self, dimension: TimeDimension, category: str | None = None) -> Optional[TimeSlice]:
        if dimension in self._pending:
            logger.debug("Ignoring stop for %s: action already pending", dimension.value)
            return None

        metadata = {"dimension": dimension.value}
        self._pending.add(dimension)
        self._stopping.add(dimension)
        try:
            state = await self.load()
            if state.for_dimension(dimension) is None:
                raise self._rejected(DimensionIdleError(f"No active {dimension.label.lower()} slice to stop"))
            with trace("time_engine.stop", metadata=metadata):
                time_slice = await self._client.stop_time_slice(
                    StopSliceRequest(dimension=dimension, category=category)
                )
        except ApiError as exc:
            log_metric("time_engine.stop.failure", 1, metadata=metadata)
            self._notify("error", exc.user_message or "Failed to stop time slice")
            raise
        finally:
            self._pending.discard(dimension)
            self._stopping.discard(dimension)

        self._record(dimension, None)
        log_metric("time_engine.stop.success", 1, metadata=metadata)
        logger.info("Stopped %s slice id=%s", dimension.value, time_slice.id)
        return time_slice

    def _record(self, dimension: TimeDimension, active: Optional[ActiveSlice]) -> None:
        # Patch the latest cached state, then mark it stale so the next read refetches.
        current: EngineState = self._cache.get(ENGINE_STATE_KEY) or EngineState()
        self._cache.set(ENGINE_STATE_KEY, current.model_copy(update={dimension.state_key: active}))
        self._cache.invalidate(ENGINE_STATE_KEY)
        self._cache.invalidate(TIME_HISTORY_PREFIX)

    def _rejected(self, error: TimeEngineError) -> TimeEngineError:
        self._notify("error", error.user_message)
        return error
