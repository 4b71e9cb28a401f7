"""Optimistic schedule, unschedule and resize mutations over the cached task lists.

Every mutation runs as a :class:`SchedulingTransaction`: the touched task lists
are snapshotted and patched synchronously before the API call is awaited, then
either reconciled with the server task or restored verbatim from the snapshots.
Only one scheduling mutation may be in flight per :class:`TaskScheduler`; a
second request while one is pending is ignored.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from compass.api.client import CompassApiClient
from compass.api.errors import ApiError
from compass.api.schemas.calendar import CalendarEvent
from compass.api.schemas.task import CLEARED, Task
from compass.observability.metrics import log_metric
from compass.observability.tracing import trace
from compass.services.event_projector import parse_timestamp
from compass.services.notifications import Notifier, log_notifier
from compass.services.overlap_guard import overlaps
from compass.services.query_cache import (
    DEFAULT_TASK_LIST_KEY,
    TASK_LISTS_PREFIX,
    InfiniteTasks,
    QueryCache,
    QueryKey,
    restore_infinite_tasks,
    task_detail_key,
    task_list_keys,
    update_infinite_tasks,
)

logger = logging.getLogger(__name__)

# Changing any of these can move a task to another position or list on the server.
SORT_AFFECTING_FIELDS = frozenset({"status", "priority", "scheduled_start", "created_at"})


class MutationKind(str, Enum):
    SCHEDULE = "schedule"
    UNSCHEDULE = "unschedule"
    UPDATE = "update"


class SchedulingValidationError(ValueError):
    """A scheduling request rejected before touching the cache or the network."""

    def __init__(self, user_message: str) -> None:
        super().__init__(user_message)
        self.user_message = user_message


class PastTimeError(SchedulingValidationError):
    pass


class MinimumDurationError(SchedulingValidationError):
    pass


class OverlapError(SchedulingValidationError):
    pass


class NotReschedulableError(SchedulingValidationError):
    pass


class InvalidStartError(SchedulingValidationError):
    pass


def to_iso(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def duration_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between ``start`` and ``end``, halves rounded up."""
    return int(math.floor((end - start).total_seconds() / 60 + 0.5))


def ensure_not_in_past(start: datetime, now: datetime) -> None:
    if start < now:
        raise PastTimeError("Cannot schedule tasks in the past")


def ensure_minimum_duration(minutes: int) -> None:
    if minutes < 1:
        raise MinimumDurationError("Task duration must be at least 1 minute")


@dataclass(frozen=True)
class CacheSnapshot:
    key: QueryKey
    snapshot: InfiniteTasks
    updated_count: int
    version: int


class SchedulingTransaction:
    """Snapshot, optimistic apply, then commit or rollback for one task."""

    def __init__(
        self,
        cache: QueryCache,
        task_id: str,
        updater: Callable[[Task], Task],
        *,
        scope: str = "scheduling",
    ) -> None:
        self.cache = cache
        self.task_id = task_id
        self.scope = scope
        self._updater = updater
        self.snapshots: List[CacheSnapshot] = []
        self.status = "new"

    def _matches(self, task: Task) -> bool:
        return task.id == self.task_id

    def apply(self) -> List[CacheSnapshot]:
        if self.status != "new":
            raise RuntimeError(f"Transaction for task {self.task_id} already {self.status}")
        # Rollback is valid from here on, covering whichever lists were patched before a failure.
        self.status = "applied"
        keys = task_list_keys(self.cache) or [DEFAULT_TASK_LIST_KEY]
        for key in keys:
            result = update_infinite_tasks(self.cache, key, self._matches, self._updater)
            if result is None:
                logger.debug("[%s] No cache hit for key %s when applying optimistic update", self.scope, key)
                continue
            logger.debug("[%s] Optimistically updated %s item(s) for key %s", self.scope, result.updated_count, key)
            self.snapshots.append(
                CacheSnapshot(
                    key=key,
                    snapshot=result.snapshot,
                    updated_count=result.updated_count,
                    version=result.version,
                )
            )
        return self.snapshots

    def commit(self, server_task: Task, *, invalidate: bool) -> None:
        """Replace the optimistic task with ``server_task`` and optionally invalidate every list."""
        self._require_applied()
        for snapshot in self.snapshots:
            if self.cache.version(snapshot.key) != snapshot.version:
                logger.debug("[%s] %s changed since optimistic apply; not overwriting", self.scope, snapshot.key)
                continue
            update_infinite_tasks(self.cache, snapshot.key, self._matches, lambda _task: server_task)
        self.cache.set(task_detail_key(self.task_id), server_task)
        if invalidate:
            self.cache.invalidate(TASK_LISTS_PREFIX)
        self.status = "committed"

    def rollback(self) -> int:
        """Restore every touched list to its snapshot; returns how many were restored."""
        self._require_applied()
        restored = 0
        for snapshot in self.snapshots:
            if self.cache.version(snapshot.key) != snapshot.version:
                logger.info("[%s] %s holds newer state; skipping rollback", self.scope, snapshot.key)
                continue
            restore_infinite_tasks(self.cache, snapshot.key, snapshot.snapshot)
            restored += 1
        self.status = "rolled_back"
        return restored

    def _require_applied(self) -> None:
        if self.status != "applied":
            raise RuntimeError(f"Transaction for task {self.task_id} is {self.status}, expected applied")


class TaskScheduler:
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
        self._pending: Dict[MutationKind, bool] = {kind: False for kind in MutationKind}

    def is_pending(self, kind: MutationKind | None = None) -> bool:
        if kind is not None:
            return self._pending[kind]
        return any(self._pending.values())

    async def schedule(self, task_id: str, scheduled_start: datetime | str) -> Optional[Task]:
        start, iso = self._normalize_start(scheduled_start)
        self._check(ensure_not_in_past, start, self._clock())
        return await self._mutate(
            MutationKind.SCHEDULE,
            task_id,
            {"scheduled_start": iso},
            lambda: self._client.schedule_task(task_id, iso),
            invalidate_lists=True,
            failure_message="Failed to schedule task",
            success_message="Task scheduled",
        )

    async def unschedule(self, task_id: str) -> Optional[Task]:
        return await self._mutate(
            MutationKind.UNSCHEDULE,
            task_id,
            {"scheduled_start": CLEARED},
            lambda: self._client.unschedule_task(task_id),
            invalidate_lists=True,
            failure_message="Failed to unschedule task",
            success_message="Task unscheduled and moved back to unscheduled list",
        )

    async def resize(self, task_id: str, start: datetime, end: datetime) -> Optional[Task]:
        self._check(ensure_not_in_past, start, self._clock())
        minutes = duration_minutes(start, end)
        self._check(ensure_minimum_duration, minutes)
        return await self.update(
            task_id,
            {"duration": minutes, "scheduled_start": to_iso(start)},
            success_message="Task duration updated",
        )

    async def update(
        self,
        task_id: str,
        updates: Mapping[str, Any],
        *,
        success_message: str | None = None,
    ) -> Optional[Task]:
        changes = dict(updates)
        return await self._mutate(
            MutationKind.UPDATE,
            task_id,
            changes,
            lambda: self._client.update_task(task_id, changes),
            invalidate_lists=bool(SORT_AFFECTING_FIELDS & changes.keys()),
            failure_message="Failed to update task",
            success_message=success_message,
        )

    async def drop_event(self, event: CalendarEvent, start: datetime) -> Optional[Task]:
        """Reschedule a task event dragged to ``start``."""
        if not event.is_task:
            self._reject(NotReschedulableError("Cannot reschedule time blocks"))
        return await self.schedule(event.task.id, start)

    async def resize_event(self, event: CalendarEvent, start: datetime, end: datetime) -> Optional[Task]:
        if not event.is_task:
            self._reject(NotReschedulableError("Cannot resize time blocks"))
        return await self.resize(event.task.id, start, end)

    async def schedule_from_outside(
        self,
        task: Task,
        start: datetime,
        existing_events: Iterable[CalendarEvent],
    ) -> Optional[Task]:
        """Schedule an unscheduled task dropped onto the calendar, refusing booked slots."""
        self._check(ensure_not_in_past, start, self._clock())
        end = start + timedelta(minutes=task.duration)
        task_events = [event for event in existing_events if event.type == "task"]
        if overlaps(start, end, task_events):
            self._reject(OverlapError("Time already booked"))
        return await self.schedule(task.id, start)

    async def _mutate(
        self,
        kind: MutationKind,
        task_id: str,
        changes: Dict[str, Any],
        call: Callable[[], Awaitable[Task]],
        *,
        invalidate_lists: bool,
        failure_message: str,
        success_message: str | None,
    ) -> Optional[Task]:
        if self.is_pending():
            logger.debug("Ignoring %s for task %s while another scheduling mutation is pending", kind.value, task_id)
            return None

        issued_at = self._clock()
        optimistic = {**changes, "updated_at": issued_at}
        metadata = {"task_id": task_id, "kind": kind.value}

        transaction = SchedulingTransaction(
            self._cache,
            task_id,
            lambda task: task.model_copy(update=optimistic),
            scope=kind.value,
        )
        self._pending[kind] = True
        try:
            transaction.apply()
            with trace(f"scheduling.{kind.value}", metadata=metadata, task_id=task_id):
                server_task = await call()
        except Exception as exc:
            restored = transaction.rollback()
            log_metric(f"scheduling.{kind.value}.rollback", restored, metadata=metadata)
            message = exc.user_message if isinstance(exc, ApiError) else failure_message
            logger.warning("%s for task %s failed, rolled back %s list(s): %s", kind.value, task_id, restored, message)
            self._notify("error", message)
            raise
        finally:
            self._pending[kind] = False

        transaction.commit(server_task, invalidate=invalidate_lists)
        log_metric(f"scheduling.{kind.value}.success", 1, metadata=metadata)
        if success_message:
            self._notify("success", success_message)
        return server_task

    def _normalize_start(self, value: datetime | str) -> Tuple[datetime, str]:
        parsed = parse_timestamp(value)
        if parsed is None:
            self._reject(InvalidStartError("Invalid start time"))
        return parsed, to_iso(parsed)

    def _check(self, validator: Callable[..., None], *args: Any) -> None:
        try:
            validator(*args)
        except SchedulingValidationError as exc:
            self._reject(exc)

    def _reject(self, error: SchedulingValidationError) -> None:
        log_metric("scheduling.validation_rejected", 1, metadata={"reason": type(error).__name__})
        self._notify("error", error.user_message)
        raise error
