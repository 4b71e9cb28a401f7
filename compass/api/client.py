"""Async client for the Compass REST API."""
from __future__ import annotations

import logging
from time import perf_counter
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

import httpx
from pydantic.alias_generators import to_camel

from compass.api.errors import NETWORK_ERROR_MESSAGE, ApiError, NotFoundError, error_from_response
from compass.api.schemas.daily_plan import DailyPlan
from compass.api.schemas.task import Task, TaskFilters, TaskPage
from compass.api.schemas.time_slice import (
    EngineState,
    StartSliceRequest,
    StopSliceRequest,
    TimeSlice,
    TimeSliceQuery,
    TimeSliceUpdate,
)
from compass.core.config import settings
from compass.observability.metrics import log_metric

logger = logging.getLogger(__name__)


class CompassApiClient:
    """Thin wrapper over ``httpx.AsyncClient`` exposing the task, plan and engine operations.

    The client owns its ``httpx.AsyncClient`` unless one is injected, in which case
    closing is left to the caller.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        api_key: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"accept": "application/json", "content-type": "application/json"}
        key = api_key if api_key is not None else settings.api_key
        if key:
            headers["x-api-key"] = key
        if http_client is None:
            self._http = httpx.AsyncClient(
                base_url=base_url or settings.api_base_url,
                headers=headers,
                timeout=timeout if timeout is not None else settings.request_timeout_seconds,
            )
            self._owns_client = True
        else:
            http_client.headers.update(headers)
            self._http = http_client
            self._owns_client = False

    async def __aenter__(self) -> "CompassApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # Tasks

    async def get_tasks(
        self,
        filters: TaskFilters | None = None,
        *,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> TaskPage:
        params: Dict[str, str] = filters.to_params() if filters else {}
        if cursor:
            params["cursor"] = cursor
        params["limit"] = str(limit or settings.task_page_size)
        data = await self._request("GET", "/tasks", params=params)
        # Older servers return a bare list instead of a page envelope.
        if isinstance(data, list):
            return TaskPage(items=tuple(Task.model_validate(item) for item in data))
        return TaskPage.model_validate(data)

    async def iter_tasks(self, filters: TaskFilters | None = None) -> AsyncIterator[Task]:
        cursor: str | None = None
        while True:
            page = await self.get_tasks(filters, cursor=cursor)
            for task in page.items:
                yield task
            if not page.next_cursor:
                return
            cursor = page.next_cursor

    async def get_task(self, task_id: str) -> Task:
        return Task.model_validate(await self._request("GET", f"/tasks/{task_id}"))

    async def schedule_task(self, task_id: str, scheduled_start: str) -> Task:
        data = await self._request("PATCH", f"/tasks/{task_id}/schedule", json={"scheduledStart": scheduled_start})
        return Task.model_validate(data)

    async def unschedule_task(self, task_id: str) -> Task:
        return Task.model_validate(await self._request("PATCH", f"/tasks/{task_id}/unschedule"))

    async def update_task(self, task_id: str, updates: Mapping[str, Any]) -> Task:
        data = await self._request("PATCH", f"/tasks/{task_id}", json=_to_wire(updates))
        return Task.model_validate(data)

    # Daily plan

    async def get_today_plan(self) -> Optional[DailyPlan]:
        """Return today's plan, or ``None`` when none has been created yet."""
        try:
            data = await self._request("GET", "/orient/today")
        except NotFoundError:
            logger.debug("No daily plan for today")
            return None
        return DailyPlan.model_validate(data)

    # Time engine

    async def start_time_slice(self, request: StartSliceRequest) -> TimeSlice:
        payload = request.model_dump(by_alias=True, exclude_none=True, mode="json")
        return TimeSlice.model_validate(await self._request("POST", "/engine/start", json=payload))

    async def stop_time_slice(self, request: StopSliceRequest) -> TimeSlice:
        payload = request.model_dump(by_alias=True, exclude_none=True, mode="json")
        return TimeSlice.model_validate(await self._request("POST", "/engine/stop", json=payload))

    async def get_engine_state(self) -> EngineState:
        return EngineState.model_validate(await self._request("GET", "/engine/state"))

    async def get_time_slices(self, query: TimeSliceQuery) -> List[TimeSlice]:
        data = await self._request("GET", "/engine/slices", params=query.to_params())
        return [TimeSlice.model_validate(item) for item in data or []]

    async def update_time_slice(self, slice_id: str, update: TimeSliceUpdate) -> TimeSlice:
        data = await self._request("PATCH", f"/engine/slices/{slice_id}", json=update.to_payload())
        return TimeSlice.model_validate(data)

    async def delete_time_slice(self, slice_id: str) -> None:
        await self._request("DELETE", f"/engine/slices/{slice_id}")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Any = None,
    ) -> Any:
        start = perf_counter()
        try:
            response = await self._http.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            logger.warning("API %s %s failed: %s", method, path, exc)
            log_metric("api.request.network_error", 1, metadata={"method": method, "path": path})
            raise ApiError(NETWORK_ERROR_MESSAGE, details=str(exc)) from exc

        latency_ms = (perf_counter() - start) * 1000
        logger.debug("API %s %s -> %s (%.1f ms)", method, path, response.status_code, latency_ms)
        if response.status_code >= 400:
            payload = _safe_json(response)
            error = error_from_response(response.status_code, payload if isinstance(payload, dict) else None)
            if response.status_code != 404:
                logger.warning("API %s %s returned %s: %s", method, path, response.status_code, error.user_message)
            raise error
        if response.status_code == 204 or not response.content:
            return None
        return response.json()


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _to_wire(updates: Mapping[str, Any]) -> Dict[str, Any]:
    return {to_camel(key): value for key, value in updates.items()}
