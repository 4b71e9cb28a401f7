"""Schemas for tasks and paginated task listings."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

TaskStatus = Literal["NEXT", "WAITING", "ACTIVE", "DONE", "SOMEDAY"]
Priority = Literal["MUST", "SHOULD", "COULD", "MAYBE"]
Category = Literal[
    "SCHOOL",
    "MUSIC",
    "FITNESS",
    "GAMING",
    "NUTRITION",
    "HYGIENE",
    "PET",
    "SOCIAL",
    "PERSONAL",
    "ADMIN",
]
Context = Literal["HOME", "OFFICE", "COMPUTER", "PHONE", "ERRANDS", "ANYWHERE"]
Energy = Literal["HIGH", "MEDIUM", "LOW"]


class ScheduleCleared:
    """Marker for a schedule removed optimistically and not yet confirmed by the server.

    A task that was never scheduled carries ``None``; a task whose schedule was
    cleared while an unschedule request is in flight carries ``CLEARED``. The
    marker is falsy so "is this task scheduled" checks treat both alike.
    """

    _instance: "ScheduleCleared | None" = None

    def __new__(cls) -> "ScheduleCleared":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "CLEARED"

    def __copy__(self) -> "ScheduleCleared":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "ScheduleCleared":
        return self

    def __reduce__(self):
        return (ScheduleCleared, ())


CLEARED = ScheduleCleared()


class Task(BaseModel):
    """Immutable snapshot of a task as returned by the API."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        arbitrary_types_allowed=True,
        extra="ignore",
    )

    id: str
    name: str
    status: TaskStatus = "NEXT"
    priority: Priority = "SHOULD"
    category: Category = "PERSONAL"
    context: Context = "ANYWHERE"
    energy_required: Energy = "MEDIUM"
    duration: int = Field(gt=0, description="Duration in minutes")
    definition_of_done: str = ""
    due_date: Optional[str] = None
    scheduled_start: Optional[Union[str, ScheduleCleared]] = None
    activated_at: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: datetime

    @property
    def is_scheduled(self) -> bool:
        return isinstance(self.scheduled_start, str) and bool(self.scheduled_start)

    @property
    def schedule_cleared(self) -> bool:
        return self.scheduled_start is CLEARED

    @field_serializer("scheduled_start")
    def _serialize_scheduled_start(self, value: Optional[Union[str, ScheduleCleared]]) -> Optional[str]:
        if isinstance(value, ScheduleCleared):
            return None
        return value


class TaskFilters(BaseModel):
    """Filter set identifying one cached task list."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    status: Optional[TaskStatus] = None
    category: Optional[Category] = None
    context: Optional[Context] = None
    priority: Optional[Priority] = None
    energy_required: Optional[Energy] = None
    scheduled_filter: Optional[str] = None
    timezone: Optional[str] = None

    def to_params(self) -> Dict[str, str]:
        return {key: str(value) for key, value in self.model_dump(by_alias=True, exclude_none=True).items()}


class TaskPage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    items: Tuple[Task, ...] = ()
    next_cursor: Optional[str] = None
