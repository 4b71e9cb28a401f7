"""Schemas for time slices and the live engine state."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

TimeSource = Literal["SHORTCUT", "TIMERY", "MANUAL", "API"]


class TimeDimension(str, Enum):
    PRIMARY = "PRIMARY"
    WORK_MODE = "WORK_MODE"
    SOCIAL = "SOCIAL"
    SEGMENT = "SEGMENT"

    @property
    def state_key(self) -> str:
        """Field name of this dimension on :class:`EngineState`."""
        return _STATE_KEYS[self]

    @property
    def label(self) -> str:
        return _LABELS[self]


_STATE_KEYS: Dict[TimeDimension, str] = {
    TimeDimension.PRIMARY: "primary",
    TimeDimension.WORK_MODE: "work_mode",
    TimeDimension.SOCIAL: "social",
    TimeDimension.SEGMENT: "segment",
}

_LABELS: Dict[TimeDimension, str] = {
    TimeDimension.PRIMARY: "Activity",
    TimeDimension.WORK_MODE: "Work Mode",
    TimeDimension.SOCIAL: "Social",
    TimeDimension.SEGMENT: "Segment",
}


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="ignore")


class TimeSlice(_WireModel):
    id: str
    dimension: TimeDimension
    category: str
    start: datetime
    end: Optional[datetime] = None
    source: Optional[TimeSource] = None
    linked_task_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.end is None


class ActiveSlice(_WireModel):
    category: str
    start: datetime
    id: Optional[str] = None
    linked_task_id: Optional[str] = None

    @classmethod
    def from_slice(cls, time_slice: TimeSlice) -> "ActiveSlice":
        return cls(
            category=time_slice.category,
            start=time_slice.start,
            id=time_slice.id,
            linked_task_id=time_slice.linked_task_id,
        )


class EngineState(BaseModel):
    """What is active right now, one optional slice per dimension."""

    model_config = ConfigDict(frozen=True)

    primary: Optional[ActiveSlice] = None
    work_mode: Optional[ActiveSlice] = None
    social: Optional[ActiveSlice] = None
    segment: Optional[ActiveSlice] = None

    def for_dimension(self, dimension: TimeDimension) -> Optional[ActiveSlice]:
        return getattr(self, dimension.state_key)

    def active_dimensions(self) -> List[TimeDimension]:
        return [dimension for dimension in TimeDimension if self.for_dimension(dimension) is not None]


class StartSliceRequest(_WireModel):
    category: str = Field(min_length=1)
    dimension: TimeDimension
    source: TimeSource = "MANUAL"
    linked_task_id: Optional[str] = None


class StopSliceRequest(_WireModel):
    dimension: TimeDimension
    category: Optional[str] = None


class TimeSliceQuery(_WireModel):
    start_date: datetime
    end_date: datetime
    dimension: Optional[TimeDimension] = None
    category: Optional[str] = None
    linked_task_id: Optional[str] = None

    def to_params(self) -> Dict[str, str]:
        payload: Dict[str, Any] = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        return {key: str(value) for key, value in payload.items()}


class TimeSliceUpdate(_WireModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    category: Optional[str] = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def _require_one_field(self) -> "TimeSliceUpdate":
        if not self.model_fields_set & {"start", "end", "category"}:
            raise ValueError("At least one field (start, end, or category) must be provided")
        return self

    def to_payload(self) -> Dict[str, Any]:
        # An explicit ``end=None`` reopens the slice, so only unset fields are dropped.
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")
