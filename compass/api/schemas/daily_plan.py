"""Schemas for the daily plan returned by the orient endpoints."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from compass.api.schemas.task import Energy


class TimeBlock(BaseModel):
    """Time-of-day interval, ``HH:MM`` strings on the plan's day."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    start: str
    end: str


class DeepWorkBlock(TimeBlock):
    focus: str = ""


class PlannedBlock(TimeBlock):
    id: str
    label: str = ""


class DailyPlan(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="ignore")

    id: str
    date: str
    energy_level: Optional[Energy] = None
    deep_work_block1: Optional[DeepWorkBlock] = Field(default=None, alias="deepWorkBlock1")
    deep_work_block2: Optional[DeepWorkBlock] = Field(default=None, alias="deepWorkBlock2")
    admin_block: Optional[TimeBlock] = None
    buffer_block: Optional[TimeBlock] = None
    planned_blocks: List[PlannedBlock] = Field(default_factory=list)
    top_outcomes: List[str] = Field(default_factory=list)
    reward: Optional[str] = None
    reflection: Optional[str] = None
