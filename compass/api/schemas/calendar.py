"""Calendar events derived from tasks and plan blocks."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

from compass.api.schemas.task import Task

EventType = Literal["task", "deepWork", "admin", "buffer"]


@dataclass(frozen=True)
class CalendarEvent:
    id: str
    title: str
    start: datetime
    end: datetime
    type: EventType
    task: Optional[Task] = None

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError(f"Calendar event {self.id} must end after it starts")

    @property
    def is_task(self) -> bool:
        return self.type == "task" and self.task is not None
