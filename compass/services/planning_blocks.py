"""Helpers for free-form planned block labels and times."""
from __future__ import annotations

import re
from typing import Optional, Tuple, get_args

from compass.api.schemas.task import Category

OTHER = "OTHER"
PRIMARY_CATEGORIES: Tuple[str, ...] = get_args(Category)

_HHMM = re.compile(r"^(\d{2}):(\d{2})$")


def is_primary_category(value: str) -> bool:
    return value in PRIMARY_CATEGORIES


def parse_planned_block_label(label: str) -> Tuple[str, str]:
    """Split ``"FITNESS - Run"`` into ``("FITNESS", "Run")``; unknown prefixes map to ``OTHER``."""
    trimmed = label.strip()
    if not trimmed:
        return OTHER, ""

    for category in PRIMARY_CATEGORIES:
        if trimmed == category:
            return category, ""
        prefix = f"{category} - "
        if trimmed.startswith(prefix):
            return category, trimmed[len(prefix):].strip()

    return OTHER, trimmed


def build_planned_block_label(primary: str, details: str) -> str:
    trimmed = details.strip()
    if primary == OTHER:
        return trimmed
    if not trimmed:
        return primary
    return f"{primary} - {trimmed}"


def hhmm_to_minutes(value: str) -> Optional[int]:
    match = _HHMM.match(value)
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes
