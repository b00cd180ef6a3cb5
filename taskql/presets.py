"""Built-in query presets: named, reusable queries.

A preset is just query text with a stable id; running one is the same as
running its query.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class QueryPreset(BaseModel):
    id: str
    name: str
    query: str
    description: Optional[str] = None
    icon: Optional[str] = None
    built_in: bool = Field(default=True)


BUILT_IN_PRESETS: list[QueryPreset] = [
    QueryPreset(
        id="today-focus",
        name="Today's Focus",
        description="Top 10 open tasks due today or earlier, most urgent first",
        query="not done\ndue on or before today\nsort by urgency\nlimit 10",
        icon="🎯",
    ),
    QueryPreset(
        id="this-week",
        name="This Week",
        description="Open tasks due in the next 7 days, grouped by priority",
        query="not done\ndue after today\ndue before in 7 days\nsort by due\ngroup by priority",
        icon="📅",
    ),
    QueryPreset(
        id="overdue",
        name="Overdue",
        description="Open tasks past their due date, most urgent first",
        query="not done\ndue before today\nsort by urgency",
        icon="⚠️",
    ),
    QueryPreset(
        id="waiting-on-others",
        name="Waiting on Others",
        description="Open tasks blocked by an unfinished dependency",
        query="not done\nis blocked\nsort by due",
        icon="⏳",
    ),
    QueryPreset(
        id="high-priority",
        name="High Priority",
        description="Open tasks at high or highest priority",
        query="not done\npriority at least high\nsort by urgency",
        icon="🔴",
    ),
    QueryPreset(
        id="upcoming",
        name="Upcoming",
        description="Open tasks due in the next 30 days",
        query="not done\ndue after today\ndue before in 30 days\nsort by due",
        icon="📆",
    ),
    QueryPreset(
        id="no-due-date",
        name="No Due Date",
        description="Open tasks without a due date",
        query="not done\nno due date\nsort by priority reverse",
        icon="📝",
    ),
]

_BY_ID = {p.id: p for p in BUILT_IN_PRESETS}


def list_presets() -> list[QueryPreset]:
    return list(BUILT_IN_PRESETS)


def get_preset(preset_id: str) -> QueryPreset:
    """Look up a preset by id (case-insensitive).

    Raises:
        ValueError: if no preset has that id.
    """
    preset = _BY_ID.get(preset_id.strip().lower())
    if preset is None:
        raise ValueError(
            f"Unknown preset '{preset_id}'. Available: {', '.join(_BY_ID)}"
        )
    return preset
