"""Data models: task records, status registry, and tool inputs.

Tasks are read-only to the query engine. Tool inputs use Pydantic models so
bad input is rejected before it reaches the parser.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from taskql.dates import parse_timestamp


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ResponseFormat(str, Enum):
    """Output format for tool responses."""
    MARKDOWN = "markdown"
    JSON = "json"


class Priority(str, Enum):
    """Six-level ordinal task priority."""
    LOWEST = "lowest"
    LOW = "low"
    NORMAL = "normal"
    MEDIUM = "medium"
    HIGH = "high"
    HIGHEST = "highest"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]


PRIORITY_RANK = {
    Priority.LOWEST: 0,
    Priority.LOW: 1,
    Priority.NORMAL: 2,
    Priority.MEDIUM: 3,
    Priority.HIGH: 4,
    Priority.HIGHEST: 5,
}

PRIORITY_ALIASES = {
    "urgent": Priority.HIGHEST,
    "none": Priority.NORMAL,
}


def parse_priority(value: Any) -> Priority | None:
    """Map a priority word (or alias) to a Priority. None if unknown."""
    if isinstance(value, Priority):
        return value
    if not isinstance(value, str):
        return None
    word = value.strip().lower()
    if word in PRIORITY_ALIASES:
        return PRIORITY_ALIASES[word]
    try:
        return Priority(word)
    except ValueError:
        return None


class StatusType(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    CANCELLED = "CANCELLED"
    NON_TASK = "NON_TASK"


class AttentionLane(str, Enum):
    """Lanes assigned by the external attention scorer."""
    DO_NOW = "DO_NOW"
    UNBLOCK_FIRST = "UNBLOCK_FIRST"
    BLOCKED = "BLOCKED"
    WATCHLIST = "WATCHLIST"


# ---------------------------------------------------------------------------
# Status registry
# ---------------------------------------------------------------------------

class StatusInfo(NamedTuple):
    symbol: str
    type: StatusType
    name: str


STATUS_REGISTRY: dict[str, StatusInfo] = {
    " ": StatusInfo(" ", StatusType.TODO, "Todo"),
    "/": StatusInfo("/", StatusType.IN_PROGRESS, "In Progress"),
    "x": StatusInfo("x", StatusType.DONE, "Done"),
    "X": StatusInfo("X", StatusType.DONE, "Done"),
    "-": StatusInfo("-", StatusType.CANCELLED, "Cancelled"),
}


def lookup_status(symbol: str | None) -> StatusInfo:
    """Resolve a checkbox symbol. Unknown symbols are treated as TODO."""
    symbol = symbol or " "
    info = STATUS_REGISTRY.get(symbol)
    if info is None:
        return StatusInfo(symbol, StatusType.TODO, "Unknown")
    return info


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

_TIMESTAMP_FIELDS = (
    "due_at",
    "scheduled_at",
    "start_at",
    "created_at",
    "updated_at",
    "done_at",
    "cancelled_at",
)


class Task(BaseModel):
    """A task record as seen by the query engine."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    name: str = ""
    description: Optional[str] = None
    heading: Optional[str] = None
    path: Optional[str] = None

    due_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    start_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    done_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    priority: Priority = Priority.NORMAL
    tags: list[str] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list)
    blocked_by: list[str] = Field(default_factory=list)
    recurrence: Union[dict, str, None] = None
    status_symbol: str = " "
    status: Optional[str] = None

    @field_validator(*_TIMESTAMP_FIELDS, mode="before")
    @classmethod
    def _parse_timestamps(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)

    @field_validator("priority", mode="before")
    @classmethod
    def _parse_priority(cls, v: Any) -> Priority:
        return parse_priority(v) or Priority.NORMAL

    @field_validator("tags", mode="before")
    @classmethod
    def _strip_hashes(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [t.lstrip("#") if isinstance(t, str) else t for t in v]
        return v

    @property
    def status_info(self) -> StatusInfo:
        return lookup_status(self.status_symbol)

    @property
    def is_done(self) -> bool:
        if self.status:
            return self.status == "done"
        return self.status_info.type == StatusType.DONE

    @property
    def is_recurring(self) -> bool:
        if not self.recurrence:
            return False
        if isinstance(self.recurrence, dict):
            return self.recurrence.get("type") != "once"
        return self.recurrence.strip().lower() != "once"

    @property
    def last_modified(self) -> datetime | None:
        return self.updated_at or self.created_at

    def date_for(self, field: str) -> datetime | None:
        """Timestamp for a query date field name ('due', 'scheduled', ...)."""
        return getattr(self, f"{field}_at", None)


class AttentionProfile(BaseModel):
    """Externally computed attention signal for one task."""
    model_config = ConfigDict(frozen=True)

    score: float = 0.0
    lane: AttentionLane = AttentionLane.WATCHLIST


# ---------------------------------------------------------------------------
# Shared model config
# ---------------------------------------------------------------------------

_STRICT_CONFIG = ConfigDict(
    str_strip_whitespace=True,
    validate_assignment=True,
    extra="forbid",
)


# ---------------------------------------------------------------------------
# Tool inputs
# ---------------------------------------------------------------------------

class RunQueryInput(BaseModel):
    """Input for running a task query."""
    model_config = _STRICT_CONFIG

    query: Optional[str] = Field(
        default=None,
        description=(
            "Query text, one instruction per line "
            "(e.g., 'not done\\npriority above normal\\nsort by due')"
        ),
        min_length=1,
        max_length=10_000,
    )
    preset: Optional[str] = Field(
        default=None,
        description="Id of a built-in preset to run instead of query text (e.g., 'overdue', 'today-focus')",
    )
    reference_time: Optional[str] = Field(
        default=None,
        description="ISO timestamp used for relative dates like 'today' (default: now)",
    )
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format: 'markdown' (human-readable) or 'json' (machine-readable)",
    )

    @field_validator("reference_time")
    @classmethod
    def validate_reference_time(cls, v: str | None) -> str | None:
        if v is not None and parse_timestamp(v) is None:
            raise ValueError(f"reference_time must be an ISO timestamp, got: {v}")
        return v

    @model_validator(mode="after")
    def check_query_or_preset(self) -> RunQueryInput:
        if (self.query is None) == (self.preset is None):
            raise ValueError("Provide exactly one of query or preset")
        return self


class ExplainQueryInput(RunQueryInput):
    """Input for explaining which tasks a query matches and why."""

    only_matched: bool = Field(
        default=False,
        description="Only list tasks that matched (default: list every task)",
    )


class ValidateQueryInput(BaseModel):
    """Input for checking query syntax without running it."""
    model_config = _STRICT_CONFIG

    query: str = Field(..., description="Query text to validate", min_length=1, max_length=10_000)


class DiffQueriesInput(BaseModel):
    """Input for comparing what two queries match."""
    model_config = _STRICT_CONFIG

    before_query: str = Field(..., description="Original query text", min_length=1, max_length=10_000)
    after_query: str = Field(..., description="Changed query text", min_length=1, max_length=10_000)
    response_format: ResponseFormat = Field(default=ResponseFormat.MARKDOWN, description="Output format")


class InvalidateCacheInput(BaseModel):
    """Input for dropping cached query results."""
    model_config = _STRICT_CONFIG

    pattern: Optional[str] = Field(
        default=None,
        description="Cache key or 'prefix*' pattern to drop (default: everything)",
    )


class ListPresetsInput(BaseModel):
    """Input for listing the built-in query presets."""
    model_config = _STRICT_CONFIG

    response_format: ResponseFormat = Field(default=ResponseFormat.MARKDOWN, description="Output format")
