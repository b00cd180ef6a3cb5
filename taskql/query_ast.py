"""Query AST: filter nodes, sort/group specs and the full QueryAST.

Filter nodes form a tagged union on ``kind``. Leaves carry
``(type, operator, value, negate)``; AND/OR own ``left`` and ``right``;
NOT owns exactly one ``inner``. Nodes are frozen, so two structurally
identical trees compare equal and serialize identically.
"""

from __future__ import annotations

import datetime as dt
import hashlib
import json
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


_NODE_CONFIG = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Leaf vocabulary
# ---------------------------------------------------------------------------

class FilterType(str, Enum):
    """Field category of a leaf filter."""
    STATUS = "status"
    DATE = "date"
    PRIORITY = "priority"
    URGENCY = "urgency"
    ESCALATION = "escalation"
    ATTENTION = "attention"
    ATTENTION_LANE = "attention-lane"
    TAG = "tag"
    TAG_REGEX = "tag-regex"
    PATH = "path"
    PATH_REGEX = "path-regex"
    DEPENDENCY = "dependency"
    RECURRENCE = "recurrence"
    DESCRIPTION = "description"
    DESCRIPTION_REGEX = "description-regex"
    HEADING = "heading"
    DONE = "done"


class DateField(str, Enum):
    """Task timestamps addressable from queries."""
    DUE = "due"
    SCHEDULED = "scheduled"
    START = "start"
    CREATED = "created"
    DONE = "done"
    CANCELLED = "cancelled"


ESCALATION_LEVELS = {
    "on-time": 0,
    "ontime": 0,
    "warning": 1,
    "critical": 2,
    "severe": 3,
}

ESCALATION_NAMES = {0: "on-time", 1: "warning", 2: "critical", 3: "severe"}

# Operator words used by priority/escalation/attention comparisons.
COMPARISON_WORDS = {
    "is": "is",
    "above": "above",
    "below": "below",
    "at-least": "at least",
    "at-most": "at most",
}

DATE_OPERATOR_WORDS = {
    "before": "before",
    "after": "after",
    "on": "on",
    "on-or-before": "on or before",
    "on-or-after": "on or after",
}


class RegexSpec(BaseModel):
    """A regex pattern and its flags (subset of i, m, s, u)."""
    model_config = _NODE_CONFIG

    pattern: str
    flags: str = ""

    def to_literal(self) -> str:
        return "/" + self.pattern.replace("/", "\\/") + "/" + self.flags


class DateCondition(BaseModel):
    """Resolved date operand. ``end_date`` is only set for ``between``."""
    model_config = _NODE_CONFIG

    field: DateField
    date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None


LeafValue = Union[DateCondition, RegexSpec, bool, int, float, str, None]


# ---------------------------------------------------------------------------
# Filter nodes
# ---------------------------------------------------------------------------

class LeafNode(BaseModel):
    """Atomic filter on one field category."""
    model_config = _NODE_CONFIG

    kind: Literal["leaf"] = "leaf"
    type: FilterType
    operator: str
    value: LeafValue = None
    negate: bool = False


class AndNode(BaseModel):
    model_config = _NODE_CONFIG

    kind: Literal["and"] = "and"
    left: FilterNode
    right: FilterNode


class OrNode(BaseModel):
    model_config = _NODE_CONFIG

    kind: Literal["or"] = "or"
    left: FilterNode
    right: FilterNode


class NotNode(BaseModel):
    model_config = _NODE_CONFIG

    kind: Literal["not"] = "not"
    inner: FilterNode


FilterNode = Annotated[
    Union[LeafNode, AndNode, OrNode, NotNode],
    Field(discriminator="kind"),
]

AndNode.model_rebuild()
OrNode.model_rebuild()
NotNode.model_rebuild()


# ---------------------------------------------------------------------------
# Sort / group / query
# ---------------------------------------------------------------------------

class SortField(BaseModel):
    model_config = _NODE_CONFIG

    field: str
    reverse: bool = False


class SortSpec(BaseModel):
    """Ordered sort keys. The first entry is the primary key."""
    model_config = _NODE_CONFIG

    fields: tuple[SortField, ...]

    @field_validator("fields")
    @classmethod
    def _non_empty(cls, v: tuple[SortField, ...]) -> tuple[SortField, ...]:
        if not v:
            raise ValueError("sort needs at least one field")
        return v

    @property
    def field(self) -> str:
        return self.fields[0].field

    @property
    def reverse(self) -> bool:
        return self.fields[0].reverse


class GroupSpec(BaseModel):
    model_config = _NODE_CONFIG

    field: str


class QueryAST(BaseModel):
    """A parsed query. Top-level filters are implicitly AND-combined."""
    model_config = ConfigDict(extra="forbid")

    filters: list[FilterNode] = Field(default_factory=list)
    sort: Optional[SortSpec] = None
    group: Optional[GroupSpec] = None
    limit: Optional[int] = None
    explain: bool = False
    ignore_global: bool = False
    profile: Optional[str] = None


# ---------------------------------------------------------------------------
# Canonical serialization
# ---------------------------------------------------------------------------

def _quote(text: str) -> str:
    if '"' in text:
        return f"'{text}'"
    return f'"{text}"'


def _number(value: float | int) -> str:
    return format(value, "g")


def leaf_to_text(node: LeafNode) -> str:
    """Render a leaf back into query syntax that parses to the same leaf."""
    t, op, value = node.type, node.operator, node.value

    if t == FilterType.DONE:
        return "not done" if node.negate else "done"

    if t == FilterType.STATUS:
        if op == "type-is":
            return f"status.type is {value}"
        if op == "name-includes":
            return f"status.name includes {_quote(value)}"
        return f"status.symbol is {_quote(value)}"

    if t == FilterType.DATE:
        field = value.field.value
        if op == "has":
            return f"has {field} date"
        if op == "no":
            return f"no {field} date"
        if op == "between":
            return f"{field} between {value.date.isoformat()} and {value.end_date.isoformat()}"
        return f"{field} {DATE_OPERATOR_WORDS[op]} {value.date.isoformat()}"

    if t == FilterType.PRIORITY:
        return f"priority {COMPARISON_WORDS[op]} {value}"
    if t == FilterType.URGENCY:
        return f"urgency {op} {_number(value)}"
    if t == FilterType.ESCALATION:
        return f"escalation {COMPARISON_WORDS[op]} {ESCALATION_NAMES[value]}"
    if t == FilterType.ATTENTION:
        return f"attention {COMPARISON_WORDS[op]} {_number(value)}"
    if t == FilterType.ATTENTION_LANE:
        return f"lane is {value}"

    if t == FilterType.TAG:
        if op == "has":
            return "no tags" if node.negate else "has tags"
        verb = "does not include" if node.negate else "includes"
        return f"tag {verb} {_quote(value)}"

    if t in (FilterType.PATH, FilterType.DESCRIPTION, FilterType.HEADING):
        verb = "does not include" if node.negate else "includes"
        return f"{t.value} {verb} {_quote(value)}"

    if t in (FilterType.TAG_REGEX, FilterType.PATH_REGEX, FilterType.DESCRIPTION_REGEX):
        field = t.value.split("-")[0]
        prefix = "not " if node.negate else ""
        return f"{prefix}{field} regex {value.to_literal()}"

    if t == FilterType.DEPENDENCY:
        return f"is {'not ' if node.negate else ''}{op}"
    if t == FilterType.RECURRENCE:
        return f"is {'not ' if node.negate else ''}recurring"

    raise ValueError(f"Cannot serialize filter type {t}")


def node_to_text(node: FilterNode) -> str:
    """Render a filter tree with explicit parentheses around every child."""
    if isinstance(node, LeafNode):
        return leaf_to_text(node)
    if isinstance(node, AndNode):
        return f"({node_to_text(node.left)}) AND ({node_to_text(node.right)})"
    if isinstance(node, OrNode):
        return f"({node_to_text(node.left)}) OR ({node_to_text(node.right)})"
    return f"NOT ({node_to_text(node.inner)})"


def to_query_string(ast: QueryAST, include_directives: bool = True) -> str:
    """Rebuild a query string from an AST, one instruction per line.

    With ``include_directives=False`` the ignore-global, profile and explain
    lines are left out, leaving only what selects and orders tasks.
    """
    lines: list[str] = []
    if include_directives:
        if ast.ignore_global:
            lines.append("ignore global query")
        if ast.profile:
            lines.append(f"@profile {ast.profile}")
    lines.extend(node_to_text(f) for f in ast.filters)
    if ast.sort:
        keys = ", ".join(
            f"{s.field} reverse" if s.reverse else s.field for s in ast.sort.fields
        )
        lines.append(f"sort by {keys}")
    if ast.group:
        lines.append(f"group by {ast.group.field}")
    if ast.limit is not None:
        lines.append(f"limit {ast.limit}")
    if include_directives and ast.explain:
        lines.append("explain")
    return "\n".join(lines)


def canonical_json(ast: QueryAST) -> str:
    """Deterministic JSON of the parts that decide a query's result."""
    payload = ast.model_dump(mode="json", include={"filters", "sort", "group", "limit"})
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]
