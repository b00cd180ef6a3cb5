"""Predicates: executable filters built from FilterNodes.

``build_predicate`` dispatches on the leaf type. Every predicate answers
``matches(task)`` and can describe itself (``explain``) and a verdict for one
task (``explain_match`` / ``explain_mismatch``).

Soft failures never raise: a missing date, a missing attention profile, an
absent dependency graph or a regex that fails to compile all make the
predicate false.
"""

from __future__ import annotations

import logging
import operator as op
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Protocol

from taskql import regex_matcher
from taskql.dates import format_date, to_day
from taskql.errors import QueryExecutionError
from taskql.models import (
    AttentionProfile,
    PRIORITY_RANK,
    Priority,
    StatusType,
    Task,
)
from taskql.query_ast import (
    AndNode,
    COMPARISON_WORDS,
    DATE_OPERATOR_WORDS,
    DateCondition,
    ESCALATION_NAMES,
    FilterNode,
    FilterType,
    LeafNode,
    NotNode,
    OrNode,
    RegexSpec,
)

logger = logging.getLogger(__name__)

UrgencyScorer = Callable[[Task, datetime], float]
EscalationScorer = Callable[[Task, datetime], int]

_COMPARATORS = {
    "is": op.eq,
    "above": op.gt,
    "below": op.lt,
    "at-least": op.ge,
    "at-most": op.le,
}

_DATE_COMPARATORS = {
    "before": op.lt,
    "after": op.gt,
    "on": op.eq,
    "on-or-before": op.le,
    "on-or-after": op.ge,
}


class DependencyGraph(Protocol):
    """Blocking relationships between tasks, supplied by the host."""

    def is_blocked(self, task_id: str) -> bool: ...

    def is_blocking(self, task_id: str) -> bool: ...


class EvaluationContext:
    """External inputs predicates need at evaluation time.

    Scorers and attention profiles are opaque: missing scorers score 0 and a
    task with no attention profile never matches an attention filter.
    """

    def __init__(
        self,
        reference_time: datetime | None = None,
        dependency_graph: DependencyGraph | None = None,
        urgency_scorer: UrgencyScorer | None = None,
        escalation_scorer: EscalationScorer | None = None,
        attention_profiles: Mapping[str, AttentionProfile] | None = None,
    ) -> None:
        self.reference_time = reference_time or datetime.now(timezone.utc)
        self.dependency_graph = dependency_graph
        self.urgency_scorer = urgency_scorer
        self.escalation_scorer = escalation_scorer
        self.attention_profiles = attention_profiles or {}

    def urgency(self, task: Task) -> float:
        if self.urgency_scorer is None:
            return 0.0
        return float(self.urgency_scorer(task, self.reference_time))

    def escalation(self, task: Task) -> int:
        if self.escalation_scorer is None:
            return 0
        return int(self.escalation_scorer(task, self.reference_time))

    def attention(self, task: Task) -> AttentionProfile | None:
        return self.attention_profiles.get(task.id)


# ---------------------------------------------------------------------------
# Base classes
# ---------------------------------------------------------------------------

class Predicate(ABC):
    """A compiled filter."""

    @abstractmethod
    def matches(self, task: Task) -> bool:
        ...

    @abstractmethod
    def explain(self) -> str:
        """Human-readable description of the condition."""

    def explain_match(self, task: Task) -> str:
        return f'Task "{task.name}" matches: {self.explain()}'

    def explain_mismatch(self, task: Task) -> str:
        return f'Task "{task.name}" does not match: {self.explain()}'

    def reason(self, task: Task) -> tuple[bool, str]:
        """Evaluate and explain in one call."""
        if self.matches(task):
            return True, self.explain_match(task)
        return False, self.explain_mismatch(task)


class LeafPredicate(Predicate):
    """Leaf predicates describe the task's actual value in their verdicts."""

    negate = False

    @abstractmethod
    def actual(self, task: Task) -> str:
        """What the task has for the filtered field, e.g. 'has priority high'."""

    def explain_match(self, task: Task) -> str:
        return f'Task "{task.name}" {self.actual(task)}, which satisfies "{self.explain()}"'

    def explain_mismatch(self, task: Task) -> str:
        return f'Task "{task.name}" {self.actual(task)}, which does not satisfy "{self.explain()}"'


# ---------------------------------------------------------------------------
# Boolean combinators
# ---------------------------------------------------------------------------

class AndPredicate(Predicate):
    def __init__(self, left: Predicate, right: Predicate) -> None:
        self.left = left
        self.right = right

    def matches(self, task: Task) -> bool:
        return self.left.matches(task) and self.right.matches(task)

    def explain(self) -> str:
        return f"({self.left.explain()}) AND ({self.right.explain()})"

    def explain_match(self, task: Task) -> str:
        return (
            f'Task "{task.name}" matches both: '
            f"({self.left.explain_match(task)}) AND ({self.right.explain_match(task)})"
        )

    def explain_mismatch(self, task: Task) -> str:
        left = self.left.matches(task)
        right = self.right.matches(task)
        if not left and not right:
            return (
                f'Task "{task.name}" matches NEITHER: '
                f"({self.left.explain_mismatch(task)}) NOR ({self.right.explain_mismatch(task)})"
            )
        if not left:
            return f'Task "{task.name}" fails first condition: {self.left.explain_mismatch(task)}'
        return f'Task "{task.name}" fails second condition: {self.right.explain_mismatch(task)}'


class OrPredicate(Predicate):
    def __init__(self, left: Predicate, right: Predicate) -> None:
        self.left = left
        self.right = right

    def matches(self, task: Task) -> bool:
        return self.left.matches(task) or self.right.matches(task)

    def explain(self) -> str:
        return f"({self.left.explain()}) OR ({self.right.explain()})"

    def explain_match(self, task: Task) -> str:
        left = self.left.matches(task)
        right = self.right.matches(task)
        if left and right:
            return (
                f'Task "{task.name}" matches BOTH: '
                f"({self.left.explain_match(task)}) AND ({self.right.explain_match(task)})"
            )
        if left:
            return f'Task "{task.name}" matches first condition: {self.left.explain_match(task)}'
        return f'Task "{task.name}" matches second condition: {self.right.explain_match(task)}'

    def explain_mismatch(self, task: Task) -> str:
        return (
            f'Task "{task.name}" matches neither: '
            f"({self.left.explain_mismatch(task)}) NOR ({self.right.explain_mismatch(task)})"
        )


class NotPredicate(Predicate):
    def __init__(self, inner: Predicate) -> None:
        self.inner = inner

    def matches(self, task: Task) -> bool:
        return not self.inner.matches(task)

    def explain(self) -> str:
        return f"NOT ({self.inner.explain()})"

    def explain_match(self, task: Task) -> str:
        return f'Task "{task.name}" matches NOT because: {self.inner.explain_mismatch(task)}'

    def explain_mismatch(self, task: Task) -> str:
        return f'Task "{task.name}" fails NOT because: {self.inner.explain_match(task)}'


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------

class DonePredicate(LeafPredicate):
    def __init__(self, negate: bool = False) -> None:
        self.negate = negate

    def matches(self, task: Task) -> bool:
        return task.is_done != self.negate

    def explain(self) -> str:
        return "not done" if self.negate else "done"

    def actual(self, task: Task) -> str:
        if task.status:
            return f"has status {task.status}"
        return f"has status {task.status_info.type.value}"


class StatusTypePredicate(LeafPredicate):
    def __init__(self, status_type: StatusType, negate: bool = False) -> None:
        self.status_type = StatusType(status_type)
        self.negate = negate

    def matches(self, task: Task) -> bool:
        return (task.status_info.type == self.status_type) != self.negate

    def explain(self) -> str:
        verb = "is NOT" if self.negate else "is"
        return f"status type {verb} {self.status_type.value}"

    def actual(self, task: Task) -> str:
        return f"has status type {task.status_info.type.value}"


class StatusNamePredicate(LeafPredicate):
    def __init__(self, name: str, negate: bool = False) -> None:
        self.name = name
        self.negate = negate

    def matches(self, task: Task) -> bool:
        return (self.name.lower() in task.status_info.name.lower()) != self.negate

    def explain(self) -> str:
        verb = "does NOT contain" if self.negate else "contains"
        return f'status name {verb} "{self.name}"'

    def actual(self, task: Task) -> str:
        return f'has status name "{task.status_info.name}"'


class StatusSymbolPredicate(LeafPredicate):
    def __init__(self, symbol: str, negate: bool = False) -> None:
        self.symbol = symbol
        self.negate = negate

    def matches(self, task: Task) -> bool:
        return ((task.status_symbol or " ") == self.symbol) != self.negate

    def explain(self) -> str:
        verb = "is NOT" if self.negate else "is"
        return f"status symbol {verb} '{self.symbol}'"

    def actual(self, task: Task) -> str:
        return f"has status symbol '{task.status_symbol or ' '}'"


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

class DatePredicate(LeafPredicate):
    """Compares a task date against a condition, by calendar day."""

    def __init__(self, operator: str, condition: DateCondition, negate: bool = False) -> None:
        if operator not in _DATE_COMPARATORS and operator not in ("has", "no", "between"):
            raise QueryExecutionError(f"Unknown date operator: {operator}")
        self.operator = operator
        self.condition = condition
        self.field = condition.field.value
        self.negate = negate

    def _test(self, task: Task) -> bool:
        value = task.date_for(self.field)
        if self.operator == "has":
            return value is not None
        if self.operator == "no":
            return value is None
        if value is None:
            return False
        day = to_day(value)
        if self.operator == "between":
            return self.condition.date <= day <= self.condition.end_date
        return _DATE_COMPARATORS[self.operator](day, self.condition.date)

    def matches(self, task: Task) -> bool:
        return self._test(task) != self.negate

    def explain(self) -> str:
        if self.operator == "has":
            text = f"has {self.field} date"
        elif self.operator == "no":
            text = f"no {self.field} date"
        elif self.operator == "between":
            text = (
                f"{self.field} between {format_date(self.condition.date)} "
                f"and {format_date(self.condition.end_date)}"
            )
        else:
            text = f"{self.field} {DATE_OPERATOR_WORDS[self.operator]} {format_date(self.condition.date)}"
        return f"NOT ({text})" if self.negate else text

    def actual(self, task: Task) -> str:
        value = task.date_for(self.field)
        if value is None:
            return f"has no {self.field} date"
        return f"has {self.field} date {format_date(value)}"


# ---------------------------------------------------------------------------
# Priority and scores
# ---------------------------------------------------------------------------

def _comparator(kind: str, operator: str) -> Callable:
    if operator not in _COMPARATORS:
        raise QueryExecutionError(f"Unknown {kind} operator: {operator}")
    return _COMPARATORS[operator]


class PriorityPredicate(LeafPredicate):
    def __init__(self, operator: str, level: Priority | str, negate: bool = False) -> None:
        self.operator = operator
        self._compare = _comparator("priority", operator)
        self.level = Priority(level)
        self.negate = negate

    def matches(self, task: Task) -> bool:
        return self._compare(PRIORITY_RANK[task.priority], PRIORITY_RANK[self.level]) != self.negate

    def explain(self) -> str:
        return f"priority {COMPARISON_WORDS[self.operator]} {self.level.value}"

    def actual(self, task: Task) -> str:
        return f"has priority {task.priority.value}"


class UrgencyPredicate(LeafPredicate):
    def __init__(self, operator: str, threshold: float, context: EvaluationContext) -> None:
        self.operator = operator
        self._compare = _comparator("urgency", operator)
        self.threshold = float(threshold)
        self.context = context

    def matches(self, task: Task) -> bool:
        return self._compare(self.context.urgency(task), self.threshold)

    def explain(self) -> str:
        return f"urgency {self.operator} {self.threshold:g}"

    def actual(self, task: Task) -> str:
        return f"has urgency {self.context.urgency(task):.2f}"


class EscalationPredicate(LeafPredicate):
    def __init__(self, operator: str, level: int, context: EvaluationContext) -> None:
        self.operator = operator
        self._compare = _comparator("escalation", operator)
        self.level = int(level)
        self.context = context

    def matches(self, task: Task) -> bool:
        return self._compare(self.context.escalation(task), self.level)

    def explain(self) -> str:
        return f"escalation {COMPARISON_WORDS[self.operator]} {ESCALATION_NAMES.get(self.level, self.level)}"

    def actual(self, task: Task) -> str:
        level = self.context.escalation(task)
        return f"has escalation {ESCALATION_NAMES.get(level, level)}"


class AttentionPredicate(LeafPredicate):
    def __init__(self, operator: str, score: float, context: EvaluationContext) -> None:
        self.operator = operator
        self._compare = _comparator("attention", operator)
        self.score = score
        self.context = context

    def matches(self, task: Task) -> bool:
        profile = self.context.attention(task)
        if profile is None:
            return False
        return self._compare(profile.score, self.score)

    def explain(self) -> str:
        return f"attention {COMPARISON_WORDS[self.operator]} {self.score:g}"

    def actual(self, task: Task) -> str:
        profile = self.context.attention(task)
        if profile is None:
            return "has no attention profile"
        return f"has attention score {profile.score:g}"


class AttentionLanePredicate(LeafPredicate):
    def __init__(self, lane: str, context: EvaluationContext) -> None:
        self.lane = lane
        self.context = context

    def matches(self, task: Task) -> bool:
        profile = self.context.attention(task)
        if profile is None:
            return False
        return profile.lane.value == self.lane

    def explain(self) -> str:
        return f"lane is {self.lane}"

    def actual(self, task: Task) -> str:
        profile = self.context.attention(task)
        if profile is None:
            return "has no attention profile"
        return f"is in lane {profile.lane.value}"


# ---------------------------------------------------------------------------
# Tags, paths and text
# ---------------------------------------------------------------------------

class TagPredicate(LeafPredicate):
    """``includes`` is a case-insensitive substring test against each tag."""

    def __init__(self, operator: str, value: Optional[str] = None, negate: bool = False) -> None:
        if operator not in ("includes", "has"):
            raise QueryExecutionError(f"Unknown tag operator: {operator}")
        self.operator = operator
        self.value = (value or "").lstrip("#")
        self.negate = negate

    def matches(self, task: Task) -> bool:
        if self.operator == "has":
            return bool(task.tags) != self.negate
        needle = self.value.lower()
        found = any(needle in tag.lower() for tag in task.tags)
        return found != self.negate

    def explain(self) -> str:
        if self.operator == "has":
            return "no tags" if self.negate else "has tags"
        verb = "does not include" if self.negate else "includes"
        return f'tag {verb} "{self.value}"'

    def actual(self, task: Task) -> str:
        if not task.tags:
            return "has no tags"
        return "has tags " + ", ".join(f"#{t}" for t in task.tags)


class TextPredicate(LeafPredicate):
    """Case-insensitive substring test on path, heading or description."""

    def __init__(self, field: FilterType, operator: str, value: str, negate: bool = False) -> None:
        if operator != "includes":
            raise QueryExecutionError(f"Unknown {field.value} operator: {operator}")
        self.field = field
        self.value = value
        self.negate = negate

    def text_of(self, task: Task) -> str:
        if self.field == FilterType.DESCRIPTION:
            return f"{task.name} {task.description or ''}".strip()
        if self.field == FilterType.HEADING:
            return task.heading or ""
        return task.path or ""

    def matches(self, task: Task) -> bool:
        return (self.value.lower() in self.text_of(task).lower()) != self.negate

    def explain(self) -> str:
        verb = "does not include" if self.negate else "includes"
        return f'{self.field.value} {verb} "{self.value}"'

    def actual(self, task: Task) -> str:
        text = self.text_of(task)
        if not text:
            return f"has no {self.field.value}"
        if len(text) > 80:
            text = text[:77] + "..."
        return f'has {self.field.value} "{text}"'


class RegexPredicate(LeafPredicate):
    """Regex search on tags (any tag), path or name + description."""

    def __init__(self, field: FilterType, spec: RegexSpec, negate: bool = False) -> None:
        self.field = field
        self.spec = spec
        self.negate = negate
        try:
            self._compiled = regex_matcher.compile_regex(spec)
        except ValueError as e:
            logger.warning(f"Regex {spec.to_literal()} failed to compile, filter will match nothing: {e}")
            self._compiled = None

    @property
    def label(self) -> str:
        return self.field.value.split("-")[0]

    def values_of(self, task: Task) -> list[str]:
        if self.field == FilterType.TAG_REGEX:
            return list(task.tags)
        if self.field == FilterType.PATH_REGEX:
            return [task.path or ""]
        return [f"{task.name} {task.description or ''}".strip()]

    def matches(self, task: Task) -> bool:
        if self._compiled is None:
            return False
        found = any(regex_matcher.safe_search(self._compiled, v) for v in self.values_of(task))
        return found != self.negate

    def explain(self) -> str:
        prefix = "not " if self.negate else ""
        return f"{prefix}{self.label} regex {self.spec.to_literal()}"

    def actual(self, task: Task) -> str:
        if self._compiled is None:
            return "cannot be tested (invalid regex)"
        values = [v for v in self.values_of(task) if v]
        if not values:
            return f"has no {self.label}"
        return f"has {self.label} " + ", ".join(f'"{v[:60]}"' for v in values)


# ---------------------------------------------------------------------------
# Dependencies and recurrence
# ---------------------------------------------------------------------------

class DependencyPredicate(LeafPredicate):
    """Needs a dependency graph; without one it never matches."""

    def __init__(self, operator: str, graph: DependencyGraph | None, negate: bool = False) -> None:
        if operator not in ("blocked", "blocking"):
            raise QueryExecutionError(f"Unknown dependency operator: {operator}")
        self.operator = operator
        self.graph = graph
        self.negate = negate

    def _state(self, task: Task) -> bool:
        if self.operator == "blocked":
            return self.graph.is_blocked(task.id)
        return self.graph.is_blocking(task.id)

    def matches(self, task: Task) -> bool:
        if self.graph is None:
            return False
        return self._state(task) != self.negate

    def explain(self) -> str:
        return f"is {'not ' if self.negate else ''}{self.operator}"

    def actual(self, task: Task) -> str:
        if self.graph is None:
            return "cannot be checked (no dependency graph available)"
        return f"is {'' if self._state(task) else 'not '}{self.operator}"


class RecurrencePredicate(LeafPredicate):
    def __init__(self, negate: bool = False) -> None:
        self.negate = negate

    def matches(self, task: Task) -> bool:
        return task.is_recurring != self.negate

    def explain(self) -> str:
        return "is not recurring" if self.negate else "is recurring"

    def actual(self, task: Task) -> str:
        return "is recurring" if task.is_recurring else "is not recurring"


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def _build_leaf(node: LeafNode, ctx: EvaluationContext) -> Predicate:
    t, operator, value, negate = node.type, node.operator, node.value, node.negate

    if t == FilterType.DONE:
        return DonePredicate(negate)
    if t == FilterType.STATUS:
        if operator == "type-is":
            return StatusTypePredicate(value, negate)
        if operator == "name-includes":
            return StatusNamePredicate(value, negate)
        if operator == "symbol-is":
            return StatusSymbolPredicate(value, negate)
        raise QueryExecutionError(f"Unknown status operator: {operator}")
    if t == FilterType.DATE:
        return DatePredicate(operator, value, negate)
    if t == FilterType.PRIORITY:
        return PriorityPredicate(operator, value, negate)
    if t == FilterType.URGENCY:
        return UrgencyPredicate(operator, value, ctx)
    if t == FilterType.ESCALATION:
        return EscalationPredicate(operator, value, ctx)
    if t == FilterType.ATTENTION:
        return AttentionPredicate(operator, value, ctx)
    if t == FilterType.ATTENTION_LANE:
        return AttentionLanePredicate(value, ctx)
    if t == FilterType.TAG:
        return TagPredicate(operator, value, negate)
    if t in (FilterType.PATH, FilterType.DESCRIPTION, FilterType.HEADING):
        return TextPredicate(t, operator, value, negate)
    if t in (FilterType.TAG_REGEX, FilterType.PATH_REGEX, FilterType.DESCRIPTION_REGEX):
        if operator != "regex":
            raise QueryExecutionError(f"Unknown regex operator: {operator}")
        return RegexPredicate(t, value, negate)
    if t == FilterType.DEPENDENCY:
        return DependencyPredicate(operator, ctx.dependency_graph, negate)
    if t == FilterType.RECURRENCE:
        return RecurrencePredicate(negate)
    raise QueryExecutionError(f"Unknown filter type: {t}")


def build_predicate(node: FilterNode, context: EvaluationContext | None = None) -> Predicate:
    """Turn a FilterNode tree into an executable Predicate.

    Raises:
        QueryExecutionError: for filter types or operators this factory does
            not know.
    """
    ctx = context or EvaluationContext()
    if isinstance(node, AndNode):
        return AndPredicate(build_predicate(node.left, ctx), build_predicate(node.right, ctx))
    if isinstance(node, OrNode):
        return OrPredicate(build_predicate(node.left, ctx), build_predicate(node.right, ctx))
    if isinstance(node, NotNode):
        return NotPredicate(build_predicate(node.inner, ctx))
    if isinstance(node, LeafNode):
        return _build_leaf(node, ctx)
    raise QueryExecutionError(f"Unknown filter node: {type(node).__name__}")


def build_predicates(nodes: list[FilterNode], context: EvaluationContext | None = None) -> list[Predicate]:
    ctx = context or EvaluationContext()
    return [build_predicate(node, ctx) for node in nodes]
