"""Multi-field stable sort for query results.

Keys are compared in declared order; a later key only breaks ties left by
the earlier ones. ``reverse`` flips its own key and nothing else. Tasks
missing a date always sort after tasks that have one, in either direction.
"""

from __future__ import annotations

from functools import cmp_to_key
from typing import Callable, Sequence

from taskql.errors import QueryExecutionError
from taskql.models import PRIORITY_RANK, StatusType, Task
from taskql.predicates import EvaluationContext
from taskql.query_ast import SortField, SortSpec

DATE_SORT_FIELDS = ("due", "scheduled", "start", "created", "done", "cancelled")
TEXT_SORT_FIELDS = ("name", "description", "heading", "path")

STATUS_WEIGHTS = {
    StatusType.TODO: 0,
    StatusType.IN_PROGRESS: 1,
    StatusType.DONE: 2,
    StatusType.CANCELLED: 3,
    StatusType.NON_TASK: 4,
}

Comparator = Callable[[Task, Task], int]


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def _date_comparator(field: str, reverse: bool) -> Comparator:
    def compare(a: Task, b: Task) -> int:
        da, db = a.date_for(field), b.date_for(field)
        if da is None and db is None:
            return 0
        if da is None:
            return 1
        if db is None:
            return -1
        result = _sign((da - db).total_seconds())
        return -result if reverse else result
    return compare


def _text_comparator(field: str, reverse: bool) -> Comparator:
    def compare(a: Task, b: Task) -> int:
        ta, tb = getattr(a, field) or "", getattr(b, field) or ""
        result = (ta > tb) - (ta < tb)
        return -result if reverse else result
    return compare


def _keyed_comparator(key: Callable[[Task], float], reverse: bool) -> Comparator:
    def compare(a: Task, b: Task) -> int:
        result = _sign(key(a) - key(b))
        return -result if reverse else result
    return compare


def field_comparator(sort_field: SortField, context: EvaluationContext) -> Comparator:
    """Comparator for one sort key. Raises QueryExecutionError for unknown fields."""
    field, reverse = sort_field.field, sort_field.reverse

    if field in DATE_SORT_FIELDS:
        return _date_comparator(field, reverse)
    if field in TEXT_SORT_FIELDS:
        return _text_comparator(field, reverse)
    if field == "priority":
        return _keyed_comparator(lambda t: PRIORITY_RANK[t.priority], reverse)
    if field == "status.type":
        return _keyed_comparator(lambda t: STATUS_WEIGHTS[t.status_info.type], reverse)
    if field == "urgency":
        # Higher urgency first; scores are computed once per task for the pass.
        scores: dict[str, float] = {}

        def urgency(task: Task) -> float:
            if task.id not in scores:
                scores[task.id] = context.urgency(task)
            return -scores[task.id]

        return _keyed_comparator(urgency, reverse)

    raise QueryExecutionError(f"Unknown sort field: {field}")


def sort_tasks(tasks: Sequence[Task], spec: SortSpec, context: EvaluationContext | None = None) -> list[Task]:
    """Return a new list sorted by every key in ``spec``."""
    ctx = context or EvaluationContext()
    comparators = [field_comparator(f, ctx) for f in spec.fields]

    def compare(a: Task, b: Task) -> int:
        for comparator in comparators:
            result = comparator(a, b)
            if result:
                return result
        return 0

    return sorted(tasks, key=cmp_to_key(compare))
