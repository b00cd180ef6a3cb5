"""Per-task explanations of why a query did or did not match.

Every top-level predicate is evaluated against every task in the collection,
not just the result set. A task matches when all top-level predicates match.
"""

from __future__ import annotations

from typing import Optional, Sequence

from pydantic import BaseModel, Field

from taskql.models import Task
from taskql.predicates import Predicate
from taskql.query_ast import QueryAST, node_to_text, to_query_string


class FilterExplanation(BaseModel):
    filter_name: str
    filter_description: str
    matched: bool
    reason: str


class TaskExplanation(BaseModel):
    task: Task
    filter_explanations: list[FilterExplanation] = Field(default_factory=list)
    matched: bool
    mismatch_reasons: list[str] = Field(default_factory=list)


class Explanation(BaseModel):
    query_string: str
    task_explanations: list[TaskExplanation] = Field(default_factory=list)
    match_count: int = 0
    total_count: int = 0
    global_filter_applied: bool = False
    execution_time_ms: Optional[float] = None

    def for_task(self, task_id: str) -> TaskExplanation | None:
        for te in self.task_explanations:
            if te.task.id == task_id:
                return te
        return None


def explain_task(task: Task, predicates: Sequence[Predicate], names: Sequence[str]) -> TaskExplanation:
    """Evaluate each predicate on one task. Composite verdicts are derived."""
    explanations = []
    mismatches = []
    for predicate, name in zip(predicates, names):
        matched, reason = predicate.reason(task)
        explanations.append(FilterExplanation(
            filter_name=name,
            filter_description=predicate.explain(),
            matched=matched,
            reason=reason,
        ))
        if not matched:
            mismatches.append(reason)
    return TaskExplanation(
        task=task,
        filter_explanations=explanations,
        matched=not mismatches,
        mismatch_reasons=mismatches,
    )


def explain_query(
    ast: QueryAST,
    all_tasks: Sequence[Task],
    predicates: Sequence[Predicate],
    names: Sequence[str] | None = None,
    global_filter_applied: bool = False,
    execution_time_ms: float | None = None,
) -> Explanation:
    """Build an explanation covering every task in ``all_tasks``.

    ``names`` labels each predicate in the output; it defaults to the
    predicate's own description.
    """
    if names is None:
        names = [p.explain() for p in predicates]
    task_explanations = [explain_task(t, predicates, names) for t in all_tasks]
    return Explanation(
        query_string=to_query_string(ast, include_directives=False),
        task_explanations=task_explanations,
        match_count=sum(1 for te in task_explanations if te.matched),
        total_count=len(all_tasks),
        global_filter_applied=global_filter_applied,
        execution_time_ms=execution_time_ms,
    )


def explain_matches(explanation: Explanation) -> list[TaskExplanation]:
    return [te for te in explanation.task_explanations if te.matched]


def explain_mismatches(explanation: Explanation) -> list[TaskExplanation]:
    return [te for te in explanation.task_explanations if not te.matched]


def describe_query(ast: QueryAST) -> str:
    """Short Markdown summary of what a query does."""
    parts = []
    if ast.filters:
        parts.append("**Filters:**")
        parts.extend(f"- {node_to_text(f)}" for f in ast.filters)
    else:
        parts.append("**Filters:** None (showing all tasks)")
    if ast.sort:
        keys = ", ".join(
            f"{s.field} ({'descending' if s.reverse else 'ascending'})" for s in ast.sort.fields
        )
        parts.append(f"\n**Sort:** By {keys}")
    if ast.group:
        parts.append(f"\n**Group:** By {ast.group.field}")
    if ast.limit:
        parts.append(f"\n**Limit:** First {ast.limit} tasks")
    if ast.ignore_global:
        parts.append("\n**Global filter:** ignored")
    return "\n".join(parts)
