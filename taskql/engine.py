"""Query execution engine.

Pipeline, in order: snapshot the task collection, apply the global filter,
apply the query's filters, sort, limit, group. Results are cached by a key
derived from the query's filters/sort/group/limit; the cache is only
invalidated by the owner (or when the engine's own inputs are replaced).
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timezone
from typing import Callable, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from taskql.cache import ExplanationCache, QueryCache
from taskql.errors import QueryExecutionError, QuerySyntaxError
from taskql.explainer import Explanation, explain_query
from taskql.groupers import group_tasks
from taskql.models import AttentionProfile, Task
from taskql.parser import QueryParser
from taskql.placeholders import QueryContext
from taskql.predicates import (
    DependencyGraph,
    EscalationScorer,
    EvaluationContext,
    Predicate,
    UrgencyScorer,
    build_predicates,
)
from taskql.query_ast import QueryAST, canonical_json, hash_text, node_to_text
from taskql.sorting import sort_tasks

logger = logging.getLogger(__name__)

CACHE_PREFIX = "query:"


class TaskSource(Protocol):
    """Pull accessor for the full task collection."""

    def get_all_tasks(self) -> Sequence[Task]: ...


class InMemoryTaskSource:
    """A task collection held in memory, keyed by task id."""

    def __init__(self, tasks: Sequence[Task] | None = None) -> None:
        self._tasks: dict[str, Task] = {t.id: t for t in tasks or []}

    def get_all_tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def upsert(self, task: Task) -> None:
        self._tasks[task.id] = task

    def remove(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    def replace_all(self, tasks: Sequence[Task]) -> None:
        self._tasks = {t.id: t for t in tasks}

    def __len__(self) -> int:
        return len(self._tasks)


class QueryResult(BaseModel):
    """Outcome of one query execution. ``total_count`` is measured before filtering."""

    tasks: list[Task] = Field(default_factory=list)
    groups: Optional[dict[str, list[Task]]] = None
    total_count: int = 0
    execution_time_ms: float = 0.0
    explanation: Optional[Explanation] = None


class QueryEngine:
    """Runs QueryASTs against a TaskSource.

    Usage:
        engine = QueryEngine(InMemoryTaskSource(tasks))
        result = engine.execute_string("not done\\nsort by due")
    """

    def __init__(
        self,
        source: TaskSource,
        result_cache: QueryCache | None = None,
        explanation_cache: ExplanationCache | None = None,
        parser: QueryParser | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._source = source
        self._result_cache: QueryCache[QueryResult] = result_cache or QueryCache()
        self._explanation_cache = explanation_cache or ExplanationCache()
        self._parser = parser or QueryParser()
        self._now = now or (lambda: datetime.now(timezone.utc))

        self._global_filter: QueryAST | None = None
        self._global_query: str | None = None
        self._dependency_graph: DependencyGraph | None = None
        self._urgency_scorer: UrgencyScorer | None = None
        self._escalation_scorer: EscalationScorer | None = None
        self._attention_profiles: Mapping[str, AttentionProfile] = {}

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    @property
    def parser(self) -> QueryParser:
        return self._parser

    @property
    def result_cache(self) -> QueryCache:
        return self._result_cache

    @property
    def explanation_cache(self) -> ExplanationCache:
        return self._explanation_cache

    @property
    def global_query(self) -> str | None:
        return self._global_query

    @property
    def global_filter_active(self) -> bool:
        return self._global_filter is not None and bool(self._global_filter.filters)

    def set_dependency_graph(self, graph: DependencyGraph | None) -> None:
        self._dependency_graph = graph
        self._inputs_changed("dependency graph")

    def set_scoring(
        self,
        urgency_scorer: UrgencyScorer | None = None,
        escalation_scorer: EscalationScorer | None = None,
        attention_profiles: Mapping[str, AttentionProfile] | None = None,
    ) -> None:
        self._urgency_scorer = urgency_scorer
        self._escalation_scorer = escalation_scorer
        self._attention_profiles = attention_profiles or {}
        self._inputs_changed("scoring")

    def set_global_filter(self, query: str | None) -> None:
        """Set (or clear, with None/blank) the filter applied before every query.

        Raises QuerySyntaxError if ``query`` does not parse; the previous
        global filter stays in place in that case.
        """
        if query is None or not query.strip():
            self._global_filter = None
            self._global_query = None
            self._inputs_changed("global filter cleared")
            return
        try:
            ast = self._parser.parse(query, self._now())
        except QuerySyntaxError as e:
            logger.error(f"Global filter rejected: {e}")
            raise
        self.set_global_ast(ast, query)

    def set_global_ast(self, ast: QueryAST | None, query: str | None = None) -> None:
        self._global_filter = ast
        self._global_query = query
        count = len(ast.filters) if ast else 0
        self._inputs_changed(f"global filter set ({count} filter(s))")

    def _inputs_changed(self, what: str) -> None:
        self._result_cache.invalidate()
        self._explanation_cache.clear()
        logger.info(f"QueryEngine inputs changed: {what}")

    # ------------------------------------------------------------------
    # Caching
    # ------------------------------------------------------------------

    def cache_key(self, ast: QueryAST, reference_time: datetime | None = None) -> str:
        """Key for a query's result.

        Covers filters, sort, group and limit and whether the global filter
        applies. The reference time is included only while an urgency or
        escalation scorer is set, since relative dates are already resolved
        into the filters at parse time.
        """
        marker = "g" if self.global_filter_active and not ast.ignore_global else "-"
        key = f"{CACHE_PREFIX}{marker}:{hash_text(canonical_json(ast))}"
        if reference_time is not None and self._time_dependent():
            key += f"@{reference_time.isoformat()}"
        return key

    def _time_dependent(self) -> bool:
        return self._urgency_scorer is not None or self._escalation_scorer is not None

    def invalidate_cache(self, pattern: str | None = None) -> int:
        """Drop cached results by key or ``prefix*`` pattern; all when None."""
        return self._result_cache.invalidate(pattern)

    def clear_cache(self) -> None:
        self._result_cache.clear()
        self._explanation_cache.clear()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _context(self, reference_time: datetime | None) -> EvaluationContext:
        return EvaluationContext(
            reference_time=reference_time or self._now(),
            dependency_graph=self._dependency_graph,
            urgency_scorer=self._urgency_scorer,
            escalation_scorer=self._escalation_scorer,
            attention_profiles=self._attention_profiles,
        )

    def _compile(
        self, ast: QueryAST, ctx: EvaluationContext
    ) -> tuple[list[Predicate], list[str], bool]:
        """Predicates (global first) and their labels."""
        predicates: list[Predicate] = []
        names: list[str] = []
        global_applied = self.global_filter_active and not ast.ignore_global
        if global_applied:
            predicates.extend(build_predicates(self._global_filter.filters, ctx))
            names.extend(f"global: {node_to_text(f)}" for f in self._global_filter.filters)
        predicates.extend(build_predicates(ast.filters, ctx))
        names.extend(node_to_text(f) for f in ast.filters)
        return predicates, names, global_applied

    def execute(self, ast: QueryAST, reference_time: datetime | None = None) -> QueryResult:
        """Run a parsed query.

        Raises:
            QueryExecutionError: wrapping whatever failed while building or
                evaluating predicates, sorting or grouping.
        """
        start = time.perf_counter()
        reference = reference_time or self._now()
        key = None
        if not ast.explain:
            key = self.cache_key(ast, reference)
            cached = self._result_cache.get(key)
            if cached is not None:
                return cached

        try:
            all_tasks = list(self._source.get_all_tasks())
            ctx = self._context(reference)
            predicates, names, global_applied = self._compile(ast, ctx)

            tasks = all_tasks
            for predicate in predicates:
                tasks = [t for t in tasks if predicate.matches(t)]
            if ast.sort:
                tasks = sort_tasks(tasks, ast.sort, ctx)
            if ast.limit is not None and ast.limit > 0:
                tasks = tasks[:ast.limit]
            groups = group_tasks(tasks, ast.group.field, ctx.reference_time) if ast.group else None

            elapsed = (time.perf_counter() - start) * 1000
            explanation = None
            if ast.explain:
                explanation = self._explanation_for(
                    ast, all_tasks, predicates, names, global_applied, elapsed, self.cache_key(ast, reference),
                )
        except QueryExecutionError:
            raise
        except Exception as e:
            raise QueryExecutionError("Query execution failed", e) from e

        result = QueryResult(
            tasks=tasks,
            groups=groups,
            total_count=len(all_tasks),
            execution_time_ms=elapsed,
            explanation=explanation,
        )
        if key is not None:
            self._result_cache.set(key, result)
        logger.debug(f"Executed query: {len(tasks)}/{len(all_tasks)} tasks in {elapsed:.1f}ms")
        return result

    def _explanation_for(
        self,
        ast: QueryAST,
        all_tasks: list[Task],
        predicates: list[Predicate],
        names: list[str],
        global_applied: bool,
        elapsed: float,
        variant: str,
    ) -> Explanation:
        cached = self._explanation_cache.get(ast, all_tasks, variant)
        if cached is not None:
            return cached
        explanation = explain_query(
            ast, all_tasks, predicates, names,
            global_filter_applied=global_applied,
            execution_time_ms=elapsed,
        )
        self._explanation_cache.set(ast, all_tasks, explanation, variant)
        return explanation

    def explain(self, ast: QueryAST, reference_time: datetime | None = None) -> Explanation:
        """Explain every task against ``ast`` without touching the result cache."""
        return self.execute(ast.model_copy(update={"explain": True}), reference_time).explanation

    def parse(
        self,
        text: str,
        reference_time: datetime | date | None = None,
        context: QueryContext | None = None,
    ) -> QueryAST:
        return self._parser.parse(text, reference_time or self._now(), context)

    def execute_string(
        self,
        text: str,
        reference_time: datetime | None = None,
        context: QueryContext | None = None,
    ) -> QueryResult:
        """Parse and run. Syntax errors propagate as QuerySyntaxError."""
        reference = reference_time or self._now()
        return self.execute(self.parse(text, reference, context), reference)

    def validate_query(self, text: str) -> tuple[bool, Optional[QuerySyntaxError]]:
        return self._parser.validate(text, self._now())
