"""taskql MCP Server: run, explain and compare task queries.

Loads a task collection from a JSON file at startup and exposes the query
engine as MCP tools. Designed for use as a stdio MCP server, or over
Streamable HTTP for remote access.

Usage:
    python -m taskql                            # stdio transport (default)
    MCP_TRANSPORT=streamable-http python -m taskql
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Sequence

from fastmcp import Context, FastMCP
from pydantic import ValidationError

from taskql.cache import ExplanationCache, QueryCache
from taskql.composer import GlobalQuery, GlobalQueryConfig
from taskql.config import Settings, load_settings
from taskql.dates import parse_timestamp
from taskql.diff import analyze_filter_changes, diff, summary_text
from taskql.engine import InMemoryTaskSource, QueryEngine
from taskql.errors import QueryExecutionError, QuerySyntaxError
from taskql.explainer import describe_query, explain_matches
from taskql.formatting import (
    format_diff_md,
    format_explanation_md,
    format_json,
    format_presets_md,
    format_result_md,
    format_syntax_error_md,
    result_to_dict,
    truncate_response,
)
from taskql.models import (
    DiffQueriesInput,
    ExplainQueryInput,
    InvalidateCacheInput,
    ListPresetsInput,
    ResponseFormat,
    RunQueryInput,
    Task,
    ValidateQueryInput,
)
from taskql.presets import get_preset, list_presets

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Task loading and dependency graph
# ---------------------------------------------------------------------------

def load_tasks_file(path: str | Path) -> list[Task]:
    """Read tasks from a JSON file holding a list, or an object with a 'tasks' list."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("tasks", [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of tasks")
    return [Task.model_validate(item) for item in data]


class TaskDependencyGraph:
    """Blocking relations derived from depends_on / blocked_by.

    A task is blocked while any task it waits on exists and is not done;
    a task is blocking while some open task waits on it.
    """

    def __init__(self, tasks: Sequence[Task]) -> None:
        by_id = {t.id: t for t in tasks}
        self._blocked: set[str] = set()
        self._blocking: set[str] = set()
        for task in tasks:
            for dep_id in {*task.depends_on, *task.blocked_by}:
                dep = by_id.get(dep_id)
                if dep is None or dep.is_done:
                    continue
                self._blocked.add(task.id)
                if not task.is_done:
                    self._blocking.add(dep_id)

    def is_blocked(self, task_id: str) -> bool:
        return task_id in self._blocked

    def is_blocking(self, task_id: str) -> bool:
        return task_id in self._blocking


def build_engine(settings: Settings, tasks: Sequence[Task] = ()) -> QueryEngine:
    """Wire an engine with caches, dependency graph and global query from settings."""
    engine = QueryEngine(
        InMemoryTaskSource(tasks),
        result_cache=QueryCache(max_size=settings.result_cache_size),
        explanation_cache=ExplanationCache(
            max_size=settings.explanation_cache_size,
            max_age=settings.explanation_cache_ttl,
        ),
    )
    engine.set_dependency_graph(TaskDependencyGraph(tasks))
    global_query = GlobalQuery(
        GlobalQueryConfig(enabled=settings.global_query_enabled, query=settings.global_query),
        parser=engine.parser,
    )
    if global_query.error:
        logger.warning(f"Ignoring TASKQL_GLOBAL_QUERY: {global_query.error}")
    elif global_query.ast is not None:
        engine.set_global_ast(global_query.ast, settings.global_query)
    return engine


# ---------------------------------------------------------------------------
# Lifespan: one engine per server process
# ---------------------------------------------------------------------------

@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[dict]:
    """Load tasks and build the query engine at startup."""
    settings = load_settings()
    tasks: list[Task] = []
    if settings.tasks_file:
        try:
            tasks = load_tasks_file(settings.tasks_file)
            logger.info(f"Loaded {len(tasks)} tasks from {settings.tasks_file}")
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Could not load tasks from {settings.tasks_file}: {e}")
    else:
        logger.warning("TASKQL_TASKS_FILE is not set; starting with an empty task collection")

    yield {"engine": build_engine(settings, tasks), "settings": settings}


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "taskql_mcp",
    instructions=(
        "Task query engine. Tools are prefixed with 'taskql_' and support both "
        "Markdown and JSON response formats. Queries are written one instruction "
        "per line, e.g. 'not done', 'due before in 7 days', 'priority above normal "
        "OR tag includes urgent', 'sort by priority reverse, due', 'group by tags', "
        "'limit 10'. Use taskql_validate_query to check syntax and "
        "taskql_explain_query to see why each task matched or not. "
        "taskql_list_presets lists named queries that can be run by id."
    ),
    lifespan=app_lifespan,
)


# ---------------------------------------------------------------------------
# Error handler
# ---------------------------------------------------------------------------

def _handle_error(e: Exception) -> str:
    """Convert exceptions to LLM-friendly error messages."""
    if isinstance(e, QuerySyntaxError):
        text = f"Error: Invalid query at line {e.line}, column {e.column}: {e.message}"
        if e.hint:
            text += f". Hint: {e.hint}"
        return text
    if isinstance(e, QueryExecutionError):
        return f"Error: Query execution failed: {e}"
    if isinstance(e, ValueError):
        return f"Error: Invalid input: {e}"
    return f"Error: {type(e).__name__}: {e}"


def _get_engine(ctx) -> QueryEngine:
    """Extract the query engine from request context."""
    return ctx.request_context.lifespan_context["engine"]


def _query_text(params: RunQueryInput) -> str:
    """The query to run: the text given, or the named preset's query."""
    if params.preset is not None:
        return get_preset(params.preset).query
    return params.query


# ===================================================================
# QUERY TOOLS
# ===================================================================


@mcp.tool(
    name="taskql_run_query",
    annotations={
        "title": "Run Task Query",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def taskql_run_query(params: RunQueryInput, ctx: Context) -> str:
    """Run a task query and return the matching tasks.

    Applies the global filter (unless the query says 'ignore global query'),
    then the query's filters, sort, limit and grouping.

    Args:
        params: Contains query text (or a preset id), optional reference_time
            and response_format.

    Returns:
        Markdown task list (grouped if the query groups), or JSON with
        count, total_count, tasks and groups.

    Examples:
        - "What's overdue?" -> query="not done\\ndue before today"
        - "Top 5 by priority" -> query="not done\\nsort by priority reverse, due\\nlimit 5"
        - "Show my focus list" -> preset="today-focus"
    """
    try:
        engine = _get_engine(ctx)
        reference = parse_timestamp(params.reference_time) if params.reference_time else None
        result = engine.execute_string(_query_text(params), reference)
        if params.response_format == ResponseFormat.JSON:
            return truncate_response(format_json(result_to_dict(result)))
        return truncate_response(format_result_md(result))
    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="taskql_explain_query",
    annotations={
        "title": "Explain Task Query",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def taskql_explain_query(params: ExplainQueryInput, ctx: Context) -> str:
    """Explain, task by task, which filters matched and why.

    Every task in the collection is evaluated, not just the ones that
    matched, so this answers "why is task X missing from my results?".

    Args:
        params: Contains query text (or a preset id), reference_time,
            only_matched and response_format.

    Returns:
        Markdown explanation with per-filter verdicts, or JSON explanation.
    """
    try:
        engine = _get_engine(ctx)
        reference = parse_timestamp(params.reference_time) if params.reference_time else None
        ast = engine.parse(_query_text(params), reference)
        explanation = engine.explain(ast, reference)
        if params.response_format == ResponseFormat.JSON:
            data = explanation.model_dump(mode="json")
            if params.only_matched:
                data["task_explanations"] = [
                    te.model_dump(mode="json") for te in explain_matches(explanation)
                ]
            return truncate_response(format_json(data))
        text = describe_query(ast) + "\n\n" + format_explanation_md(explanation, params.only_matched)
        return truncate_response(text)
    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="taskql_validate_query",
    annotations={
        "title": "Validate Task Query",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def taskql_validate_query(params: ValidateQueryInput, ctx: Context) -> str:
    """Check query syntax without running it.

    Args:
        params: Contains the query text.

    Returns:
        A summary of the parsed query, or the syntax error with line,
        column and a hint.
    """
    try:
        engine = _get_engine(ctx)
        valid, error = engine.validate_query(params.query)
        if not valid:
            return format_syntax_error_md(error)
        return "✅ Query is valid\n\n" + describe_query(engine.parse(params.query))
    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="taskql_diff_queries",
    annotations={
        "title": "Compare Two Task Queries",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def taskql_diff_queries(params: DiffQueriesInput, ctx: Context) -> str:
    """Show which tasks a query change gains or loses.

    Args:
        params: Contains before_query, after_query and response_format.

    Returns:
        Markdown diff with impact level and per-task changes, or JSON diff.

    Examples:
        - "What happens if I also require #work?" ->
          before_query="not done", after_query="not done\\ntag includes work"
    """
    try:
        engine = _get_engine(ctx)
        before = engine.explain(engine.parse(params.before_query))
        after = engine.explain(engine.parse(params.after_query))
        result = diff(before, after)
        changes = analyze_filter_changes(params.before_query, params.after_query)
        if params.response_format == ResponseFormat.JSON:
            data = result.model_dump(mode="json")
            data["summary_text"] = summary_text(result)
            data["filter_changes"] = [c.model_dump() for c in changes]
            return truncate_response(format_json(data))
        lines = [format_diff_md(result), "", f"**Summary**: {summary_text(result)}"]
        if changes:
            lines.append("")
            lines.append("### Filter changes")
            lines.extend(f"- {c.type}: `{c.filter}`" for c in changes)
        return truncate_response("\n".join(lines))
    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="taskql_invalidate_cache",
    annotations={
        "title": "Invalidate Query Cache",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def taskql_invalidate_cache(params: InvalidateCacheInput, ctx: Context) -> str:
    """Drop cached query results so the next run re-reads the tasks.

    Args:
        params: Optional pattern: an exact cache key, 'prefix*', or empty for all.

    Returns:
        How many cached results were dropped, plus cache statistics.
    """
    try:
        engine = _get_engine(ctx)
        removed = engine.invalidate_cache(params.pattern)
        if params.pattern is None:
            engine.explanation_cache.clear()
        stats = engine.result_cache.stats()
        return (
            f"Dropped {removed} cached result(s).\n"
            f"- **Cache size**: {stats.size}/{stats.max_size}\n"
            f"- **Hit rate**: {stats.hit_rate:.0%} ({stats.hits} hits, {stats.misses} misses)"
        )
    except Exception as e:
        return _handle_error(e)



@mcp.tool(
    name="taskql_list_presets",
    annotations={
        "title": "List Query Presets",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def taskql_list_presets(params: ListPresetsInput, ctx: Context) -> str:
    """List the built-in query presets.

    Any preset id can be passed as 'preset' to taskql_run_query or
    taskql_explain_query instead of query text.

    Args:
        params: Contains response_format.

    Returns:
        Markdown list of presets with their queries, or JSON list.
    """
    try:
        presets = list_presets()
        if params.response_format == ResponseFormat.JSON:
            return format_json([p.model_dump() for p in presets])
        return truncate_response(format_presets_md(presets))
    except Exception as e:
        return _handle_error(e)
