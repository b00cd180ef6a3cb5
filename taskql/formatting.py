"""Response formatting helpers for the taskql MCP tools.

Provides consistent Markdown and JSON formatting across all tools.
Markdown is the default, optimized for LLM readability with minimal tokens.
"""

from __future__ import annotations

import json
from typing import Any

from taskql.dates import format_date
from taskql.diff import ExplanationDiff, most_affected_tasks
from taskql.engine import QueryResult
from taskql.errors import QuerySyntaxError
from taskql.explainer import Explanation
from taskql.models import Priority, Task
from taskql.presets import QueryPreset

CHARACTER_LIMIT = 25_000

# ---------------------------------------------------------------------------
# Priority display
# ---------------------------------------------------------------------------

PRIORITY_LABELS = {
    Priority.LOWEST: "Lowest",
    Priority.LOW: "Low",
    Priority.NORMAL: "Normal",
    Priority.MEDIUM: "Medium",
    Priority.HIGH: "High",
    Priority.HIGHEST: "Highest",
}

PRIORITY_ICONS = {
    Priority.LOWEST: "⏬",
    Priority.LOW: "🔽",
    Priority.NORMAL: "",
    Priority.MEDIUM: "🔼",
    Priority.HIGH: "⏫",
    Priority.HIGHEST: "🔺",
}


def priority_label(value: Priority) -> str:
    """Convert priority to human label."""
    return PRIORITY_LABELS.get(value, f"Unknown({value})")


def priority_icon(value: Priority) -> str:
    """Convert priority to emoji icon."""
    return PRIORITY_ICONS.get(value, "")


# ---------------------------------------------------------------------------
# Markdown formatters
# ---------------------------------------------------------------------------

def format_task_md(task: Task) -> str:
    """Format a single task as Markdown."""
    check = task.status_symbol if task.status_symbol.strip() else " "
    icon = priority_icon(task.priority)
    title = f"{icon} {task.name or task.id}" if icon else (task.name or task.id)
    lines = [f"- [{check}] {title}"]
    details = [f"`{task.id}`", f"priority {priority_label(task.priority)}"]
    if task.due_at:
        details.append(f"due {format_date(task.due_at)}")
    if task.scheduled_at:
        details.append(f"scheduled {format_date(task.scheduled_at)}")
    if task.tags:
        details.append(" ".join(f"#{t}" for t in task.tags))
    if task.path:
        details.append(task.path)
    lines.append("  - " + " · ".join(details))
    return "\n".join(lines)


def format_tasks_md(tasks: list[Task], title: str = "") -> str:
    """Format a list of tasks as Markdown."""
    if not tasks:
        return "No tasks found."
    header = f"# {title}" if title else "# Tasks"
    lines = [f"{header} ({len(tasks)})", ""]
    lines.extend(format_task_md(t) for t in tasks)
    return "\n".join(lines)


def format_result_md(result: QueryResult) -> str:
    """Format a query result, grouped if the query grouped."""
    header = f"# Query results ({len(result.tasks)} of {result.total_count} tasks)"
    lines = [header, f"_Executed in {result.execution_time_ms:.1f} ms_"]
    if not result.tasks:
        lines.append("")
        lines.append("No tasks matched.")
        return "\n".join(lines)
    if result.groups is not None:
        for key, tasks in result.groups.items():
            lines.append("")
            lines.append(f"## {key} ({len(tasks)})")
            lines.extend(format_task_md(t) for t in tasks)
    else:
        lines.append("")
        lines.extend(format_task_md(t) for t in result.tasks)
    return "\n".join(lines)


def format_explanation_md(explanation: Explanation, only_matched: bool = False) -> str:
    """Format an explanation: one section per task with per-filter verdicts."""
    lines = [
        "# Query explanation",
        f"- **Query**: `{explanation.query_string.replace(chr(10), ' / ') or '(no filters)'}`",
        f"- **Matched**: {explanation.match_count} of {explanation.total_count} tasks",
    ]
    if explanation.global_filter_applied:
        lines.append("- **Global filter**: applied")
    for te in explanation.task_explanations:
        if only_matched and not te.matched:
            continue
        mark = "✅" if te.matched else "❌"
        lines.append("")
        lines.append(f"## {mark} {te.task.name or te.task.id}")
        if not te.filter_explanations:
            lines.append("- No filters: every task matches")
        for fe in te.filter_explanations:
            lines.append(f"- {'✓' if fe.matched else '✗'} `{fe.filter_name}`: {fe.reason}")
    return "\n".join(lines)


def format_diff_md(result: ExplanationDiff) -> str:
    """Format an explanation diff as Markdown."""
    s = result.summary
    change = f"+{s.match_count_change}" if s.match_count_change > 0 else str(s.match_count_change)
    lines = [
        "## Query Explanation Diff",
        "",
        "### Summary",
        f"- **Total Tasks**: {s.total_tasks}",
        f"- **Before**: {s.before_match_count} matched",
        f"- **After**: {s.after_match_count} matched",
        f"- **Change**: {change} tasks",
        f"- **Impact**: {s.impact_level.value.upper()}",
    ]
    sections = (
        ("✅ Newly Matched", result.now_matched, "Before", "After"),
        ("❌ No Longer Matched", result.now_unmatched, "Before", "After"),
        ("🔄 Still Matched, Reasons Changed", [e for e in result.still_matched if e.reasons_changed], "Before", "After"),
    )
    for title, entries, before_label, after_label in sections:
        if not entries:
            continue
        lines.append("")
        lines.append(f"### {title} ({len(entries)})")
        for entry in entries:
            lines.append(f"- **{entry.task.name or entry.task.id}**")
            lines.append(f"  - {before_label}: {'; '.join(entry.before_reasons) or 'matched'}")
            lines.append(f"  - {after_label}: {'; '.join(entry.after_reasons) or 'matched'}")
    affected = most_affected_tasks(result, limit=5)
    if affected:
        lines.append("")
        lines.append("### Most affected")
        lines.extend(f"- {e.task.name or e.task.id}" for e in affected)
    return "\n".join(lines)


def format_syntax_error_md(error: QuerySyntaxError) -> str:
    lines = [
        "❌ Query is invalid",
        f"- **Error**: {error.message}",
        f"- **Position**: line {error.line}, column {error.column}",
    ]
    if error.hint:
        lines.append(f"- **Hint**: {error.hint}")
    return "\n".join(lines)


def format_presets_md(presets: list[QueryPreset]) -> str:
    lines = [f"# Query presets ({len(presets)})", ""]
    for p in presets:
        icon = f"{p.icon} " if p.icon else ""
        lines.append(f"## {icon}{p.name} (`{p.id}`)")
        if p.description:
            lines.append(p.description)
        lines.append("```")
        lines.append(p.query)
        lines.append("```")
        lines.append("")
    return "\n".join(lines).rstrip()


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

def task_to_dict(task: Task) -> dict:
    return task.model_dump(mode="json", exclude_none=True)


def result_to_dict(result: QueryResult) -> dict:
    data: dict[str, Any] = {
        "count": len(result.tasks),
        "total_count": result.total_count,
        "execution_time_ms": round(result.execution_time_ms, 3),
        "tasks": [task_to_dict(t) for t in result.tasks],
    }
    if result.groups is not None:
        data["groups"] = {k: [t.id for t in v] for k, v in result.groups.items()}
    return data


def format_json(data: Any) -> str:
    """Format data as indented JSON string."""
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


# ---------------------------------------------------------------------------
# Truncation
# ---------------------------------------------------------------------------

def truncate_response(response: str) -> str:
    """Truncate response if it exceeds CHARACTER_LIMIT."""
    if len(response) <= CHARACTER_LIMIT:
        return response
    truncated = response[:CHARACTER_LIMIT]
    return (
        truncated
        + "\n\n---\n"
        + f"**Response truncated** ({len(response):,} chars → {CHARACTER_LIMIT:,} chars). "
        + "Add filters or a 'limit N' line to reduce results."
    )
