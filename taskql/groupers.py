"""Group a result sequence into an order-preserving mapping of key -> tasks."""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Iterable, Sequence

from taskql.dates import to_day
from taskql.errors import QueryExecutionError
from taskql.models import Task

GROUP_FIELDS = ("due", "scheduled", "status.type", "status.name", "priority", "path", "folder", "tags")


def _relative_bucket(value: datetime | None, reference: date, missing: str, past: str) -> str:
    if value is None:
        return missing
    days = (to_day(value) - reference).days
    if days < 0:
        return past
    if days == 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    if days <= 7:
        return "This Week"
    return "Later"


def _folder(task: Task) -> str:
    if not task.path:
        return "No folder"
    head, sep, _ = task.path.rpartition("/")
    if not sep:
        return "Root"
    return head or "Root"


def group_keys(field: str, reference: date | datetime) -> Callable[[Task], Iterable[str]]:
    """Key function for ``field``. Most fields yield one key; ``tags`` may yield several."""
    today = to_day(reference)
    if field == "due":
        return lambda t: [_relative_bucket(t.due_at, today, "No due date", "Overdue")]
    if field == "scheduled":
        return lambda t: [_relative_bucket(t.scheduled_at, today, "No scheduled date", "Past")]
    if field == "status.type":
        return lambda t: [t.status_info.type.value]
    if field == "status.name":
        return lambda t: [t.status_info.name]
    if field == "priority":
        return lambda t: [t.priority.value]
    if field == "path":
        return lambda t: [t.path or "No path"]
    if field == "folder":
        return lambda t: [_folder(t)]
    if field == "tags":
        return lambda t: list(dict.fromkeys(t.tags)) or ["No tags"]
    raise QueryExecutionError(f"Unknown grouping field: {field}")


def group_tasks(tasks: Sequence[Task], field: str, reference: date | datetime) -> dict[str, list[Task]]:
    """Partition ``tasks`` keeping both group order and in-group order stable."""
    keys_for = group_keys(field, reference)
    groups: dict[str, list[Task]] = {}
    for task in tasks:
        for key in keys_for(task):
            groups.setdefault(key, []).append(task)
    return groups
