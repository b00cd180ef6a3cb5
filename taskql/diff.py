"""Compare two explanation snapshots task by task.

Each task id seen in either snapshot lands in exactly one bucket:
now matched, now unmatched, still matched or still unmatched. A task missing
from one snapshot counts as unmatched there.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from taskql.explainer import Explanation, TaskExplanation
from taskql.models import Task

MINOR_THRESHOLD = 0.1
MODERATE_THRESHOLD = 0.3


class ImpactLevel(str, Enum):
    NONE = "none"
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"


class TaskDiffEntry(BaseModel):
    task: Task
    before_reasons: list[str] = Field(default_factory=list)
    after_reasons: list[str] = Field(default_factory=list)
    reasons_changed: bool = False


class DiffSummary(BaseModel):
    total_tasks: int
    before_match_count: int
    after_match_count: int
    match_count_change: int
    gained_matches: int
    lost_matches: int
    reasons_changed_count: int
    impact_level: ImpactLevel


class ExplanationDiff(BaseModel):
    now_matched: list[TaskDiffEntry] = Field(default_factory=list)
    now_unmatched: list[TaskDiffEntry] = Field(default_factory=list)
    still_matched: list[TaskDiffEntry] = Field(default_factory=list)
    still_unmatched: list[TaskDiffEntry] = Field(default_factory=list)
    summary: DiffSummary


class FilterChange(BaseModel):
    type: str  # "added" or "removed"
    filter: str
    impact: int = 0


def impact_level(changed: int, total: int, reasons_changed: int) -> ImpactLevel:
    """Classify by the fraction of tasks whose membership changed."""
    fraction = changed / total if total else 0.0
    if fraction == 0 and reasons_changed == 0:
        return ImpactLevel.NONE
    if fraction < MINOR_THRESHOLD:
        return ImpactLevel.MINOR
    if fraction < MODERATE_THRESHOLD:
        return ImpactLevel.MODERATE
    return ImpactLevel.MAJOR


def diff(before: Explanation, after: Explanation) -> ExplanationDiff:
    before_by_id: dict[str, TaskExplanation] = {te.task.id: te for te in before.task_explanations}
    after_by_id: dict[str, TaskExplanation] = {te.task.id: te for te in after.task_explanations}
    task_ids = list(dict.fromkeys([*before_by_id, *after_by_id]))

    result = {"now_matched": [], "now_unmatched": [], "still_matched": [], "still_unmatched": []}
    for task_id in task_ids:
        b = before_by_id.get(task_id)
        a = after_by_id.get(task_id)
        was = b is not None and b.matched
        now = a is not None and a.matched
        before_reasons = list(b.mismatch_reasons) if b else []
        after_reasons = list(a.mismatch_reasons) if a else []
        entry = TaskDiffEntry(
            task=(a or b).task,
            before_reasons=before_reasons,
            after_reasons=after_reasons,
            reasons_changed=sorted(before_reasons) != sorted(after_reasons),
        )
        if was and not now:
            result["now_unmatched"].append(entry)
        elif now and not was:
            result["now_matched"].append(entry)
        elif was:
            result["still_matched"].append(entry)
        else:
            result["still_unmatched"].append(entry)

    gained, lost = len(result["now_matched"]), len(result["now_unmatched"])
    before_count = sum(1 for te in before.task_explanations if te.matched)
    after_count = sum(1 for te in after.task_explanations if te.matched)
    reasons_changed = sum(
        1 for e in result["still_matched"] + result["still_unmatched"] if e.reasons_changed
    )
    summary = DiffSummary(
        total_tasks=len(task_ids),
        before_match_count=before_count,
        after_match_count=after_count,
        match_count_change=after_count - before_count,
        gained_matches=gained,
        lost_matches=lost,
        reasons_changed_count=reasons_changed,
        impact_level=impact_level(gained + lost, len(task_ids), reasons_changed),
    )
    return ExplanationDiff(**result, summary=summary)


def analyze_filter_changes(before_query: str, after_query: str) -> list[FilterChange]:
    """Line-level comparison of two query texts."""
    before_lines = [line.strip() for line in before_query.split("\n") if line.strip()]
    after_lines = [line.strip() for line in after_query.split("\n") if line.strip()]
    before_set, after_set = set(before_lines), set(after_lines)
    changes = [FilterChange(type="removed", filter=line) for line in before_lines if line not in after_set]
    changes += [FilterChange(type="added", filter=line) for line in after_lines if line not in before_set]
    return changes


def summary_text(result: ExplanationDiff) -> str:
    s = result.summary
    parts = []
    if s.gained_matches:
        parts.append(f"+{s.gained_matches} matched")
    if s.lost_matches:
        parts.append(f"-{s.lost_matches} matched")
    if s.reasons_changed_count:
        parts.append(f"{s.reasons_changed_count} reasons changed")
    return ", ".join(parts) or "No changes"


def most_affected_tasks(result: ExplanationDiff, limit: int = 10) -> list[TaskDiffEntry]:
    """Membership changes first, then tasks whose reasons changed."""
    flips = result.now_matched + result.now_unmatched
    reasons = [e for e in result.still_matched + result.still_unmatched if e.reasons_changed]
    return (flips + reasons)[:limit]
