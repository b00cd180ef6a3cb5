import pytest
from datetime import datetime, timezone

REF = datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc)


def _make_task(name, **fields):
    from taskql.models import Task
    return Task(id=f"task-{name.lower()}", name=name, **fields)


def _tasks():
    return [
        _make_task("Report", tags=["work"], priority="high"),
        _make_task("Groceries", tags=["home"]),
        _make_task("Invoice", tags=["work"], status_symbol="x"),
        _make_task("Gym", priority="low"),
    ]


def _explain(text, tasks=None):
    from taskql.engine import InMemoryTaskSource, QueryEngine

    engine = QueryEngine(InMemoryTaskSource(tasks or _tasks()), now=lambda: REF)
    return engine.explain(engine.parse(text))


# ---------------------------------------------------------------------------
# Explainer
# ---------------------------------------------------------------------------

def test_explanation_has_every_task_once():
    explanation = _explain("not done\ntag includes work")
    assert [te.task.name for te in explanation.task_explanations] == ["Report", "Groceries", "Invoice", "Gym"]
    assert explanation.total_count == 4
    assert explanation.match_count == 1
    assert explanation.query_string == 'not done\ntag includes "work"'


def test_mismatch_reasons_list_failed_filters():
    explanation = _explain("not done\ntag includes work")
    invoice = explanation.for_task("task-invoice")
    assert invoice.matched is False
    assert len(invoice.filter_explanations) == 2
    assert invoice.mismatch_reasons == [
        'Task "Invoice" has status DONE, which does not satisfy "not done"'
    ]
    gym = explanation.for_task("task-gym")
    assert len(gym.mismatch_reasons) == 1
    assert "has no tags" in gym.mismatch_reasons[0]


def test_explain_matches_and_mismatches_partition():
    from taskql.explainer import explain_matches, explain_mismatches

    explanation = _explain("tag includes work")
    matched = {te.task.id for te in explain_matches(explanation)}
    unmatched = {te.task.id for te in explain_mismatches(explanation)}
    assert matched == {"task-report", "task-invoice"}
    assert matched.isdisjoint(unmatched)
    assert len(matched | unmatched) == 4


def test_query_without_filters_matches_everything():
    explanation = _explain("sort by name")
    assert explanation.match_count == 4
    assert all(te.filter_explanations == [] for te in explanation.task_explanations)


def test_describe_query():
    from taskql.explainer import describe_query
    from taskql.parser import parse_query

    text = describe_query(parse_query("not done\nsort by due reverse\ngroup by tags\nlimit 3", REF))
    assert "- not done" in text
    assert "due (descending)" in text
    assert "By tags" in text
    assert "First 3 tasks" in text


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------

def test_diff_buckets_are_exclusive_and_exhaustive():
    from taskql.diff import diff

    before = _explain("not done")
    after = _explain("not done\ntag includes work")
    result = diff(before, after)

    buckets = [result.now_matched, result.now_unmatched, result.still_matched, result.still_unmatched]
    ids = [e.task.id for bucket in buckets for e in bucket]
    assert sorted(ids) == sorted(t.id for t in _tasks())
    assert len(ids) == len(set(ids))

    assert [e.task.name for e in result.now_unmatched] == ["Groceries", "Gym"]
    assert [e.task.name for e in result.still_matched] == ["Report"]
    assert [e.task.name for e in result.still_unmatched] == ["Invoice"]
    assert result.now_matched == []


def test_diff_summary():
    from taskql.diff import ImpactLevel, diff, summary_text

    result = diff(_explain("not done"), _explain("not done\ntag includes work"))
    s = result.summary
    assert (s.before_match_count, s.after_match_count) == (3, 1)
    assert s.match_count_change == -2
    assert s.lost_matches == 2
    assert s.impact_level == ImpactLevel.MAJOR
    assert summary_text(result) == "-2 matched"


def test_diff_detects_changed_reasons_only():
    from taskql.diff import ImpactLevel, diff

    result = diff(_explain("tag includes work"), _explain("tag includes work\npriority is high"))
    assert [e.task.name for e in result.now_unmatched] == ["Invoice"]
    report = result.still_matched[0]
    assert report.task.name == "Report"
    assert report.reasons_changed is False
    gym = next(e for e in result.still_unmatched if e.task.id == "task-gym")
    assert gym.reasons_changed is True
    assert len(gym.after_reasons) == 2
    assert result.summary.reasons_changed_count == 2
    assert result.summary.impact_level == ImpactLevel.MODERATE


def test_identical_explanations_have_no_impact():
    from taskql.diff import ImpactLevel, diff, summary_text

    explanation = _explain("not done")
    result = diff(explanation, explanation)
    assert result.summary.impact_level == ImpactLevel.NONE
    assert summary_text(result) == "No changes"


def test_task_present_in_one_snapshot_only():
    from taskql.diff import diff

    before = _explain("not done", _tasks()[:2])
    after = _explain("not done", _tasks())
    result = diff(before, after)
    assert [e.task.name for e in result.now_matched] == ["Gym"]
    assert [e.task.name for e in result.still_unmatched] == ["Invoice"]
    assert result.summary.total_tasks == 4


@pytest.mark.parametrize("changed,total,reasons,expected", [
    (0, 10, 0, "none"),
    (0, 10, 2, "minor"),
    (0, 0, 0, "none"),
    (1, 20, 0, "minor"),
    (1, 10, 0, "moderate"),
    (2, 10, 0, "moderate"),
    (3, 10, 0, "major"),
])
def test_impact_level(changed, total, reasons, expected):
    from taskql.diff import impact_level
    assert impact_level(changed, total, reasons).value == expected


def test_analyze_filter_changes_and_most_affected():
    from taskql.diff import analyze_filter_changes, diff, most_affected_tasks

    changes = analyze_filter_changes("not done\ntag includes home", "not done\ntag includes work")
    assert [(c.type, c.filter) for c in changes] == [
        ("removed", "tag includes home"),
        ("added", "tag includes work"),
    ]

    result = diff(_explain("tag includes home"), _explain("tag includes work"))
    affected = most_affected_tasks(result, limit=2)
    assert [e.task.name for e in affected] == ["Report", "Invoice"]


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------

def test_compose_prepends_global_filters():
    from taskql.composer import QueryComposer
    from taskql.parser import parse_query
    from taskql.query_ast import FilterType

    global_ast = parse_query("not done", REF)
    result = QueryComposer().compose("tag includes work", global_ast, REF)
    assert result.ignored_global is False
    assert [f.type for f in result.ast.filters] == [FilterType.DONE, FilterType.TAG]
    assert result.ast.ignore_global is True


def test_compose_honours_ignore_directive():
    from taskql.composer import QueryComposer
    from taskql.parser import parse_query

    global_ast = parse_query("not done", REF)
    for text in ("ignore global query\ntag includes work", "@ignoreGlobalFilter\ntag includes work"):
        result = QueryComposer().compose(text, global_ast, REF)
        assert result.ignored_global is True
        assert len(result.ast.filters) == 1


def test_compose_without_global():
    from taskql.composer import QueryComposer

    result = QueryComposer().compose("tag includes work", None, REF)
    assert result.ignored_global is False
    assert result.ast.ignore_global is False
    assert len(result.ast.filters) == 1


def test_composed_query_runs_global_once():
    from taskql.composer import QueryComposer
    from taskql.engine import InMemoryTaskSource, QueryEngine

    engine = QueryEngine(InMemoryTaskSource(_tasks()), now=lambda: REF)
    engine.set_global_filter("not done")
    composed = QueryComposer(engine.parser).compose("tag includes work", engine.parse("not done"), REF)
    explanation = engine.explain(composed.ast)
    assert explanation.global_filter_applied is False
    assert len(explanation.for_task("task-report").filter_explanations) == 2


def test_global_query_holder():
    from taskql.composer import GlobalQuery, GlobalQueryConfig

    holder = GlobalQuery(GlobalQueryConfig(enabled=True, query="not done"))
    assert holder.is_enabled()
    assert len(holder.ast.filters) == 1
    assert holder.error is None

    holder.update(GlobalQueryConfig(enabled=True, query="nonsense here"))
    assert holder.ast is None
    assert "Unknown filter" in holder.error

    holder.update(GlobalQueryConfig(enabled=False, query="not done"))
    assert not holder.is_enabled()
    assert holder.ast is None
