import pytest
from datetime import datetime, timezone

REF = datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc)


def _make_task(name, **fields):
    """Helper to build a Task."""
    from taskql.models import Task
    return Task(id=f"task-{name.lower().replace(' ', '-')}", name=name, **fields)


def _predicate(text, context=None):
    from taskql.parser import parse_query
    from taskql.predicates import EvaluationContext, build_predicate

    (node,) = parse_query(text, REF).filters
    return build_predicate(node, context or EvaluationContext(reference_time=REF))


class _Graph:
    def __init__(self, blocked=(), blocking=()):
        self.blocked = set(blocked)
        self.blocking = set(blocking)

    def is_blocked(self, task_id):
        return task_id in self.blocked

    def is_blocking(self, task_id):
        return task_id in self.blocking


# ---------------------------------------------------------------------------
# Leaves
# ---------------------------------------------------------------------------

def test_done_and_not_done():
    done = _make_task("Filed", status_symbol="x")
    open_ = _make_task("Open")
    assert _predicate("done").matches(done)
    assert not _predicate("done").matches(open_)
    assert _predicate("not done").matches(open_)


def test_status_predicates():
    task = _make_task("Working", status_symbol="/")
    assert _predicate("status.type is in_progress").matches(task)
    assert _predicate("status.name includes progress").matches(task)
    assert _predicate('status.symbol is "/"').matches(task)
    assert not _predicate("status.type is todo").matches(task)


def test_date_comparisons_by_day():
    task = _make_task("Dentist", due_at="2024-01-17T23:59:00+00:00")
    assert _predicate("due on today").matches(task)
    assert _predicate("due on or before today").matches(task)
    assert not _predicate("due before today").matches(task)
    assert _predicate("due between 2024-01-01 and 2024-01-17").matches(task)
    assert _predicate("has due date").matches(task)
    assert not _predicate("no due date").matches(task)


def test_missing_date_never_compares():
    task = _make_task("Someday")
    for text in ("due before today", "due after today", "due on today",
                 "due between 2000-01-01 and 2100-01-01"):
        assert not _predicate(text).matches(task)
    assert _predicate("no due date").matches(task)


def test_priority_ordinal():
    high = _make_task("High", priority="high")
    low = _make_task("Low", priority="low")
    above = _predicate("priority above normal")
    assert above.matches(high)
    assert not above.matches(low)
    assert _predicate("priority <= low").matches(low)
    assert _predicate("priority is high").matches(high)


def test_scores_use_context():
    from taskql.models import AttentionLane, AttentionProfile
    from taskql.predicates import EvaluationContext

    task = _make_task("Scored")
    other = _make_task("Unscored")
    ctx = EvaluationContext(
        reference_time=REF,
        urgency_scorer=lambda t, now: 9.0 if t.id == task.id else 1.0,
        escalation_scorer=lambda t, now: 2,
        attention_profiles={task.id: AttentionProfile(score=75, lane=AttentionLane.DO_NOW)},
    )
    assert _predicate("urgency above 5", ctx).matches(task)
    assert not _predicate("urgency above 5", ctx).matches(other)
    assert _predicate("escalation is critical", ctx).matches(task)
    assert _predicate("attention at least 70", ctx).matches(task)
    assert _predicate("lane is do_now", ctx).matches(task)
    # no attention profile
    assert not _predicate("attention below 100", ctx).matches(other)
    assert not _predicate("lane is watchlist", ctx).matches(other)


def test_scores_without_scorers_default_to_zero():
    task = _make_task("Plain")
    assert _predicate("urgency is 0").matches(task)
    assert _predicate("escalation is on-time").matches(task)


def test_tag_substring_case_insensitive():
    task = _make_task("Tagged", tags=["Work/ClientA", "home"])
    assert _predicate("tag includes clienta").matches(task)
    assert _predicate("tag does not include garden").matches(task)
    assert _predicate("has tags").matches(task)
    assert _predicate("no tags").matches(_make_task("Bare"))


def test_text_fields():
    task = _make_task(
        "Call plumber", description="Ask about the boiler", heading="Chores", path="home/house.md",
    )
    assert _predicate("description includes BOILER").matches(task)
    assert _predicate("description includes plumber").matches(task)
    assert _predicate("heading includes chore").matches(task)
    assert _predicate("path includes home/").matches(task)
    assert _predicate("path does not include work/").matches(task)


def test_regex_predicates():
    task = _make_task("Draft plan", tags=["proj-alpha"], path="work/alpha.md")
    assert _predicate("tag regex /^proj-/").matches(task)
    assert _predicate("path regex /ALPHA/i").matches(task)
    assert not _predicate("path regex /ALPHA/").matches(task)
    assert _predicate("description regex /^draft/i").matches(task)
    assert not _predicate("not tag regex /alpha$/").matches(task)


def test_uncompilable_regex_matches_nothing():
    from taskql.predicates import RegexPredicate
    from taskql.query_ast import FilterType, RegexSpec

    predicate = RegexPredicate(FilterType.TAG_REGEX, RegexSpec(pattern="("))
    task = _make_task("Any", tags=["x"])
    assert predicate.matches(task) is False
    assert "invalid regex" in predicate.explain_mismatch(task)


def test_dependency_needs_graph():
    from taskql.predicates import EvaluationContext

    task = _make_task("Waiting")
    assert not _predicate("is blocked").matches(task)
    assert not _predicate("is not blocked").matches(task)

    ctx = EvaluationContext(reference_time=REF, dependency_graph=_Graph(blocked={task.id}))
    assert _predicate("is blocked", ctx).matches(task)
    assert not _predicate("is blocking", ctx).matches(task)
    assert _predicate("is not blocking", ctx).matches(task)


def test_recurrence():
    assert _predicate("is recurring").matches(_make_task("Weekly", recurrence="every week"))
    assert _predicate("is not recurring").matches(_make_task("Once"))


# ---------------------------------------------------------------------------
# Combinators and explanations
# ---------------------------------------------------------------------------

def test_boolean_combinators():
    task = _make_task("Mixed", priority="high", tags=["work"])
    assert _predicate("priority is high and tag includes work").matches(task)
    assert not _predicate("priority is low and tag includes work").matches(task)
    assert _predicate("priority is low or tag includes work").matches(task)
    assert _predicate("not (priority is low or tag includes home)").matches(task)


def test_leaf_explanations_name_actual_value():
    task = _make_task("Report", priority="low")
    predicate = _predicate("priority above normal")
    assert predicate.explain() == "priority above normal"
    matched, reason = predicate.reason(task)
    assert matched is False
    assert reason == 'Task "Report" has priority low, which does not satisfy "priority above normal"'


def test_and_explanation_names_failing_side():
    task = _make_task("Report", priority="high")
    predicate = _predicate("priority is high and tag includes work")
    assert "fails second condition" in predicate.explain_mismatch(task)

    predicate = _predicate("priority is low and tag includes work")
    assert "NEITHER" in predicate.explain_mismatch(task)


def test_or_and_not_explanations():
    task = _make_task("Report", priority="high")
    assert "matches first condition" in _predicate("priority is high or tag includes x").explain_match(task)
    assert "fails NOT because" in _predicate("not priority is high").explain_mismatch(task)


def test_unknown_operator_is_execution_error():
    from taskql.errors import QueryExecutionError
    from taskql.predicates import build_predicate
    from taskql.query_ast import FilterType, LeafNode

    with pytest.raises(QueryExecutionError):
        build_predicate(LeafNode(type=FilterType.TAG, operator="equals", value="x"))
    with pytest.raises(QueryExecutionError):
        build_predicate(LeafNode(type=FilterType.PRIORITY, operator="near", value="high"))
