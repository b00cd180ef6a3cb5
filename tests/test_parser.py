import pytest
from datetime import date, datetime, timezone

REF = datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc)  # a Wednesday


def _parse(text, **kwargs):
    from taskql.parser import parse_query
    return parse_query(text, REF, **kwargs)


# ---------------------------------------------------------------------------
# Boolean structure
# ---------------------------------------------------------------------------

def test_and_binds_tighter_than_or():
    from taskql.query_ast import AndNode, FilterType, LeafNode, OrNode

    ast = _parse("priority is low OR priority is high AND done")
    (node,) = ast.filters
    assert isinstance(node, OrNode)
    assert isinstance(node.left, LeafNode)
    assert node.left.value == "low"
    assert isinstance(node.right, AndNode)
    assert node.right.left.value == "high"
    assert node.right.right.type == FilterType.DONE


def test_not_binds_to_next_filter_only():
    from taskql.query_ast import AndNode, FilterType

    (node,) = _parse("not done and priority is high").filters
    assert isinstance(node, AndNode)
    assert node.left.type == FilterType.DONE
    assert node.left.negate is True
    assert node.right.type == FilterType.PRIORITY
    assert node.right.negate is False


def test_not_before_parenthesized_group():
    from taskql.query_ast import NotNode, OrNode

    (node,) = _parse("not (tag includes work or tag includes home)").filters
    assert isinstance(node, NotNode)
    assert isinstance(node.inner, OrNode)


def test_or_chain_folds_left():
    from taskql.query_ast import OrNode

    (node,) = _parse("tag includes a or tag includes b or tag includes c").filters
    assert isinstance(node, OrNode)
    assert isinstance(node.left, OrNode)
    assert node.left.left.value == "a"
    assert node.right.value == "c"


def test_operator_words_inside_values_do_not_split():
    from taskql.query_ast import LeafNode

    (node,) = _parse("tag includes workorder").filters
    assert isinstance(node, LeafNode)
    assert node.value == "workorder"

    (node,) = _parse('description includes "salt and pepper"').filters
    assert isinstance(node, LeafNode)
    assert node.value == "salt and pepper"


def test_top_level_lines_are_separate_filters():
    ast = _parse("not done\ntag includes work\n\npath includes projects/")
    assert len(ast.filters) == 3


# ---------------------------------------------------------------------------
# between
# ---------------------------------------------------------------------------

def test_between_is_one_filter():
    from taskql.query_ast import LeafNode

    ast = _parse("due between 2024-01-01 and 2024-01-31")
    assert len(ast.filters) == 1
    node = ast.filters[0]
    assert isinstance(node, LeafNode)
    assert node.operator == "between"
    assert node.value.date == date(2024, 1, 1)
    assert node.value.end_date == date(2024, 1, 31)


def test_between_followed_by_and():
    from taskql.query_ast import AndNode, FilterType

    (node,) = _parse("due between 2024-01-01 and 2024-01-31 AND tag includes work").filters
    assert isinstance(node, AndNode)
    assert node.left.operator == "between"
    assert node.right.type == FilterType.TAG


def test_between_with_relative_dates():
    (node,) = _parse("scheduled between today and next friday").filters
    assert node.value.date == date(2024, 1, 17)
    assert node.value.end_date == date(2024, 1, 19)


def test_tag_value_named_between_still_splits():
    from taskql.query_ast import AndNode

    (node,) = _parse("tag includes between and done").filters
    assert isinstance(node, AndNode)
    assert node.left.value == "between"


def test_between_end_before_start_is_error():
    from taskql.errors import QuerySyntaxError

    with pytest.raises(QuerySyntaxError, match="ends before it starts"):
        _parse("due between 2024-02-01 and 2024-01-01")


# ---------------------------------------------------------------------------
# Atomic filters
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("text,operator,expected", [
    ("due before tomorrow", "before", date(2024, 1, 18)),
    ("due on or before in 3 days", "on-or-before", date(2024, 1, 20)),
    ("start after 2 weeks ago", "after", date(2024, 1, 3)),
    ("created on yesterday", "on", date(2024, 1, 16)),
])
def test_date_comparisons(text, operator, expected):
    (node,) = _parse(text).filters
    assert node.operator == operator
    assert node.value.date == expected


def test_on_or_before_is_not_an_or():
    from taskql.query_ast import OrNode

    (node,) = _parse("due on or before today OR tag includes work").filters
    assert isinstance(node, OrNode)
    assert node.left.operator == "on-or-before"
    assert node.right.value == "work"


def test_date_presence():
    from taskql.query_ast import DateField

    has, no = _parse("has due date\nno scheduled date").filters
    assert has.operator == "has"
    assert has.value.field == DateField.DUE
    assert no.operator == "no"
    assert no.value.field == DateField.SCHEDULED


@pytest.mark.parametrize("text,operator,value", [
    ("priority is high", "is", "high"),
    ("priority above normal", "above", "normal"),
    ("priority >= medium", "at-least", "medium"),
    ("priority at most low", "at-most", "low"),
    ("priority is urgent", "is", "highest"),
])
def test_priority(text, operator, value):
    (node,) = _parse(text).filters
    assert node.operator == operator
    assert node.value == value


def test_scores_and_lane():
    urgency, escalation, attention, lane = _parse(
        "urgency above 7.5\nescalation at least critical\nattention >= 60\nlane is do now"
    ).filters
    assert urgency.value == 7.5
    assert escalation.operator == "at-least"
    assert escalation.value == 2
    assert attention.value == 60
    assert lane.value == "DO_NOW"


def test_status_filters():
    type_, name, symbol = _parse(
        'status.type is in progress\nstatus.name includes Prog\nstatus.symbol is " "'
    ).filters
    assert type_.value == "IN_PROGRESS"
    assert name.value == "Prog"
    assert symbol.value == " "


def test_tags_and_text():
    from taskql.query_ast import FilterType

    tag, not_tag, no_tags, path = _parse(
        "tag includes #work\ntag does not include home\nno tags\npath includes projects/"
    ).filters
    assert tag.value == "work"
    assert not_tag.negate is True
    assert no_tags.type == FilterType.TAG
    assert no_tags.operator == "has"
    assert no_tags.negate is True
    assert path.type == FilterType.PATH


def test_regex_literal():
    from taskql.query_ast import FilterType

    tag_re, not_path_re = _parse("tag regex /^wo.k$/i\nnot path regex /archive\\/old/").filters
    assert tag_re.type == FilterType.TAG_REGEX
    assert tag_re.value.pattern == "^wo.k$"
    assert tag_re.value.flags == "i"
    assert not_path_re.negate is True
    assert not_path_re.value.pattern == "archive/old"


def test_flag_filters():
    from taskql.query_ast import FilterType

    blocked, not_blocking, recurring = _parse("is blocked\nis not blocking\nis recurring").filters
    assert blocked.type == FilterType.DEPENDENCY
    assert blocked.operator == "blocked"
    assert not_blocking.negate is True
    assert recurring.type == FilterType.RECURRENCE


def test_aliases():
    from taskql.query_ast import AndNode, FilterType, NotNode, OrNode

    (node,) = _parse("done && tag includes a").filters
    assert isinstance(node, AndNode)
    (node,) = _parse("done || tag includes a").filters
    assert isinstance(node, OrNode)
    (node,) = _parse("-done").filters
    assert node.type == FilterType.DONE
    assert node.negate is True
    (node,) = _parse("!is blocked").filters
    assert isinstance(node, NotNode)
    (node,) = _parse("has tags except tag includes home").filters
    assert isinstance(node, AndNode)
    assert isinstance(node.right, NotNode)


def test_trailing_except_is_a_value():
    from taskql.query_ast import FilterType

    (node,) = _parse("description includes except").filters
    assert node.type == FilterType.DESCRIPTION
    assert node.value == "except"
    (node,) = _parse('description includes "except this"').filters
    assert node.value == "except this"


def test_hyphen_inside_value_is_not_negation():
    (node,) = _parse("path includes my-notes").filters
    assert node.value == "my-notes"


# ---------------------------------------------------------------------------
# Layout and directives
# ---------------------------------------------------------------------------

def test_multi_field_sort():
    ast = _parse("sort by priority reverse, due")
    assert [(f.field, f.reverse) for f in ast.sort.fields] == [("priority", True), ("due", False)]
    assert ast.sort.field == "priority"
    assert ast.sort.reverse is True


def test_group_limit_explain():
    ast = _parse("group by status.type\nlimit to 5 tasks\nexplain")
    assert ast.group.field == "status.type"
    assert ast.limit == 5
    assert ast.explain is True


def test_directives():
    ast = _parse("ignore global query\n@profile weekly\ndone")
    assert ast.ignore_global is True
    assert ast.profile == "weekly"
    assert _parse("@ignoreGlobalFilter").ignore_global is True


def test_placeholders_resolved_before_parsing():
    from taskql.placeholders import QueryContext

    ctx = QueryContext(file_path="projects/alpha/notes.md")
    (node,) = _parse("path includes {{query.file.folder}}", context=ctx).filters
    assert node.value == "projects/alpha"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("text,message", [
    ("sort by", "Sort instruction requires a field"),
    ("sort by due, ", "Empty sort field"),
    ("sort by due backwards", "Invalid sort field"),
    ("group by", "Group instruction requires a field"),
    ("limit many", "Invalid limit"),
    ("@profile", "Profile directive requires a name"),
    ("priority is extreme", "Invalid priority"),
    ("escalation is 9", "Invalid escalation level"),
    ("lane is somewhere", "Unknown attention lane"),
    ("status.type is sleeping", "Unknown status type"),
    ("tag regex /abc/g", "Unsupported flag"),
    ("tag regex /(/", "Invalid regex pattern"),
    ("frobnicate the tasks", "Unknown filter"),
    ("done and", "Empty filter expression"),
])
def test_syntax_errors(text, message):
    from taskql.errors import QuerySyntaxError

    with pytest.raises(QuerySyntaxError, match=message) as exc:
        _parse(text)
    assert exc.value.hint


def test_error_position():
    from taskql.errors import QuerySyntaxError

    with pytest.raises(QuerySyntaxError) as exc:
        _parse("not done\n\ndue before whenever")
    assert exc.value.line == 3
    assert exc.value.column == 12
    assert "line 3, column 12" in str(exc.value)


def test_unbalanced_parentheses():
    from taskql.errors import QuerySyntaxError

    with pytest.raises(QuerySyntaxError, match="missing"):
        _parse("(done")
    with pytest.raises(QuerySyntaxError, match="unexpected") as exc:
        _parse("done)")
    assert exc.value.column == 5


def test_parse_is_all_or_nothing():
    from taskql.parser import QueryParser

    valid, error = QueryParser().validate("done\nbogus line", REF)
    assert valid is False
    assert error.line == 2
    assert QueryParser().validate("done", REF) == (True, None)


# ---------------------------------------------------------------------------
# Canonical round trip
# ---------------------------------------------------------------------------

ROUND_TRIP_QUERIES = [
    "not done\ndue before in 7 days\nsort by priority reverse, due\nlimit 10",
    "priority is low OR priority is high AND done",
    "not (tag includes work or path includes archive)",
    'due between 2024-01-01 and 2024-01-31 AND status.symbol is " "',
    "tag regex /^wo\\/rk$/i\nnot description regex /draft/\ngroup by tags",
    "urgency above 2.5\nescalation at least warning\nattention below 40\nlane is blocked",
    "has tags\nno due date\nis not blocked\nis recurring\nheading includes Inbox",
]


@pytest.mark.parametrize("text", ROUND_TRIP_QUERIES)
def test_reserialized_query_parses_to_same_ast(text):
    from taskql.query_ast import canonical_json, to_query_string

    first = _parse(text)
    second = _parse(to_query_string(first))
    assert second.filters == first.filters
    assert canonical_json(second) == canonical_json(first)
