import pytest
from datetime import date, datetime, timedelta, timezone

REF = datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc)  # a Wednesday


@pytest.mark.parametrize("expr,expected", [
    ("2024-03-05", date(2024, 3, 5)),
    ("today", date(2024, 1, 17)),
    ("Tomorrow", date(2024, 1, 18)),
    ("yesterday", date(2024, 1, 16)),
    ("in 3 days", date(2024, 1, 20)),
    ("in 2 weeks", date(2024, 1, 31)),
    ("3 days ago", date(2024, 1, 14)),
    ("1 month ago", date(2023, 12, 17)),
    ("next friday", date(2024, 1, 19)),
    ("next wednesday", date(2024, 1, 24)),
    ("last monday", date(2024, 1, 15)),
    ("last wednesday", date(2024, 1, 10)),
    ("wednesday", date(2024, 1, 17)),
    ("monday", date(2024, 1, 22)),
    ("this week", date(2024, 1, 15)),
    ("next week", date(2024, 1, 22)),
    ("last month", date(2023, 12, 1)),
    ("next month", date(2024, 2, 1)),
])
def test_resolve_date(expr, expected):
    from taskql.dates import resolve_date
    assert resolve_date(expr, REF) == expected


def test_month_arithmetic_clamps_to_month_end():
    from taskql.dates import resolve_date
    assert resolve_date("in 1 month", date(2024, 1, 31)) == date(2024, 2, 29)


@pytest.mark.parametrize("expr", ["", "whenever", "2024-02-30", "in x days", "next fortnight"])
def test_resolve_date_rejects(expr):
    from taskql.dates import resolve_date
    assert resolve_date(expr, REF) is None


def test_parse_timestamp():
    from taskql.dates import parse_timestamp

    parsed = parse_timestamp("2026-02-13T09:00:00.000+0000")
    assert parsed == datetime(2026, 2, 13, 9, 0, tzinfo=timezone.utc)

    naive = parse_timestamp("2024-01-05")
    assert naive.tzinfo is not None
    assert naive.date() == date(2024, 1, 5)

    assert parse_timestamp(date(2024, 1, 5)).date() == date(2024, 1, 5)
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None
    assert parse_timestamp("not a date at all") is None


def test_parse_timestamp_keeps_offset():
    from taskql.dates import parse_timestamp

    parsed = parse_timestamp("2024-01-05T23:30:00-05:00")
    assert parsed.utcoffset() == timedelta(hours=-5)


def test_format_date():
    from taskql.dates import format_date

    assert format_date(None) == "none"
    assert format_date(REF) == "2024-01-17"


# ---------------------------------------------------------------------------
# Regex helpers
# ---------------------------------------------------------------------------

def test_parse_regex_literal():
    from taskql.regex_matcher import parse_regex_literal

    spec = parse_regex_literal("/a\\/b/im")
    assert spec.pattern == "a/b"
    assert spec.flags == "im"

    assert parse_regex_literal("/abc/").flags == ""
    assert parse_regex_literal("abc") is None
    assert parse_regex_literal("/") is None
    assert parse_regex_literal("/abc\\/") is None


@pytest.mark.parametrize("flags,message", [
    ("g", "Unsupported flag"),
    ("iy", "Unsupported flag"),
    ("x", "Unknown flag"),
    ("ii", "Duplicate flags found"),
])
def test_validate_flags_errors(flags, message):
    from taskql.regex_matcher import validate_flags
    assert message in validate_flags(flags)


def test_validate_flags_ok():
    from taskql.regex_matcher import validate_flags
    assert validate_flags("") is None
    assert validate_flags("imsu") is None


def test_validate_pattern():
    from taskql.regex_matcher import MAX_PATTERN_LENGTH, validate_pattern

    assert validate_pattern("^work$") is None
    assert "empty" in validate_pattern("")
    assert "too long" in validate_pattern("a" * (MAX_PATTERN_LENGTH + 1))
    assert "Invalid regex syntax" in validate_pattern("(unclosed")


def test_compile_regex_flags():
    from taskql.query_ast import RegexSpec
    from taskql.regex_matcher import compile_regex, safe_search

    compiled = compile_regex(RegexSpec(pattern="^work", flags="i"))
    assert safe_search(compiled, "WORK items")
    assert not safe_search(compiled, "homework")

    with pytest.raises(ValueError):
        compile_regex(RegexSpec(pattern="a", flags="g"))


def test_safe_search_never_raises():
    import re
    from taskql.regex_matcher import safe_search

    assert safe_search(re.compile("a"), None) is False
