def _make_task(name, **fields):
    from taskql.models import Task
    return Task(id=f"task-{name.lower()}", name=name, **fields)


def test_format_task_md():
    from taskql.formatting import format_task_md

    text = format_task_md(_make_task("Ship", priority="high", due_at="2024-01-20", tags=["work"], path="a/b.md"))
    first, details = text.split("\n")
    assert first == "- [ ] ⏫ Ship"
    assert "priority High" in details
    assert "due 2024-01-20" in details
    assert "#work" in details
    assert "a/b.md" in details


def test_normal_priority_has_no_icon():
    from taskql.formatting import format_task_md

    assert format_task_md(_make_task("Plain", status_symbol="x")).startswith("- [x] Plain\n")


def test_format_tasks_md_empty():
    from taskql.formatting import format_tasks_md

    assert format_tasks_md([]) == "No tasks found."
    assert format_tasks_md([_make_task("One")], title="Inbox").startswith("# Inbox (1)")


def test_truncate_response():
    from taskql.formatting import CHARACTER_LIMIT, truncate_response

    short = "ok"
    assert truncate_response(short) == short
    long = "x" * (CHARACTER_LIMIT + 100)
    truncated = truncate_response(long)
    assert truncated.startswith("x" * CHARACTER_LIMIT)
    assert "Response truncated" in truncated


def test_format_syntax_error_md():
    from taskql.errors import QuerySyntaxError
    from taskql.formatting import format_syntax_error_md

    text = format_syntax_error_md(QuerySyntaxError("Invalid limit: 'x'", 2, 7, "Use 'limit N'"))
    assert "line 2, column 7" in text
    assert "**Hint**: Use 'limit N'" in text
