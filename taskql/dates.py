"""Date helpers: task timestamp parsing and query date expressions.

Query dates are resolved to calendar days relative to a reference time.
Supported expressions:

    2024-01-31                  absolute
    today, tomorrow, yesterday
    in 3 days, in 2 weeks, in 1 month
    3 days ago, 2 weeks ago, 1 month ago
    next friday, last monday, friday
    this week, next week, last week      (Monday of that week)
    this month, next month, last month   (first day of that month)
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

DATE_HINT = (
    "Use YYYY-MM-DD, today, tomorrow, yesterday, 'in N days', 'N days ago', "
    "'next <weekday>' or 'this/next/last week|month'"
)

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_RELATIVE_IN = re.compile(r"^in\s+(\d+)\s+(day|days|week|weeks|month|months)$")
_RELATIVE_AGO = re.compile(r"^(\d+)\s+(day|days|week|weeks|month|months)\s+ago$")
_NEXT_LAST_DAY = re.compile(rf"^(next|last)\s+({'|'.join(WEEKDAYS)})$")
_PERIOD = re.compile(r"^(this|next|last)\s+(week|month)$")


def parse_timestamp(value: str | date | datetime | None) -> datetime | None:
    """Parse a task timestamp to an aware datetime. Returns None if unparseable.

    Naive values are treated as UTC. Handles offsets without a colon, such as
    "2026-02-13T09:00:00.000+0000" as well as plain ISO dates.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = date_parser.isoparse(value)
        except (ValueError, TypeError):
            try:
                parsed = date_parser.parse(value)
            except (ValueError, TypeError, OverflowError):
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_day(value: date | datetime) -> date:
    """Truncate a datetime to its calendar day."""
    if isinstance(value, datetime):
        return value.date()
    return value


def _shift(base: date, amount: int, unit: str) -> date:
    if unit.startswith("day"):
        return base + timedelta(days=amount)
    if unit.startswith("week"):
        return base + timedelta(weeks=amount)
    return base + relativedelta(months=amount)


def resolve_date(text: str, reference: date | datetime) -> date | None:
    """Resolve a date expression to a calendar day, or None if not understood."""
    expr = " ".join(text.strip().lower().split())
    if not expr:
        return None
    today = to_day(reference)

    m = _ISO_DATE.match(expr)
    if m:
        try:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        except ValueError:
            return None

    if expr == "today":
        return today
    if expr == "tomorrow":
        return today + timedelta(days=1)
    if expr == "yesterday":
        return today - timedelta(days=1)

    m = _RELATIVE_IN.match(expr)
    if m:
        return _shift(today, int(m.group(1)), m.group(2))

    m = _RELATIVE_AGO.match(expr)
    if m:
        return _shift(today, -int(m.group(1)), m.group(2))

    m = _NEXT_LAST_DAY.match(expr)
    if m:
        delta = WEEKDAYS.index(m.group(2)) - today.weekday()
        if m.group(1) == "next":
            if delta <= 0:
                delta += 7
        elif delta >= 0:
            delta -= 7
        return today + timedelta(days=delta)

    if expr in WEEKDAYS:
        delta = WEEKDAYS.index(expr) - today.weekday()
        if delta < 0:
            delta += 7
        return today + timedelta(days=delta)

    m = _PERIOD.match(expr)
    if m:
        step = {"this": 0, "next": 1, "last": -1}[m.group(1)]
        if m.group(2) == "week":
            monday = today - timedelta(days=today.weekday())
            return monday + timedelta(weeks=step)
        return today.replace(day=1) + relativedelta(months=step)

    return None


def format_date(value: date | datetime | None) -> str:
    """Render a date for explanations. Missing dates render as 'none'."""
    if value is None:
        return "none"
    return to_day(value).isoformat()
