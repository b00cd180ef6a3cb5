"""Query parser: query text -> QueryAST.

One instruction per line. Lines are either directives (``ignore global
query``, ``@ignoreGlobalFilter``, ``@profile <name>``), layout instructions
(``sort by``, ``group by``, ``limit``, ``explain``), or filters. Filter lines
may combine atomic filters with NOT / AND / OR (highest to lowest
precedence) and parentheses.

Parsing is all-or-nothing: any malformed line raises QuerySyntaxError and no
partial AST is returned.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from functools import partial
from typing import Callable, NamedTuple, Optional

from taskql import regex_matcher
from taskql.dates import DATE_HINT, resolve_date
from taskql.errors import QuerySyntaxError
from taskql.models import AttentionLane, StatusType, parse_priority
from taskql.placeholders import QueryContext, has_placeholders, resolve_placeholders
from taskql.query_ast import (
    AndNode,
    DateCondition,
    DateField,
    ESCALATION_LEVELS,
    FilterNode,
    FilterType,
    GroupSpec,
    LeafNode,
    NotNode,
    OrNode,
    QueryAST,
    RegexSpec,
    SortField,
    SortSpec,
)

logger = logging.getLogger(__name__)

DATE_FIELDS = [f.value for f in DateField]

PRIORITY_HINT = "Use one of: lowest, low, normal, medium, high, highest"
ESCALATION_HINT = "Use one of: on-time, warning, critical, severe (or 0-3)"
FILTER_HINT = (
    "Try e.g. 'not done', 'due before tomorrow', 'priority above normal', "
    "'tag includes work', 'path includes projects/' or 'is blocked'. "
    "Quote values that contain and, or, not or except"
)

_SYMBOL_OPERATORS = {
    "=": "is",
    ">": "above",
    "<": "below",
    ">=": "at-least",
    "<=": "at-most",
}

_WORD_OPERATORS = {
    "is": "is",
    "above": "above",
    "below": "below",
    "at least": "at-least",
    "at most": "at-most",
}

_SORT_RE = re.compile(r"^sort\s+by\b(.*)$", re.IGNORECASE)
_GROUP_RE = re.compile(r"^group\s+by\b(.*)$", re.IGNORECASE)
_LIMIT_RE = re.compile(r"^limit\b(.*)$", re.IGNORECASE)
_LIMIT_VALUE_RE = re.compile(r"^(?:to\s+)?(\d+)(?:\s+tasks?)?$", re.IGNORECASE)
_SORT_KEY_RE = re.compile(r"^([a-z][a-z.]*)(?:\s+(reverse))?$", re.IGNORECASE)
_FIELD_RE = re.compile(r"^[a-z][a-z.]*$", re.IGNORECASE)
_PROFILE_RE = re.compile(r"^@profile\b(.*)$", re.IGNORECASE)

# Quoted strings and regex literals are opaque to operator detection.
_PROTECTED_RE = re.compile(
    r"\"[^\"]*\"|'[^']*'|(?<=regex )/(?:\\.|[^/\\])+/[a-z]*",
    re.IGNORECASE,
)
_BETWEEN_OPEN_RE = re.compile(
    rf"\b(?:{'|'.join(DATE_FIELDS)})\s+between\s+(?P<start>.+)$",
    re.IGNORECASE,
)
_BETWEEN_SPLIT_RE = re.compile(r"\s+and\s+", re.IGNORECASE)
_ON_OR_RE = re.compile(
    rf"\b(?:{'|'.join(DATE_FIELDS)})\s+on\s*$",
    re.IGNORECASE,
)
_BEFORE_AFTER_RE = re.compile(r"^\s+(?:before|after)\b", re.IGNORECASE)
_ALIAS_NOT_RE = re.compile(r"(?:^|(?<=\s)|(?<=\())[-!](?=[a-z(])", re.IGNORECASE)
# "except" only joins two filters when text follows it; a trailing one is a value.
_EXCEPT_RE = re.compile(r"\bexcept\s+(?=\S)", re.IGNORECASE)
_MASK = "\x00"


class _Rule(NamedTuple):
    prefix: str
    pattern: re.Pattern
    build: Callable[..., LeafNode]
    exact: bool


class _Position(NamedTuple):
    line: int
    column: int


def _prefix_pattern(prefix: str, exact: bool) -> re.Pattern:
    words = prefix.split()
    body = re.escape(words[0])
    for prev, word in zip(words, words[1:]):
        sep = r"\s+" if prev[-1].isalnum() and word[0].isalnum() else r"\s*"
        body += sep + re.escape(word)
    if exact:
        return re.compile(rf"^{body}\s*$", re.IGNORECASE)
    if prefix[-1].isalnum():
        return re.compile(rf"^{body}(?=\s|$)", re.IGNORECASE)
    return re.compile(rf"^{body}", re.IGNORECASE)


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def _mask_protected(text: str) -> str:
    """Blank out quoted strings and regex literals, keeping offsets intact."""
    def _blank(m: re.Match) -> str:
        s = m.group(0)
        return s[0] + _MASK * (len(s) - 2) + s[-1] if len(s) >= 2 else s
    return _PROTECTED_RE.sub(_blank, text)


class QueryParser:
    """Parses query text into a QueryAST.

    Usage:
        parser = QueryParser()
        ast = parser.parse("not done\\nsort by due")
    """

    def __init__(self, reference_time: datetime | date | None = None) -> None:
        self._reference_time = reference_time
        self._grammar = self._build_grammar()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse(
        self,
        text: str,
        reference_time: datetime | date | None = None,
        context: QueryContext | None = None,
    ) -> QueryAST:
        """Parse a full query. Raises QuerySyntaxError on any malformed line."""
        reference = reference_time or self._reference_time or datetime.now(timezone.utc)
        if context is not None and has_placeholders(text):
            text = resolve_placeholders(text, context)

        ast = QueryAST()
        filters: list[FilterNode] = []

        for line_no, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if not line:
                continue
            lower = line.lower()

            if lower in ("ignore global query", "@ignoreglobalfilter"):
                ast.ignore_global = True
                continue

            m = _PROFILE_RE.match(line)
            if m:
                name = m.group(1).strip()
                if not name:
                    raise QuerySyntaxError(
                        "Profile directive requires a name", line_no, len(line) + 1,
                        "Use '@profile <name>'",
                    )
                ast.profile = name
                continue

            m = _SORT_RE.match(line)
            if m:
                ast.sort = self._parse_sort(m.group(1), line, line_no)
                continue

            m = _GROUP_RE.match(line)
            if m:
                ast.group = self._parse_group(m.group(1), line, line_no)
                continue

            m = _LIMIT_RE.match(line)
            if m:
                ast.limit = self._parse_limit(m.group(1), line, line_no)
                continue

            if lower == "explain":
                ast.explain = True
                continue

            filters.append(self.parse_filter(line, line_no, reference))

        ast.filters = filters
        logger.debug(f"Parsed query with {len(filters)} filter(s), sort={ast.sort is not None}, group={ast.group is not None}")
        return ast

    def validate(
        self, text: str, reference_time: datetime | date | None = None
    ) -> tuple[bool, Optional[QuerySyntaxError]]:
        """Return (True, None) if the query parses, else (False, error)."""
        try:
            self.parse(text, reference_time)
        except QuerySyntaxError as e:
            return False, e
        return True, None

    def parse_filter(
        self,
        line: str,
        line_no: int = 1,
        reference_time: datetime | date | None = None,
    ) -> FilterNode:
        """Parse one filter instruction into a FilterNode."""
        reference = reference_time or self._reference_time or datetime.now(timezone.utc)
        text = self._normalize_aliases(line.strip())
        self._check_parentheses(text, line, line_no)
        return self._parse_expression(text, _Position(line_no, 1), line, reference)

    # ------------------------------------------------------------------
    # Layout instructions
    # ------------------------------------------------------------------

    def _parse_sort(self, rest: str, line: str, line_no: int) -> SortSpec:
        if not rest.strip():
            raise QuerySyntaxError(
                "Sort instruction requires a field", line_no, len(line) + 1,
                "Use 'sort by <field> [reverse]', e.g. 'sort by due, priority reverse'",
            )
        keys = []
        search_from = len(line) - len(rest)
        for part in rest.split(","):
            column = search_from + 1
            search_from += len(part) + 1
            key = part.strip()
            m = _SORT_KEY_RE.match(key)
            if not m:
                raise QuerySyntaxError(
                    f"Invalid sort field: '{key}'" if key else "Empty sort field",
                    line_no, column + len(part) - len(part.lstrip()),
                    "Each sort key is a field name optionally followed by 'reverse'",
                )
            keys.append(SortField(field=m.group(1).lower(), reverse=bool(m.group(2))))
        return SortSpec(fields=tuple(keys))

    def _parse_group(self, rest: str, line: str, line_no: int) -> GroupSpec:
        field = rest.strip()
        if not _FIELD_RE.match(field):
            raise QuerySyntaxError(
                f"Invalid group field: '{field}'" if field else "Group instruction requires a field",
                line_no, len(line) - len(rest.lstrip()) + 1,
                "Use 'group by <field>', e.g. 'group by status.type'",
            )
        return GroupSpec(field=field.lower())

    def _parse_limit(self, rest: str, line: str, line_no: int) -> int:
        m = _LIMIT_VALUE_RE.match(rest.strip())
        if not m:
            raise QuerySyntaxError(
                f"Invalid limit: '{rest.strip()}'",
                line_no, len(line) - len(rest.lstrip()) + 1,
                "Use 'limit N' or 'limit to N tasks'",
            )
        return int(m.group(1))

    # ------------------------------------------------------------------
    # Boolean expressions
    # ------------------------------------------------------------------

    def _normalize_aliases(self, text: str) -> str:
        """Rewrite &&, ||, leading -/! and 'except' outside quoted values."""
        out: list[str] = []
        last = 0
        for m in _PROTECTED_RE.finditer(text):
            out.append(self._normalize_segment(text[last:m.start()], "".join(out)))
            out.append(m.group(0))
            last = m.end()
        out.append(self._normalize_segment(text[last:], "".join(out)))
        return "".join(out)

    @staticmethod
    def _normalize_segment(segment: str, before: str) -> str:
        segment = segment.replace("&&", " AND ").replace("||", " OR ")
        segment = _EXCEPT_RE.sub("AND NOT ", segment)

        def _not_alias(m: re.Match) -> str:
            head = (before + segment[:m.start()]).rstrip()
            if not head or head.endswith("(") or re.search(r"\b(?:and|or|not)$", head, re.IGNORECASE):
                return "not "
            return m.group(0)

        return _ALIAS_NOT_RE.sub(_not_alias, segment)

    def _check_parentheses(self, text: str, line: str, line_no: int) -> None:
        masked = _mask_protected(text)
        opened: list[int] = []
        for i, ch in enumerate(masked):
            if ch == "(":
                opened.append(i)
            elif ch == ")":
                if not opened:
                    raise QuerySyntaxError(
                        "Unbalanced parentheses: unexpected ')'", line_no, i + 1,
                        "Remove the extra ')' or add a matching '('",
                    )
                opened.pop()
        if opened:
            raise QuerySyntaxError(
                "Unbalanced parentheses: missing ')'", line_no, opened[-1] + 1,
                "Close every '(' with a matching ')'",
            )

    def _parse_expression(
        self, text: str, pos: _Position, line: str, reference: datetime | date
    ) -> FilterNode:
        stripped = text.strip()
        pos = _Position(pos.line, pos.column + len(text) - len(text.lstrip()))
        if not stripped:
            raise QuerySyntaxError(
                "Empty filter expression", pos.line, pos.column,
                "Every AND/OR needs a filter on both sides",
            )

        masked = _mask_protected(stripped)
        if self._is_wrapped(masked):
            return self._parse_expression(
                stripped[1:-1], _Position(pos.line, pos.column + 1), line, reference
            )

        for op, node_cls in (("or", OrNode), ("and", AndNode)):
            parts = self._split_top_level(stripped, masked, op)
            if len(parts) > 1:
                nodes = [
                    self._parse_expression(part, _Position(pos.line, pos.column + start), line, reference)
                    for start, part in parts
                ]
                result = nodes[0]
                for node in nodes[1:]:
                    result = node_cls(left=result, right=node)
                return result

        if re.match(r"^not\b", stripped, re.IGNORECASE) and self._match_rule(stripped) is None:
            inner = stripped[3:]
            return NotNode(
                inner=self._parse_expression(inner, _Position(pos.line, pos.column + 3), line, reference)
            )

        return self._parse_atomic(stripped, pos, reference)

    @staticmethod
    def _is_wrapped(masked: str) -> bool:
        """True if the whole expression is one parenthesized group."""
        if not (masked.startswith("(") and masked.endswith(")")):
            return False
        depth = 0
        for i, ch in enumerate(masked):
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth == 0 and i != len(masked) - 1:
                    return False
        return True

    @staticmethod
    def _split_top_level(text: str, masked: str, op: str) -> list[tuple[int, str]]:
        """Split on a boolean operator outside parentheses, quotes and between-clauses.

        Returns (offset, part) pairs. An ``and`` only closes a between-clause
        when the current part reads ``<date field> between <start>`` with no
        ``and`` after ``between`` yet. The ``or`` of ``due on or before`` is
        never a split point.
        """
        parts: list[tuple[int, str]] = []
        depth = 0
        start = 0
        i = 0
        n = len(masked)
        width = len(op)
        while i < n:
            ch = masked[i]
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
            elif (
                depth == 0
                and masked[i:i + width].lower() == op
                and i > start
                and masked[i - 1] in " )"
                and (i + width == n or masked[i + width] in " (")
            ):
                if (
                    (op == "and" and QueryParser._in_open_between(masked[start:i]))
                    or (op == "or" and QueryParser._in_on_or(masked[start:i], masked[i + width:]))
                ):
                    i += width
                    continue
                parts.append((start, text[start:i]))
                start = i + width
                i += width
                continue
            i += 1
        if not parts:
            return []
        parts.append((start, text[start:]))
        return parts

    @staticmethod
    def _in_open_between(buffer: str) -> bool:
        m = _BETWEEN_OPEN_RE.search(buffer.rstrip())
        if m is None:
            return False
        return _BETWEEN_SPLIT_RE.search(m.group("start")) is None

    @staticmethod
    def _in_on_or(buffer: str, rest: str) -> bool:
        """True for the ``or`` of ``<date field> on or before|after``."""
        return _ON_OR_RE.search(buffer) is not None and _BEFORE_AFTER_RE.match(rest) is not None

    # ------------------------------------------------------------------
    # Atomic filters
    # ------------------------------------------------------------------

    def _match_rule(self, text: str) -> tuple[_Rule, re.Match] | None:
        """Longest grammar prefix that matches ``text``."""
        best = None
        for rule in self._grammar:
            m = rule.pattern.match(text)
            if m and (best is None or len(rule.prefix) > len(best[0].prefix)):
                best = (rule, m)
        return best

    def _parse_atomic(self, text: str, pos: _Position, reference: datetime | date) -> LeafNode:
        matched = self._match_rule(text)
        if matched is None:
            raise QuerySyntaxError(f"Unknown filter: '{text}'", pos.line, pos.column, FILTER_HINT)
        rule, m = matched
        raw_value = text[m.end():]
        value = raw_value.strip()
        value_pos = _Position(pos.line, pos.column + m.end() + len(raw_value) - len(raw_value.lstrip()))
        if not rule.exact and not value:
            raise QuerySyntaxError(
                f"Missing value after '{rule.prefix}'", pos.line, pos.column + m.end(), FILTER_HINT,
            )
        return rule.build(value, value_pos, reference)

    def _build_grammar(self) -> list[_Rule]:
        rules: list[tuple[str, Callable, bool]] = []

        def add(prefix: str, build: Callable, exact: bool = False) -> None:
            rules.append((prefix, build, exact))

        add("done", partial(self._done, negate=False), exact=True)
        add("not done", partial(self._done, negate=True), exact=True)

        add("status.type is", self._status_type)
        add("status.name includes", self._status_name)
        add("status.symbol is", self._status_symbol)

        for field in DATE_FIELDS:
            add(f"has {field} date", partial(self._date_presence, field=field, operator="has"), exact=True)
            add(f"no {field} date", partial(self._date_presence, field=field, operator="no"), exact=True)
            add(f"{field} before", partial(self._date_compare, field=field, operator="before"))
            add(f"{field} after", partial(self._date_compare, field=field, operator="after"))
            add(f"{field} on", partial(self._date_compare, field=field, operator="on"))
            add(f"{field} on or before", partial(self._date_compare, field=field, operator="on-or-before"))
            add(f"{field} on or after", partial(self._date_compare, field=field, operator="on-or-after"))
            add(f"{field} between", partial(self._date_between, field=field))

        for word, operator in _WORD_OPERATORS.items():
            add(f"priority {word}", partial(self._priority, operator=operator))
            add(f"escalation {word}", partial(self._escalation, operator=operator))
            add(f"attention {word}", partial(self._attention, operator=operator))
        for symbol, operator in _SYMBOL_OPERATORS.items():
            add(f"priority {symbol}", partial(self._priority, operator=operator))
            add(f"escalation {symbol}", partial(self._escalation, operator=operator))
            add(f"attention {symbol}", partial(self._attention, operator=operator))
        for operator in ("is", "above", "below"):
            add(f"urgency {operator}", partial(self._urgency, operator=operator))

        add("lane is", self._lane)

        add("tag includes", partial(self._text, filter_type=FilterType.TAG, negate=False))
        add("tags include", partial(self._text, filter_type=FilterType.TAG, negate=False))
        add("tag does not include", partial(self._text, filter_type=FilterType.TAG, negate=True))
        add("tags do not include", partial(self._text, filter_type=FilterType.TAG, negate=True))
        add("has tags", partial(self._flag, filter_type=FilterType.TAG, operator="has", negate=False), exact=True)
        add("no tags", partial(self._flag, filter_type=FilterType.TAG, operator="has", negate=True), exact=True)

        for field, ftype in (("path", FilterType.PATH), ("description", FilterType.DESCRIPTION),
                             ("heading", FilterType.HEADING)):
            add(f"{field} includes", partial(self._text, filter_type=ftype, negate=False))
            add(f"{field} does not include", partial(self._text, filter_type=ftype, negate=True))

        for field, ftype in (("tag", FilterType.TAG_REGEX), ("tags", FilterType.TAG_REGEX),
                             ("path", FilterType.PATH_REGEX),
                             ("description", FilterType.DESCRIPTION_REGEX)):
            add(f"{field} regex", partial(self._regex, filter_type=ftype, negate=False))
            add(f"not {field} regex", partial(self._regex, filter_type=ftype, negate=True))

        for operator in ("blocked", "blocking"):
            add(f"is {operator}", partial(self._flag, filter_type=FilterType.DEPENDENCY,
                                          operator=operator, negate=False), exact=True)
            add(f"is not {operator}", partial(self._flag, filter_type=FilterType.DEPENDENCY,
                                              operator=operator, negate=True), exact=True)
        add("is recurring", partial(self._flag, filter_type=FilterType.RECURRENCE,
                                    operator="recurring", negate=False), exact=True)
        add("is not recurring", partial(self._flag, filter_type=FilterType.RECURRENCE,
                                        operator="recurring", negate=True), exact=True)

        return [_Rule(prefix, _prefix_pattern(prefix, exact), build, exact) for prefix, build, exact in rules]

    # -- builders -------------------------------------------------------

    def _done(self, value, pos, reference, negate):
        return LeafNode(type=FilterType.DONE, operator="is", negate=negate)

    def _flag(self, value, pos, reference, filter_type, operator, negate):
        return LeafNode(type=filter_type, operator=operator, negate=negate)

    def _status_type(self, value, pos, reference):
        key = _unquote(value).upper().replace(" ", "_").replace("-", "_")
        try:
            status = StatusType(key)
        except ValueError:
            raise QuerySyntaxError(
                f"Unknown status type: '{value}'", pos.line, pos.column,
                "Use one of: " + ", ".join(s.value for s in StatusType),
            ) from None
        return LeafNode(type=FilterType.STATUS, operator="type-is", value=status.value)

    def _status_name(self, value, pos, reference):
        return LeafNode(type=FilterType.STATUS, operator="name-includes", value=_unquote(value))

    def _status_symbol(self, value, pos, reference):
        symbol = _unquote(value)
        if len(symbol) != 1:
            raise QuerySyntaxError(
                f"Status symbol must be a single character, got '{symbol}'", pos.line, pos.column,
                "Quote a blank symbol: status.symbol is \" \"",
            )
        return LeafNode(type=FilterType.STATUS, operator="symbol-is", value=symbol)

    def _resolve(self, text: str, pos: _Position, reference) -> date:
        resolved = resolve_date(_unquote(text), reference)
        if resolved is None:
            raise QuerySyntaxError(f"Invalid date: '{text.strip()}'", pos.line, pos.column, DATE_HINT)
        return resolved

    def _date_presence(self, value, pos, reference, field, operator):
        return LeafNode(type=FilterType.DATE, operator=operator, value=DateCondition(field=field))

    def _date_compare(self, value, pos, reference, field, operator):
        day = self._resolve(value, pos, reference)
        return LeafNode(type=FilterType.DATE, operator=operator, value=DateCondition(field=field, date=day))

    def _date_between(self, value, pos, reference, field):
        pieces = _BETWEEN_SPLIT_RE.split(value, maxsplit=1)
        if len(pieces) != 2 or not pieces[0].strip() or not pieces[1].strip():
            raise QuerySyntaxError(
                f"Invalid date range: '{value}'", pos.line, pos.column,
                f"Use '{field} between <start> and <end>'",
            )
        start = self._resolve(pieces[0], pos, reference)
        end_pos = _Position(pos.line, pos.column + value.lower().find(pieces[1].lower()))
        end = self._resolve(pieces[1], end_pos, reference)
        if end < start:
            raise QuerySyntaxError(
                f"Date range ends before it starts: {start.isoformat()} .. {end.isoformat()}",
                pos.line, pos.column, "Put the earlier date first",
            )
        return LeafNode(
            type=FilterType.DATE, operator="between",
            value=DateCondition(field=field, date=start, end_date=end),
        )

    def _priority(self, value, pos, reference, operator):
        priority = parse_priority(_unquote(value))
        if priority is None:
            raise QuerySyntaxError(f"Invalid priority: '{value}'", pos.line, pos.column, PRIORITY_HINT)
        return LeafNode(type=FilterType.PRIORITY, operator=operator, value=priority.value)

    def _urgency(self, value, pos, reference, operator):
        try:
            score = float(value)
        except ValueError:
            raise QuerySyntaxError(
                f"Invalid urgency value: '{value}'", pos.line, pos.column, "Urgency takes a number, e.g. 'urgency above 5'",
            ) from None
        return LeafNode(type=FilterType.URGENCY, operator=operator, value=score)

    def _escalation(self, value, pos, reference, operator):
        word = _unquote(value).lower()
        if word in ESCALATION_LEVELS:
            level = ESCALATION_LEVELS[word]
        elif word.isdigit() and int(word) <= 3:
            level = int(word)
        else:
            raise QuerySyntaxError(f"Invalid escalation level: '{value}'", pos.line, pos.column, ESCALATION_HINT)
        return LeafNode(type=FilterType.ESCALATION, operator=operator, value=level)

    def _attention(self, value, pos, reference, operator):
        try:
            score = int(value)
        except ValueError:
            raise QuerySyntaxError(
                f"Invalid attention value: '{value}'", pos.line, pos.column,
                "Attention takes a whole number, e.g. 'attention at least 60'",
            ) from None
        return LeafNode(type=FilterType.ATTENTION, operator=operator, value=score)

    def _lane(self, value, pos, reference):
        key = _unquote(value).upper().replace(" ", "_").replace("-", "_")
        try:
            lane = AttentionLane(key)
        except ValueError:
            raise QuerySyntaxError(
                f"Unknown attention lane: '{value}'", pos.line, pos.column,
                "Use one of: " + ", ".join(lane.value for lane in AttentionLane),
            ) from None
        return LeafNode(type=FilterType.ATTENTION_LANE, operator="is", value=lane.value)

    def _text(self, value, pos, reference, filter_type, negate):
        needle = _unquote(value)
        if filter_type == FilterType.TAG:
            needle = needle.lstrip("#")
        if not needle:
            raise QuerySyntaxError("Empty search text", pos.line, pos.column, "Provide the text to look for")
        return LeafNode(type=filter_type, operator="includes", value=needle, negate=negate)

    def _regex(self, value, pos, reference, filter_type, negate):
        if value.startswith("/"):
            spec = regex_matcher.parse_regex_literal(value)
            if spec is None:
                raise QuerySyntaxError(
                    f"Invalid regex literal: '{value}'", pos.line, pos.column,
                    "Write regexes as /pattern/flags",
                )
        else:
            spec = RegexSpec(pattern=_unquote(value))

        error = regex_matcher.validate_pattern(spec.pattern)
        if error:
            raise QuerySyntaxError(f"Invalid regex pattern: {error}", pos.line, pos.column, "Check your regex syntax")
        error = regex_matcher.validate_flags(spec.flags)
        if error:
            raise QuerySyntaxError(
                f"Invalid regex flags: {error}", pos.line, pos.column, "Only i, m, s, u flags are supported",
            )
        return LeafNode(type=filter_type, operator="regex", value=spec, negate=negate)


def parse_query(
    text: str,
    reference_time: datetime | date | None = None,
    context: QueryContext | None = None,
) -> QueryAST:
    """Parse ``text`` with a fresh QueryParser."""
    return QueryParser().parse(text, reference_time, context)
