"""Regex literal parsing, validation and matching.

Regex-valued filters accept either a ``/pattern/flags`` literal or a plain
pattern string. Everything regex related goes through this module so the
parser and the predicates agree on what a valid pattern is.
"""

from __future__ import annotations

import re

from taskql.query_ast import RegexSpec

MAX_PATTERN_LENGTH = 500
ALLOWED_FLAGS = "imsu"
UNSUPPORTED_FLAGS = "gyd"

_FLAG_BITS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    # str patterns are unicode-aware already
    "u": 0,
}


def parse_regex_literal(text: str) -> RegexSpec | None:
    """Parse ``/pattern/flags``. Returns None if ``text`` is not a literal."""
    if len(text) < 2 or not text.startswith("/"):
        return None

    end = -1
    for i in range(len(text) - 1, 0, -1):
        if text[i] != "/":
            continue
        backslashes = 0
        j = i - 1
        while j >= 0 and text[j] == "\\":
            backslashes += 1
            j -= 1
        if backslashes % 2 == 0:
            end = i
            break

    if end <= 0:
        return None

    pattern = text[1:end].replace("\\/", "/")
    return RegexSpec(pattern=pattern, flags=text[end + 1:])


def validate_pattern(pattern: str) -> str | None:
    """Return an error message for a bad pattern, or None if it is usable."""
    if not pattern:
        return "Regex pattern cannot be empty"
    if len(pattern) > MAX_PATTERN_LENGTH:
        return f"Regex pattern is too long (max {MAX_PATTERN_LENGTH} characters)"
    try:
        re.compile(pattern)
    except re.error as e:
        return f"Invalid regex syntax: {e}"
    return None


def validate_flags(flags: str) -> str | None:
    """Return an error message for bad flags, or None if they are usable."""
    for flag in flags:
        if flag in UNSUPPORTED_FLAGS:
            return f'Unsupported flag: "{flag}" (use i, m, s, u only)'
    for flag in flags:
        if flag not in ALLOWED_FLAGS:
            return f'Unknown flag: "{flag}" (use i, m, s, u only)'
    if len(set(flags)) != len(flags):
        return "Duplicate flags found"
    return None


def compile_regex(spec: RegexSpec) -> re.Pattern:
    """Validate and compile a regex spec. Raises ValueError when invalid."""
    error = validate_pattern(spec.pattern) or validate_flags(spec.flags)
    if error:
        raise ValueError(error)
    bits = 0
    for flag in spec.flags:
        bits |= _FLAG_BITS[flag]
    try:
        return re.compile(spec.pattern, bits)
    except re.error as e:
        raise ValueError(f"Failed to compile regex: {e}") from e


def safe_search(compiled: re.Pattern, value: str) -> bool:
    """Search ``value`` with a compiled pattern. Never raises."""
    try:
        return compiled.search(value) is not None
    except (TypeError, RecursionError):
        return False

