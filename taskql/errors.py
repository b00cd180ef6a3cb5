"""Error types raised by the query engine.

Syntax errors come out of the parser and always carry a position and a hint.
Execution errors come out of predicate construction and evaluation and keep
the original exception as their cause.
"""

from __future__ import annotations


class QueryError(ValueError):
    """Base class for every error raised by taskql."""


class QuerySyntaxError(QueryError):
    """Raised when a query string cannot be parsed."""

    def __init__(
        self,
        message: str,
        line: int = 1,
        column: int = 1,
        hint: str | None = None,
    ) -> None:
        self.message = message
        self.line = line
        self.column = column
        self.hint = hint
        text = f"{message} (line {line}, column {column})"
        if hint:
            text += f". Hint: {hint}"
        super().__init__(text)

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "line": self.line,
            "column": self.column,
            "hint": self.hint,
        }


class QueryExecutionError(QueryError):
    """Raised when building or evaluating predicates fails."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message if cause is None else f"{message}: {cause}")
