"""Global query holder and query composition.

A global query is a filter configured once (e.g. ``not done``) and prepended
to every local query unless that query opts out with ``ignore global query``
or ``@ignoreGlobalFilter``.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime

from pydantic import BaseModel

from taskql.errors import QuerySyntaxError
from taskql.parser import QueryParser
from taskql.query_ast import QueryAST

logger = logging.getLogger(__name__)

_IGNORE_DIRECTIVE = re.compile(r"^ignore global query$", re.IGNORECASE)


class GlobalQueryConfig(BaseModel):
    enabled: bool = False
    query: str = ""


class GlobalQuery:
    """Holds the configured global query and its parsed form.

    A query that fails to parse leaves ``ast`` empty and records the message
    in ``error``; it never raises.
    """

    def __init__(self, config: GlobalQueryConfig | None = None, parser: QueryParser | None = None) -> None:
        self._parser = parser or QueryParser()
        self._config = config or GlobalQueryConfig()
        self._ast: QueryAST | None = None
        self._error: str | None = None
        self._parse()

    @property
    def config(self) -> GlobalQueryConfig:
        return self._config

    @property
    def ast(self) -> QueryAST | None:
        return self._ast

    @property
    def error(self) -> str | None:
        return self._error

    def is_enabled(self) -> bool:
        return self._config.enabled and bool(self._config.query.strip())

    def update(self, config: GlobalQueryConfig) -> None:
        self._config = config
        self._parse()

    def _parse(self) -> None:
        self._ast = None
        self._error = None
        if not self.is_enabled():
            return
        try:
            self._ast = self._parser.parse(self._config.query)
        except QuerySyntaxError as e:
            self._error = str(e)
            logger.warning(f"Global query disabled, it does not parse: {e}")


class CompositionResult(BaseModel):
    ast: QueryAST
    ignored_global: bool


class QueryComposer:
    """Merges a local query with the global query AST."""

    def __init__(self, parser: QueryParser | None = None) -> None:
        self._parser = parser or QueryParser()

    @staticmethod
    def strip_ignore_directive(query: str) -> tuple[str, bool]:
        kept = []
        ignore = False
        for line in query.split("\n"):
            if _IGNORE_DIRECTIVE.match(line.strip()):
                ignore = True
                continue
            kept.append(line)
        return "\n".join(kept), ignore

    def compose(
        self,
        local_query: str,
        global_ast: QueryAST | None,
        reference_time: datetime | date | None = None,
    ) -> CompositionResult:
        """Parse ``local_query`` and prepend the global filters unless it opts out.

        The composed AST is marked ``ignore_global`` whenever the global
        filters were merged in (or deliberately skipped), so an engine holding
        the same global filter does not apply it twice.
        """
        query, ignore = self.strip_ignore_directive(local_query)
        local = self._parser.parse(query, reference_time)
        ignore = ignore or local.ignore_global

        if ignore:
            return CompositionResult(ast=local.model_copy(update={"ignore_global": True}), ignored_global=True)

        if global_ast is not None and global_ast.filters:
            merged = local.model_copy(update={
                "filters": [*global_ast.filters, *local.filters],
                "ignore_global": True,
            })
            return CompositionResult(ast=merged, ignored_global=False)

        return CompositionResult(ast=local, ignored_global=False)
