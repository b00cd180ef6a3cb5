"""taskql: a line-oriented query language for task collections."""

from taskql.engine import InMemoryTaskSource, QueryEngine, QueryResult
from taskql.errors import QueryError, QueryExecutionError, QuerySyntaxError
from taskql.models import Task
from taskql.parser import QueryParser, parse_query

__all__ = [
    "InMemoryTaskSource",
    "QueryEngine",
    "QueryError",
    "QueryExecutionError",
    "QueryParser",
    "QueryResult",
    "QuerySyntaxError",
    "Task",
    "parse_query",
]
