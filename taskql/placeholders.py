"""Resolve ``{{query.file.*}}`` placeholders before a query is parsed.

Lets a query embedded in a note refer to its own location, e.g.
``path includes {{query.file.folder}}``.
"""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel

_PLACEHOLDER = re.compile(r"\{\{query\.[^}]+\}\}")


class QueryContext(BaseModel):
    """Location of the document that holds the query."""

    file_path: str = ""
    file_name: Optional[str] = None
    folder: Optional[str] = None
    root: Optional[str] = None


def has_placeholders(query: str) -> bool:
    return bool(_PLACEHOLDER.search(query))


def extract_placeholders(query: str) -> list[str]:
    """Unique placeholders in order of first appearance."""
    return list(dict.fromkeys(_PLACEHOLDER.findall(query)))


def _replacements(context: QueryContext) -> dict[str, str]:
    path = context.file_path
    parts = path.split("/") if path else []
    folder = "/".join(parts[:-1]) if len(parts) > 1 else ""
    return {
        "{{query.file.path}}": path,
        "{{query.file.folder}}": context.folder or folder,
        "{{query.file.name}}": context.file_name or (parts[-1] if parts else ""),
        "{{query.file.root}}": context.root or (parts[0] if parts else ""),
    }


def resolve_placeholders(query: str, context: QueryContext) -> str:
    """Substitute known placeholders. Unknown ones are left untouched."""
    if not query:
        return query
    for placeholder, value in _replacements(context).items():
        query = query.replace(placeholder, value)
    return query
