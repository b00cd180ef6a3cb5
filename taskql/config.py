"""Runtime settings, read from the environment (and a local .env file)."""

from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

_TRUE = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    tasks_file: Optional[str] = None
    global_query: str = ""
    global_query_enabled: bool = False
    result_cache_size: int = Field(default=100, ge=1)
    explanation_cache_size: int = Field(default=100, ge=1)
    explanation_cache_ttl: float = Field(default=300.0, gt=0)
    log_level: str = "INFO"
    transport: str = "stdio"
    port: int = 8000


def load_settings() -> Settings:
    """Build Settings from TASKQL_* variables.

    A global query counts as enabled when TASKQL_GLOBAL_QUERY is set, unless
    TASKQL_GLOBAL_QUERY_ENABLED says otherwise.
    """
    global_query = os.getenv("TASKQL_GLOBAL_QUERY", "")
    enabled = os.getenv("TASKQL_GLOBAL_QUERY_ENABLED")
    return Settings(
        tasks_file=os.getenv("TASKQL_TASKS_FILE") or None,
        global_query=global_query,
        global_query_enabled=(enabled.strip().lower() in _TRUE) if enabled else bool(global_query.strip()),
        result_cache_size=int(os.getenv("TASKQL_RESULT_CACHE_SIZE", "100")),
        explanation_cache_size=int(os.getenv("TASKQL_EXPLANATION_CACHE_SIZE", "100")),
        explanation_cache_ttl=float(os.getenv("TASKQL_EXPLANATION_CACHE_TTL", "300")),
        log_level=os.getenv("TASKQL_LOG_LEVEL", "INFO").upper(),
        transport=os.getenv("MCP_TRANSPORT", "stdio"),
        port=int(os.getenv("PORT", "8000")),
    )
