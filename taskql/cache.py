"""Result and explanation caches.

Both caches are plain in-process objects with no locking. The result cache
is bounded by size only and is invalidated by its owner; the explanation
cache is LRU with a maximum entry age.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar

from pydantic import BaseModel

from taskql.models import Task
from taskql.query_ast import QueryAST, canonical_json, hash_text

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


class CacheEntry(Generic[T]):
    __slots__ = ("key", "value", "timestamp", "hit_count")

    def __init__(self, key: str, value: T, timestamp: float) -> None:
        self.key = key
        self.value = value
        self.timestamp = timestamp
        self.hit_count = 0


class QueryCacheStats(BaseModel):
    size: int
    max_size: int
    hits: int
    misses: int
    evictions: int
    hit_rate: float


class ExplanationCacheStats(BaseModel):
    total_hits: int
    total_misses: int
    total_entries: int
    hit_rate: float
    average_hit_count: float
    oldest_entry: Optional[float] = None
    newest_entry: Optional[float] = None


# ---------------------------------------------------------------------------
# Result cache
# ---------------------------------------------------------------------------

class QueryCache(Generic[T]):
    """Size-bounded result cache. Evicts the oldest insertion when full.

    Entries never expire on their own; callers drop them with
    ``invalidate`` or ``clear`` when the underlying tasks change.
    """

    def __init__(self, max_size: int = 100, clock: Clock = time.monotonic) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            logger.debug(f"QueryCache MISS: {key}")
            return None
        entry.hit_count += 1
        self._hits += 1
        logger.debug(f"QueryCache HIT: {key} (hits={entry.hit_count})")
        return entry.value

    def set(self, key: str, value: T) -> None:
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            oldest, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug(f"QueryCache EVICT: {oldest}")
        self._entries[key] = CacheEntry(key, value, self._clock())
        logger.debug(f"QueryCache SET: {key} (size={len(self._entries)}/{self.max_size})")

    def hit_count(self, key: str) -> int:
        entry = self._entries.get(key)
        return entry.hit_count if entry else 0

    def invalidate(self, pattern: str | None = None) -> int:
        """Drop entries by exact key, ``prefix*`` pattern, or all (``None``/``*``).

        Returns the number of entries removed.
        """
        if pattern is None or pattern == "*":
            count = len(self._entries)
            self._entries.clear()
        elif pattern.endswith("*"):
            prefix = pattern[:-1]
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
            count = len(doomed)
        else:
            count = 1 if self._entries.pop(pattern, None) is not None else 0
        if count:
            logger.info(f"QueryCache invalidated {count} entr{'y' if count == 1 else 'ies'} ({pattern or '*'})")
        return count

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def keys(self) -> list[str]:
        return list(self._entries)

    def stats(self) -> QueryCacheStats:
        total = self._hits + self._misses
        return QueryCacheStats(
            size=len(self._entries),
            max_size=self.max_size,
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            hit_rate=self._hits / total if total else 0.0,
        )


# ---------------------------------------------------------------------------
# Explanation cache
# ---------------------------------------------------------------------------

def hash_query(ast: QueryAST) -> str:
    """Hash of the parts of a query that decide its result."""
    return hash_text(canonical_json(ast))


def hash_tasks(tasks: Sequence[Task]) -> str:
    """Hash of (task id, last modified) pairs, independent of task order."""
    pairs = sorted(
        f"{t.id}:{t.last_modified.isoformat() if t.last_modified else ''}" for t in tasks
    )
    return hash_text("|".join(pairs))


class _ExplanationEntry:
    __slots__ = ("query_hash", "tasks_hash", "explanation", "cached_at", "hit_count")

    def __init__(self, query_hash: str, tasks_hash: str, explanation: Any, cached_at: float) -> None:
        self.query_hash = query_hash
        self.tasks_hash = tasks_hash
        self.explanation = explanation
        self.cached_at = cached_at
        self.hit_count = 0


class ExplanationCache:
    """LRU + TTL cache of explanations keyed by query and task-set hashes.

    Any change to the task set (a task added, removed or modified) changes
    the key, so stale explanations are simply never looked up again.
    Expired entries are removed when they are next touched or by ``prune``.
    """

    def __init__(self, max_size: int = 100, max_age: float = 300.0, clock: Clock = time.monotonic) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.max_age = max_age
        self._clock = clock
        self._entries: OrderedDict[str, _ExplanationEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def key_for(ast: QueryAST, tasks: Sequence[Task], variant: str = "") -> str:
        """``variant`` separates runs of one query whose outcome also depends on
        engine state, such as whether the global filter applied."""
        return f"{hash_query(ast)}:{variant}:{hash_tasks(tasks)}"

    def get(self, ast: QueryAST, tasks: Sequence[Task], variant: str = "") -> Any | None:
        key = self.key_for(ast, tasks, variant)
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if self._clock() - entry.cached_at > self.max_age:
            del self._entries[key]
            self._misses += 1
            logger.debug(f"ExplanationCache EXPIRED: {key}")
            return None
        entry.hit_count += 1
        self._hits += 1
        self._entries.move_to_end(key)
        return entry.explanation

    def set(self, ast: QueryAST, tasks: Sequence[Task], explanation: Any, variant: str = "") -> None:
        query_hash, tasks_hash = hash_query(ast), hash_tasks(tasks)
        key = f"{query_hash}:{variant}:{tasks_hash}"
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"ExplanationCache EVICT: {evicted}")
        self._entries[key] = _ExplanationEntry(query_hash, tasks_hash, explanation, self._clock())

    def _drop_where(self, keep: Callable[[_ExplanationEntry], bool]) -> int:
        doomed = [k for k, e in self._entries.items() if not keep(e)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def invalidate_for_query(self, ast: QueryAST) -> int:
        query_hash = hash_query(ast)
        return self._drop_where(lambda e: e.query_hash != query_hash)

    def invalidate_for_tasks(self, tasks: Sequence[Task]) -> int:
        tasks_hash = hash_tasks(tasks)
        return self._drop_where(lambda e: e.tasks_hash != tasks_hash)

    def prune(self) -> int:
        """Remove every expired entry. Returns how many were removed."""
        now = self._clock()
        return self._drop_where(lambda e: now - e.cached_at <= self.max_age)

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def stats(self) -> ExplanationCacheStats:
        entries = list(self._entries.values())
        total = self._hits + self._misses
        return ExplanationCacheStats(
            total_hits=self._hits,
            total_misses=self._misses,
            total_entries=len(entries),
            hit_rate=self._hits / total if total else 0.0,
            average_hit_count=sum(e.hit_count for e in entries) / len(entries) if entries else 0.0,
            oldest_entry=min((e.cached_at for e in entries), default=None),
            newest_entry=max((e.cached_at for e in entries), default=None),
        )
