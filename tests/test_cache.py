import pytest
from datetime import datetime, timezone

REF = datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _ast(text):
    from taskql.parser import parse_query
    return parse_query(text, REF)


def _tasks(*ids, updated="2024-01-10"):
    from taskql.models import Task
    return [Task(id=i, name=i, updated_at=updated) for i in ids]


# ---------------------------------------------------------------------------
# QueryCache
# ---------------------------------------------------------------------------

def test_query_cache_hits_and_misses():
    from taskql.cache import QueryCache

    cache = QueryCache()
    assert cache.get("query:a") is None
    cache.set("query:a", "result")
    assert cache.get("query:a") == "result"
    assert cache.hit_count("query:a") == 1
    stats = cache.stats()
    assert (stats.hits, stats.misses) == (1, 1)
    assert stats.hit_rate == 0.5


def test_query_cache_evicts_oldest_insertion():
    from taskql.cache import QueryCache

    cache = QueryCache(max_size=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)
    assert "a" not in cache
    assert cache.keys() == ["b", "c"]
    assert cache.stats().evictions == 1


def test_query_cache_invalidate_patterns():
    from taskql.cache import QueryCache

    cache = QueryCache()
    for key in ("query:g:1", "query:g:2", "query:-:3", "other"):
        cache.set(key, key)
    assert cache.invalidate("query:g*") == 2
    assert cache.invalidate("query:-:3") == 1
    assert cache.invalidate("missing") == 0
    assert cache.keys() == ["other"]
    assert cache.invalidate() == 1
    assert len(cache) == 0


def test_query_cache_rejects_zero_size():
    from taskql.cache import QueryCache

    with pytest.raises(ValueError):
        QueryCache(max_size=0)


# ---------------------------------------------------------------------------
# ExplanationCache
# ---------------------------------------------------------------------------

def test_explanation_cache_round_trip():
    from taskql.cache import ExplanationCache

    cache = ExplanationCache()
    ast, tasks = _ast("not done"), _tasks("a", "b")
    assert cache.get(ast, tasks) is None
    cache.set(ast, tasks, "explained")
    assert cache.get(ast, tasks) == "explained"
    assert cache.get(ast, list(reversed(tasks))) == "explained"


def test_explanation_key_tracks_task_changes():
    from taskql.cache import ExplanationCache

    cache = ExplanationCache()
    ast = _ast("not done")
    cache.set(ast, _tasks("a", "b"), "explained")
    assert cache.get(ast, _tasks("a", "b", updated="2024-01-11")) is None
    assert cache.get(ast, _tasks("a")) is None


def test_explanation_cache_expires():
    from taskql.cache import ExplanationCache

    clock = FakeClock()
    cache = ExplanationCache(max_age=300, clock=clock)
    ast, tasks = _ast("done"), _tasks("a")
    cache.set(ast, tasks, "explained")
    clock.now += 299
    assert cache.get(ast, tasks) == "explained"
    clock.now += 2
    assert cache.get(ast, tasks) is None
    assert len(cache) == 0


def test_explanation_cache_is_lru():
    from taskql.cache import ExplanationCache

    cache = ExplanationCache(max_size=2)
    tasks = _tasks("a")
    q1, q2, q3 = _ast("done"), _ast("not done"), _ast("has tags")
    cache.set(q1, tasks, 1)
    cache.set(q2, tasks, 2)
    assert cache.get(q1, tasks) == 1
    cache.set(q3, tasks, 3)
    assert cache.get(q2, tasks) is None
    assert cache.get(q1, tasks) == 1
    assert cache.get(q3, tasks) == 3


def test_explanation_cache_prune_and_invalidate():
    from taskql.cache import ExplanationCache

    clock = FakeClock()
    cache = ExplanationCache(max_age=10, clock=clock)
    tasks_a, tasks_b = _tasks("a"), _tasks("b")
    q1, q2 = _ast("done"), _ast("not done")
    cache.set(q1, tasks_a, 1)
    cache.set(q2, tasks_a, 2)
    cache.set(q1, tasks_b, 3)
    assert cache.invalidate_for_query(q1) == 2
    assert cache.invalidate_for_tasks(tasks_a) == 1
    assert len(cache) == 0

    cache.set(q1, tasks_a, 1)
    clock.now += 5
    cache.set(q2, tasks_a, 2)
    clock.now += 6
    assert cache.prune() == 1
    assert cache.get(q2, tasks_a) == 2


def test_explanation_cache_stats():
    from taskql.cache import ExplanationCache

    clock = FakeClock()
    cache = ExplanationCache(clock=clock)
    ast, tasks = _ast("done"), _tasks("a")
    cache.set(ast, tasks, "x")
    cache.get(ast, tasks)
    cache.get(_ast("not done"), tasks)
    stats = cache.stats()
    assert stats.total_entries == 1
    assert stats.total_hits == 1
    assert stats.total_misses == 1
    assert stats.average_hit_count == 1.0
    assert stats.oldest_entry == stats.newest_entry == 1000.0


def test_hash_tasks_ignores_order():
    from taskql.cache import hash_tasks

    a, b = _tasks("a", "b"), _tasks("b", "a")
    assert hash_tasks(a) == hash_tasks(b)
