"""Unit tests for the select result cache."""

from __future__ import annotations

from datetime import date

import pytest

from row_orm.core import cache as cache_module
from row_orm.core.cache import QueryResultCache, cache_key


@pytest.fixture
def clock(monkeypatch):
    """Controllable millisecond clock for expiry checks."""
    now = {"ms": 1_000_000.0}
    monkeypatch.setattr(cache_module, "_now_ms", lambda: now["ms"])
    return now


class TestCacheKey:
    def test_parameter_order_does_not_matter(self) -> None:
        assert cache_key("SELECT 1", {"a": 1, "b": 2}) == cache_key("SELECT 1", {"b": 2, "a": 1})

    def test_parameters_and_sql_both_count(self) -> None:
        assert cache_key("SELECT 1", {"a": 1}) != cache_key("SELECT 1", {"a": 2})
        assert cache_key("SELECT 1", {"a": 1}) != cache_key("SELECT 2", {"a": 1})

    def test_values_json_cannot_encode(self) -> None:
        key = cache_key("SELECT 1", {"day": date(2024, 1, 2)})
        assert "2024, 1, 2" in key

    def test_missing_parameters(self) -> None:
        assert cache_key("SELECT 1", None) == cache_key("SELECT 1", {})


class TestQueryResultCache:
    def test_stored_rows_are_returned_within_duration(self, clock) -> None:
        cache = QueryResultCache(duration=1000)
        cache.store("k", "SELECT 1", [{"id": 1}])

        clock["ms"] += 999
        assert cache.get("k") == [{"id": 1}]

    def test_expired_entries_are_dropped(self, clock) -> None:
        cache = QueryResultCache(duration=1000)
        cache.store("k", "SELECT 1", [{"id": 1}])

        clock["ms"] += 1001
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_entry_duration_overrides_the_default(self, clock) -> None:
        cache = QueryResultCache(duration=1000)
        cache.store("k", "SELECT 1", [{"id": 1}], duration=60000)

        clock["ms"] += 5000
        assert cache.get("k") == [{"id": 1}]

    def test_returned_rows_are_copies(self, clock) -> None:
        rows = [{"id": 1}]
        cache = QueryResultCache()
        cache.store("k", "SELECT 1", rows)
        rows[0]["id"] = 2

        cached = cache.get("k")
        cached[0]["id"] = 3
        assert cache.get("k") == [{"id": 1}]

    def test_remove_by_identifier(self, clock) -> None:
        cache = QueryResultCache()
        cache.store("a", "SELECT 1", [], identifier="posts")
        cache.store("b", "SELECT 2", [], identifier="posts")
        cache.store("c", "SELECT 3", [], identifier="users")
        cache.store("d", "SELECT 4", [])

        cache.remove(["posts"])

        assert len(cache) == 2
        assert cache.get("a") is None
        assert cache.get("c") == []

    def test_clear(self, clock) -> None:
        cache = QueryResultCache()
        cache.store("a", "SELECT 1", [])
        cache.clear()
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_missing_key(self) -> None:
        assert QueryResultCache().get("nope") is None
