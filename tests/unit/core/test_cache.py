"""Unit tests for ResultCache and cache key derivation.

Runs against the LocMemCache configured in the test settings; backend
failures are simulated with a MagicMock standing in for the cache alias.
"""

from __future__ import annotations

import datetime
import threading
import time
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from modules.core.cache import CacheEntry, ResultCache, canonical_arguments, make_cache_key
from modules.core.exceptions import CacheUnavailable
from modules.core.querying import SortDirection

pytestmark = pytest.mark.unit


class _Counter:
    """Callable returning ``value`` and counting invocations."""

    def __init__(self, value=None):
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.value


@pytest.fixture()
def broken_cache():
    cache = ResultCache()
    backend = MagicMock()
    backend.get.side_effect = ConnectionError("redis down")
    backend.add.side_effect = ConnectionError("redis down")
    backend.set.side_effect = ConnectionError("redis down")
    backend.incr.side_effect = ConnectionError("redis down")
    backend.delete.side_effect = ConnectionError("redis down")
    with patch.object(ResultCache, "backend", new=backend):
        yield cache


# ===========================================================================
# Keys
# ===========================================================================


class TestCacheKeys:
    def test_same_arguments_same_key(self):
        assert make_cache_key("category-by-id", [7]) == make_cache_key("category-by-id", [7])

    def test_key_starts_with_cache_name(self):
        assert make_cache_key("category-by-id", [7]).startswith("category-by-id:")

    def test_argument_order_matters(self):
        assert make_cache_key("c", [1, 2]) != make_cache_key("c", [2, 1])

    def test_types_are_distinguished(self):
        assert make_cache_key("c", [1]) != make_cache_key("c", ["1"])

    def test_equal_decimals_share_a_key(self):
        assert canonical_arguments([Decimal("1.50")]) == canonical_arguments([Decimal("1.5")])

    def test_dates_and_enums_are_encoded(self):
        text = canonical_arguments([datetime.date(2024, 1, 31), SortDirection.DESC])
        assert "2024-01-31" in text
        assert "SortDirection.DESC" in text

    def test_sets_are_order_independent(self):
        assert canonical_arguments([{"b", "a"}]) == canonical_arguments([{"a", "b"}])

    def test_unsupported_type_rejected(self):
        with pytest.raises(TypeError):
            canonical_arguments([object()])


# ===========================================================================
# get_or_compute
# ===========================================================================


class TestGetOrCompute:
    def test_computes_once_then_hits(self, result_cache):
        compute = _Counter(["Electronics"])

        first = result_cache.get_or_compute("category-by-name", ["Electronics"], compute)
        second = result_cache.get_or_compute("category-by-name", ["Electronics"], compute)

        assert first == second == ["Electronics"]
        assert compute.calls == 1

    def test_distinct_arguments_compute_separately(self, result_cache):
        compute = _Counter(1)
        result_cache.get_or_compute("c", ["a"], compute)
        result_cache.get_or_compute("c", ["b"], compute)
        assert compute.calls == 2

    def test_distinct_names_do_not_share_entries(self, result_cache):
        compute = _Counter(1)
        result_cache.get_or_compute("category-count-all", [], compute)
        result_cache.get_or_compute("product-count-all", [], compute)
        assert compute.calls == 2

    def test_none_result_is_cached(self, result_cache):
        compute = _Counter(None)
        assert result_cache.get_or_compute("category-by-id", [99], compute) is None
        assert result_cache.get_or_compute("category-by-id", [99], compute) is None
        assert compute.calls == 1

    def test_failed_compute_stores_nothing(self, result_cache):
        def explode():
            raise RuntimeError("db down")

        with pytest.raises(RuntimeError):
            result_cache.get_or_compute("c", [1], explode)

        assert result_cache.lookup("c", [1]) is None
        assert result_cache.get_or_compute("c", [1], lambda: "ok") == "ok"

    def test_entry_records_key_and_insertion_time(self, result_cache):
        result_cache.get_or_compute("c", [1], lambda: "value")
        entry = result_cache.lookup("c", [1])
        assert isinstance(entry, CacheEntry)
        assert entry.key == make_cache_key("c", [1])
        assert entry.value == "value"
        assert entry.inserted_at is not None

    def test_concurrent_callers_share_one_compute(self, result_cache):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow():
            calls.append(1)
            started.set()
            release.wait(2)
            return 42

        results = []

        def worker():
            results.append(result_cache.get_or_compute("slow", [1], slow))

        threads = [threading.Thread(target=worker) for _ in range(5)]
        threads[0].start()
        started.wait(2)
        for thread in threads[1:]:
            thread.start()
        time.sleep(0.05)
        release.set()
        for thread in threads:
            thread.join(5)

        assert results == [42] * 5
        assert len(calls) == 1

    def test_waiters_recompute_after_failed_leader(self, result_cache):
        started = threading.Event()
        release = threading.Event()

        def failing():
            started.set()
            release.wait(2)
            raise RuntimeError("boom")

        errors = []

        def leader():
            try:
                result_cache.get_or_compute("retry", [1], failing)
            except RuntimeError as exc:
                errors.append(exc)

        thread = threading.Thread(target=leader)
        thread.start()
        started.wait(2)
        follower = []
        waiter = threading.Thread(
            target=lambda: follower.append(result_cache.get_or_compute("retry", [1], lambda: "ok"))
        )
        waiter.start()
        time.sleep(0.05)
        release.set()
        thread.join(5)
        waiter.join(5)

        assert len(errors) == 1
        assert follower == ["ok"]


# ===========================================================================
# Invalidation
# ===========================================================================


class TestInvalidation:
    def test_invalidate_removes_one_entry(self, result_cache):
        result_cache.get_or_compute("c", [1], lambda: "one")
        result_cache.get_or_compute("c", [2], lambda: "two")

        result_cache.invalidate("c", [1])

        assert result_cache.lookup("c", [1]) is None
        assert result_cache.lookup("c", [2]).value == "two"

    def test_invalidate_absent_entry_is_noop(self, result_cache):
        result_cache.invalidate("c", [404])

    def test_value_computed_across_invalidate_is_not_served(self, result_cache):
        def compute():
            result_cache.invalidate("c", [1])
            return "stale"

        assert result_cache.get_or_compute("c", [1], compute) == "stale"
        assert result_cache.lookup("c", [1]) is None
        assert result_cache.get_or_compute("c", [1], lambda: "fresh") == "fresh"

    def test_invalidate_leaves_racing_compute_of_other_key(self, result_cache):
        def compute():
            result_cache.invalidate("c", [2])
            return "one"

        result_cache.get_or_compute("c", [1], compute)
        assert result_cache.lookup("c", [1]).value == "one"

    def test_invalidate_recovers_from_evicted_version(self, result_cache):
        result_cache.get_or_compute("c", [1], lambda: "v")
        key = make_cache_key("c", [1])
        result_cache.backend.delete(result_cache._version_key("c", key))

        result_cache.invalidate("c", [1])

        assert result_cache.lookup("c", [1]) is None

    def test_invalidate_all_drops_every_entry(self, result_cache):
        for key in range(3):
            result_cache.get_or_compute("c", [key], lambda: "v")

        result_cache.invalidate_all("c")

        assert all(result_cache.lookup("c", [key]) is None for key in range(3))

    def test_invalidate_all_leaves_other_caches(self, result_cache):
        result_cache.get_or_compute("a", [1], lambda: "a")
        result_cache.get_or_compute("b", [1], lambda: "b")

        result_cache.invalidate_all("a")

        assert result_cache.lookup("b", [1]).value == "b"

    def test_recomputes_after_invalidate_all(self, result_cache):
        compute = _Counter("v")
        result_cache.get_or_compute("c", [1], compute)
        result_cache.invalidate_all("c")
        result_cache.get_or_compute("c", [1], compute)
        assert compute.calls == 2

    def test_invalidate_all_recovers_from_evicted_counter(self, result_cache):
        result_cache.get_or_compute("c", [1], lambda: "v")
        result_cache.backend.delete(result_cache._generation_key("c"))

        result_cache.invalidate_all("c")

        assert result_cache.lookup("c", [1]) is None

    def test_value_computed_across_invalidate_all_is_not_served(self, result_cache):
        def compute():
            result_cache.invalidate_all("c")
            return "stale"

        assert result_cache.get_or_compute("c", [1], compute) == "stale"
        assert result_cache.lookup("c", [1]) is None


# ===========================================================================
# Backend failures
# ===========================================================================


class TestBackendFailure:
    def test_read_failure_raises_cache_unavailable(self, broken_cache):
        compute = _Counter("v")
        with pytest.raises(CacheUnavailable):
            broken_cache.get_or_compute("c", [1], compute)
        assert compute.calls == 0

    def test_invalidate_failure_raises_cache_unavailable(self, broken_cache):
        with pytest.raises(CacheUnavailable):
            broken_cache.invalidate("c", [1])

    def test_invalidate_all_failure_raises_cache_unavailable(self, broken_cache):
        with pytest.raises(CacheUnavailable):
            broken_cache.invalidate_all("c")

    def test_store_failure_still_returns_value(self, result_cache):
        backend = MagicMock()
        backend.get.return_value = None
        backend.add.return_value = True
        backend.set.side_effect = ConnectionError("write refused")

        with patch.object(ResultCache, "backend", new=backend):
            assert result_cache.get_or_compute("c", [1], lambda: "v") == "v"

    def test_chains_original_error(self, broken_cache):
        with pytest.raises(CacheUnavailable) as exc_info:
            broken_cache.lookup("c", [1])
        assert isinstance(exc_info.value.__cause__, ConnectionError)
