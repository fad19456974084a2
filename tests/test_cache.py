from __future__ import annotations

import pytest

from capacity_guard.cache import AggregateCache


def test_computes_once_per_key() -> None:
    cache = AggregateCache()
    calls = []

    def compute():
        calls.append(1)
        return 42

    assert cache.get_or_compute("op", "fp", ("a",), compute) == 42
    assert cache.get_or_compute("op", "fp", ("a",), compute) == 42
    assert len(calls) == 1
    assert (cache.hits, cache.misses) == (1, 1)


def test_fingerprint_is_part_of_the_key() -> None:
    cache = AggregateCache()
    cache.get_or_compute("op", "fp-1", (), lambda: 1)

    assert cache.get_or_compute("op", "fp-2", (), lambda: 2) == 2


def test_oldest_entry_is_evicted_at_capacity() -> None:
    cache = AggregateCache(max_entries=2)
    for key in ("a", "b", "c"):
        cache.get_or_compute("op", "fp", (key,), lambda key=key: key)

    assert len(cache) == 2
    assert cache.get_or_compute("op", "fp", ("a",), lambda: "recomputed") == "recomputed"


def test_invalidate_by_operation() -> None:
    cache = AggregateCache()
    cache.get_or_compute("utilization", "fp", (), lambda: 1)
    cache.get_or_compute("pending_spend", "fp", (), lambda: 2)

    cache.invalidate("utilization")
    assert len(cache) == 1

    cache.invalidate()
    assert len(cache) == 0


def test_rejects_non_positive_bound() -> None:
    with pytest.raises(ValueError):
        AggregateCache(max_entries=0)
