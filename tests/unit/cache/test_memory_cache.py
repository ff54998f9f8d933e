from __future__ import annotations

import pytest

from src.memolens.cache import MemoryCache
from tests.helpers.clock import MonotonicClock


@pytest.mark.unit
def test_entries_expire_after_ttl() -> None:
    clock = MonotonicClock()
    cache = MemoryCache(clock=clock)

    cache.set("caption:abc", "a dog", 10)
    clock.advance(9.9)
    assert cache.get("caption:abc") == (True, "a dog")

    clock.advance(0.2)
    assert cache.get("caption:abc") == (False, None)
    assert len(cache) == 0


@pytest.mark.unit
def test_ttl_is_capped_by_local_maximum() -> None:
    clock = MonotonicClock()
    cache = MemoryCache(max_ttl_seconds=5, clock=clock)

    cache.set("k", 1, 3_600)
    clock.advance(5.1)

    assert cache.get("k") == (False, None)


@pytest.mark.unit
def test_least_recently_used_entry_is_evicted() -> None:
    cache = MemoryCache(max_entries=2)
    cache.set("a", 1, 60)
    cache.set("b", 2, 60)
    cache.get("a")

    cache.set("c", 3, 60)

    assert cache.get("a") == (True, 1)
    assert cache.get("b") == (False, None)
    assert cache.get("c") == (True, 3)


@pytest.mark.unit
def test_none_is_a_cacheable_value() -> None:
    cache = MemoryCache()
    cache.set("k", None, 60)

    assert cache.get("k") == (True, None)


@pytest.mark.unit
def test_non_positive_ttl_removes_entry() -> None:
    cache = MemoryCache()
    cache.set("k", 1, 60)

    cache.set("k", 2, 0)

    assert cache.get("k") == (False, None)


@pytest.mark.unit
def test_delete_prefix_counts_removed_entries() -> None:
    cache = MemoryCache()
    cache.set("caption:1", "x", 60)
    cache.set("caption:2", "y", 60)
    cache.set("scene:1", "z", 60)

    assert cache.delete_prefix("caption:") == 2
    assert len(cache) == 1


@pytest.mark.unit
def test_invalid_bounds_are_rejected() -> None:
    with pytest.raises(ValueError):
        MemoryCache(max_entries=0)
    with pytest.raises(ValueError):
        MemoryCache(max_ttl_seconds=0)
