from __future__ import annotations

import asyncio

from omsassist.cache import MISS, TTLCacheStore, get_or_set, make_cache_key


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_entry_expires_after_ttl():
    clock = FakeClock()
    cache = TTLCacheStore(default_ttl=60, clock=clock)
    cache.set("orders:all", [1, 2, 3])
    clock.advance(59)
    assert cache.get("orders:all") == [1, 2, 3]
    clock.advance(2)
    assert cache.get("orders:all") is MISS
    stats = cache.stats()
    assert stats.hits == 1
    assert stats.misses == 1


def test_per_entry_ttl_overrides_default():
    clock = FakeClock()
    cache = TTLCacheStore(default_ttl=600, clock=clock)
    cache.set("short", "a", ttl=5)
    cache.set("long", "b")
    clock.advance(10)
    assert cache.get("short") is MISS
    assert cache.get("long") == "b"


def test_entry_cap_evicts_least_recently_used():
    cache = TTLCacheStore(max_entries=2, default_ttl=60, clock=FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1
    cache.set("c", 3)
    assert cache.get("b") is MISS
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert cache.stats().evictions == 1


def test_byte_cap_skips_oversized_values():
    cache = TTLCacheStore(max_bytes=64, default_ttl=60, clock=FakeClock())
    cache.set("big", "x" * 1000)
    assert cache.get("big") is MISS
    assert cache.stats().total_entries == 0


def test_invalidate_prefix_only_removes_matching_keys():
    cache = TTLCacheStore(default_ttl=60, clock=FakeClock())
    cache.set("vector:results:1", [1])
    cache.set("vector:results:2", [2])
    cache.set("orders:all", [3])
    assert cache.invalidate_prefix("vector:") == 2
    assert cache.get("orders:all") == [3]


def test_cache_key_is_order_independent_and_namespaced():
    first = make_cache_key("query", query="rush orders", today="2024-03-13")
    second = make_cache_key("query", today="2024-03-13", query="rush orders")
    assert first == second
    assert first.startswith("query:")
    assert first != make_cache_key("query", query="rush orders", today="2024-03-14")


def test_get_or_set_calls_factory_once():
    cache = TTLCacheStore(default_ttl=60, clock=FakeClock())
    calls = []

    async def factory():
        calls.append(1)
        return "value"

    async def run():
        first = await get_or_set(cache, "k", factory)
        second = await get_or_set(cache, "k", factory)
        return first, second

    first, second = asyncio.run(run())
    assert first == ("value", False)
    assert second == ("value", True)
    assert len(calls) == 1


def test_stats_report_hit_rate():
    cache = TTLCacheStore(default_ttl=60, clock=FakeClock())
    cache.set("k", "v")
    cache.get("k")
    cache.get("missing")
    payload = cache.stats().to_dict()
    assert payload["hitRate"] == 0.5
    assert payload["totalEntries"] == 1


def test_reset_stats_keeps_entries():
    cache = TTLCacheStore(default_ttl=60, clock=FakeClock())
    cache.set("k", "v")
    cache.get("k")
    cache.reset_stats()
    stats = cache.stats()
    assert stats.hits == 0
    assert stats.misses == 0
    assert stats.total_entries == 1
