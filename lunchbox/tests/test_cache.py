from __future__ import annotations

import asyncio

from lunchbox.cache.backends import MemoryBackend
from lunchbox.cache.config import CacheConfig
from lunchbox.cache.keys import distance_key, origin_key, search_key
from lunchbox.cache.tiered import MISS, BackgroundWriter, TieredCache, build_caches
from lunchbox.recommendations.models import Duration

from lunchbox.tests.fakes import FailingBackend, FakeClock, make_venue


def _cache(backend=None, clock=None, **kwargs) -> TieredCache:
    return TieredCache(
        "search", l1_ttl=60, l2_ttl=3600, backend=backend,
        clock=clock or FakeClock(), **kwargs,
    )


# ── Keys ─────────────────────────────────────────────────────────────────


def test_origin_key_rounds_to_three_decimals():
    assert origin_key(12.34567, 4.56789) == "12.346,4.568"


def test_nearby_origins_share_a_bucket():
    # ~50 m apart
    assert origin_key(38.72231, -9.13932) == origin_key(38.72249, -9.13911)


def test_search_key_normalises_query():
    assert search_key(12.34567, 4.56789, "  Ramen Shop ", 2500) == "12.346,4.568:2500:ramen shop"


def test_distance_key():
    assert distance_key(1.0, 2.0, "abc") == "1.000,2.000:abc"


# ── TieredCache ──────────────────────────────────────────────────────────


def test_full_miss_returns_sentinel():
    cache = _cache(backend=MemoryBackend())
    assert asyncio.run(cache.get("nope")) is MISS
    assert cache.misses == 1


def test_put_then_get_hits_l1():
    async def scenario():
        cache = _cache(backend=MemoryBackend())
        cache.put("k", ["a", "b"])
        value = await cache.get("k")
        await cache.writer.flush()
        return cache, value

    cache, value = asyncio.run(scenario())
    assert value == ["a", "b"]
    assert cache.l1_hits == 1
    assert cache.hits == 1


def test_l1_expiry_falls_back_to_l2_and_backfills():
    async def scenario():
        clock = FakeClock()
        backend = MemoryBackend(clock=clock)
        cache = _cache(backend=backend, clock=clock)
        cache.put("k", ["a"])
        await cache.writer.flush()

        clock.advance(61)  # past L1, inside L2
        first = await cache.get("k")
        second = await cache.get("k")
        return cache, first, second

    cache, first, second = asyncio.run(scenario())
    assert first == ["a"]
    assert second == ["a"]
    assert cache.l2_hits == 1
    assert cache.l1_hits == 1


def test_l2_expiry_is_a_miss():
    async def scenario():
        clock = FakeClock()
        cache = _cache(backend=MemoryBackend(clock=clock), clock=clock)
        cache.put("k", ["a"])
        await cache.writer.flush()
        clock.advance(3601)
        return await cache.get("k")

    assert asyncio.run(scenario()) is MISS


def test_get_many_uses_one_l2_round_trip():
    async def scenario():
        backend = MemoryBackend()
        await backend.set_many("search", {f"k{i}": [str(i)] for i in range(30)}, 3600)
        cache = _cache(backend=backend)
        lookup = await cache.get_many([f"k{i}" for i in range(40)])
        return backend, lookup

    backend, lookup = asyncio.run(scenario())
    assert backend.get_calls == 1
    assert len(lookup.found) == 30
    assert lookup.missing == [f"k{i}" for i in range(30, 40)]


def test_get_many_skips_l2_when_l1_answers_everything():
    async def scenario():
        backend = MemoryBackend()
        cache = _cache(backend=backend)
        cache.put_many({"a": ["1"], "b": ["2"]})
        await cache.writer.flush()
        lookup = await cache.get_many(["a", "b"])
        return backend, lookup

    backend, lookup = asyncio.run(scenario())
    assert backend.get_calls == 0
    assert lookup.missing == []


def test_failed_l2_write_is_logged_not_raised():
    async def scenario():
        backend = FailingBackend()
        cache = _cache(backend=backend)
        cache.put("k", ["a"])
        await cache.writer.flush()
        return backend, cache, await cache.get("k")

    backend, cache, value = asyncio.run(scenario())
    assert backend.write_attempts == 1
    assert cache.writer.failures == 1
    assert value == ["a"]  # L1 still serves it


def test_failed_l2_read_is_a_miss():
    async def scenario():
        cache = _cache(backend=FailingBackend(fail_reads=True))
        return cache, await cache.get("k")

    cache, value = asyncio.run(scenario())
    assert value is MISS
    assert cache.l2_errors == 1


def test_put_without_running_loop_keeps_l1():
    cache = _cache(backend=MemoryBackend())
    cache.put("k", ["a"])
    assert cache.writer.pending == 0
    assert asyncio.run(cache.get("k")) == ["a"]


def test_clear_resets_counters_and_l1():
    cache = _cache()
    cache.put("k", ["a"])
    asyncio.run(cache.get("k"))
    cache.clear()
    assert cache.stats()["size"] == 0
    assert cache.hits == 0
    assert asyncio.run(cache.get("k")) is MISS


def test_stats_report_hit_rate_and_savings():
    cache = _cache(cost_per_hit=0.032)
    cache.put("k", ["a"])
    asyncio.run(cache.get("k"))
    asyncio.run(cache.get("other"))
    stats = cache.stats()
    assert stats["hit_rate"] == 50.0
    assert stats["estimated_savings_eur"] == 0.032


class TestBackgroundWriter:
    def test_flush_waits_for_pending_writes(self):
        done = []

        async def write():
            await asyncio.sleep(0)
            done.append(True)

        async def scenario():
            writer = BackgroundWriter()
            writer.submit(write(), "test")
            assert writer.pending == 1
            await writer.flush()
            return writer

        writer = asyncio.run(scenario())
        assert done == [True]
        assert writer.completed == 1


# ── build_caches ─────────────────────────────────────────────────────────


def test_build_caches_round_trips_models_through_l2():
    async def scenario():
        clock = FakeClock()
        backend = MemoryBackend(clock=clock)
        caches = build_caches(CacheConfig(details_l1_ttl=10, distance_l1_ttl=10), backend=backend, clock=clock)
        venue = make_venue("v1")
        caches.details.put("v1", venue)
        caches.distance.put("o:v1", Duration(text="5 mins", seconds=300))
        await caches.writer.flush()
        clock.advance(11)
        return venue, await caches.details.get("v1"), await caches.distance.get("o:v1"), caches

    venue, details, distance, caches = asyncio.run(scenario())
    assert details == venue
    assert distance.seconds == 300
    stats = caches.stats()
    assert stats["details"]["l2_hits"] == 1
    assert stats["total_saved_calls"] == 2
    assert stats["total_estimated_savings_eur"] == 0.022
