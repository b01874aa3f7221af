import asyncio

import pytest

from castgraph.cache import LookupCache, path_key
from castgraph.exceptions import UpstreamError


def test_get_returns_stored_value(cache):
    cache.set("actor:details:1", {"name": "Alice"}, ttl=60)
    assert cache.get("actor:details:1") == {"name": "Alice"}


def test_get_missing_key_returns_none(cache):
    assert cache.get("nonexistent:key") is None


def test_entry_expires_after_ttl(cache, clock):
    cache.set("k", "value", ttl=10)

    clock.advance(10)
    assert cache.get("k") == "value"

    clock.advance(0.5)
    assert cache.get("k") is None
    # Expired entries are removed on read
    assert len(cache) == 0


def test_set_overwrites_value_and_expiry(cache, clock):
    cache.set("k", "old", ttl=5)
    cache.set("k", "new", ttl=100)

    clock.advance(50)
    assert cache.get("k") == "new"


def test_lru_entry_evicted_when_full(clock):
    cache = LookupCache(max_size=2, clock=clock)
    cache.set("a", 1, ttl=60)
    cache.set("b", 2, ttl=60)
    cache.get("a")
    cache.set("c", 3, ttl=60)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert cache.stats()['evictions'] == 1


def test_path_key_is_symmetric():
    assert path_key(31, 500) == path_key(500, 31)
    assert path_key(7, 7) == "path:7:7"
    assert path_key(2, 10) == "path:2:10"


def test_purge_expired_removes_only_stale_entries(cache, clock):
    cache.set("short", 1, ttl=5)
    cache.set("long", 2, ttl=500)

    clock.advance(6)
    assert cache.purge_expired() == 1
    assert len(cache) == 1
    assert cache.get("long") == 2


def test_stats_and_clear(cache):
    cache.set("k", "v", ttl=60)
    cache.get("k")
    cache.get("missing")

    stats = cache.stats()
    assert stats['hits'] == 1
    assert stats['misses'] == 1
    assert stats['size'] == 1
    assert stats['hit_rate'] == 50.0
    assert cache.keys() == ["k"]

    cache.clear()
    stats = cache.stats()
    assert stats['size'] == 0
    assert stats['hits'] == 0
    assert stats['misses'] == 0


@pytest.mark.asyncio
async def test_get_or_compute_caches_producer_result(cache):
    calls = 0

    async def producer():
        nonlocal calls
        calls += 1
        return {"data": "fetched", "call": calls}

    first = await cache.get_or_compute("wrap", 60, producer)
    second = await cache.get_or_compute("wrap", 60, producer)

    assert calls == 1
    assert first is second
    assert cache.get("wrap") is first


@pytest.mark.asyncio
async def test_get_or_compute_recomputes_after_expiry(cache, clock):
    calls = 0

    async def producer():
        nonlocal calls
        calls += 1
        return calls

    assert await cache.get_or_compute("k", 30, producer) == 1
    clock.advance(31)
    assert await cache.get_or_compute("k", 30, producer) == 2


@pytest.mark.asyncio
async def test_failed_producer_is_not_cached(cache):
    async def failing():
        raise UpstreamError("provider down", status_code=500)

    async def working():
        return "recovered"

    with pytest.raises(UpstreamError):
        await cache.get_or_compute("k", 60, failing)

    assert cache.get("k") is None
    assert await cache.get_or_compute("k", 60, working) == "recovered"


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_producer_call(cache):
    calls = 0
    release = asyncio.Event()

    async def slow_producer():
        nonlocal calls
        calls += 1
        await release.wait()
        return "shared"

    tasks = [asyncio.create_task(cache.get_or_compute("cold", 60, slow_producer)) for _ in range(5)]
    await asyncio.sleep(0)
    assert cache.stats()['in_flight'] == 1

    release.set()
    results = await asyncio.gather(*tasks)

    assert calls == 1
    assert results == ["shared"] * 5
    assert cache.stats()['in_flight'] == 0


@pytest.mark.asyncio
async def test_concurrent_callers_all_see_producer_failure(cache):
    release = asyncio.Event()

    async def failing():
        await release.wait()
        raise UpstreamError("boom")

    tasks = [asyncio.create_task(cache.get_or_compute("cold", 60, failing)) for _ in range(3)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert all(isinstance(r, UpstreamError) for r in results)
    assert cache.get("cold") is None
    assert cache.stats()['in_flight'] == 0


@pytest.mark.asyncio
async def test_cancelled_first_caller_does_not_cancel_waiters(cache):
    calls = 0
    release = asyncio.Event()

    async def slow_producer():
        nonlocal calls
        calls += 1
        await release.wait()
        return "shared"

    owner = asyncio.create_task(cache.get_or_compute("cold", 60, slow_producer))
    await asyncio.sleep(0)
    waiter = asyncio.create_task(cache.get_or_compute("cold", 60, slow_producer))
    await asyncio.sleep(0)

    owner.cancel()
    await asyncio.sleep(0)
    release.set()

    assert await waiter == "shared"
    with pytest.raises(asyncio.CancelledError):
        await owner

    assert calls == 1
    assert cache.get("cold") == "shared"
    assert cache.stats()['in_flight'] == 0


@pytest.mark.asyncio
async def test_computation_completes_after_every_caller_is_cancelled(cache):
    release = asyncio.Event()
    done = asyncio.Event()

    async def slow_producer():
        await release.wait()
        done.set()
        return "late"

    caller = asyncio.create_task(cache.get_or_compute("cold", 60, slow_producer))
    await asyncio.sleep(0)
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller

    release.set()
    await done.wait()
    await asyncio.sleep(0)

    assert cache.get("cold") == "late"
    assert cache.stats()['in_flight'] == 0
