"""Tests for in-memory cache service and the price series cache."""

import asyncio
import time

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from app.models.database import Base, create_session_factory
from app.models.holding import PricePoint
from app.services.cache import CacheService, SeriesCache
from app.services.errors import MarketDataError

SERIES = [PricePoint(1, 10.0), PricePoint(2, 11.0)]


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class CountingFetch:
    def __init__(self, result=None, error: Exception | None = None):
        self.calls = 0
        self.result = SERIES if result is None else result
        self.error = error

    async def __call__(self, symbol, range_, interval):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_factory(engine)
    await engine.dispose()


def test_set_and_get():
    cache = CacheService(default_ttl=60)
    cache.set("key1", {"price": 100.5})
    result = cache.get("key1")
    assert result == {"price": 100.5}


def test_get_missing_key():
    cache = CacheService(default_ttl=60)
    assert cache.get("nonexistent") is None


def test_ttl_expiry():
    cache = CacheService(default_ttl=1)
    cache.set("key1", "value1")
    assert cache.get("key1") == "value1"
    time.sleep(1.1)
    assert cache.get("key1") is None


def test_custom_ttl_with_clock():
    clock = FakeClock()
    cache = CacheService(default_ttl=60, clock=clock)
    cache.set("key1", "value1", ttl=5)
    clock.now += 4
    assert cache.get("key1") == "value1"
    clock.now += 2
    assert cache.get("key1") is None
    assert cache.get_stale("key1") == "value1"


def test_delete():
    cache = CacheService(default_ttl=60)
    cache.set("key1", "value1")
    cache.delete("key1")
    assert cache.get("key1") is None
    assert cache.get_stale("key1") is None


def test_clear():
    cache = CacheService(default_ttl=60)
    cache.set("key1", "v1")
    cache.set("key2", "v2")
    cache.clear()
    assert cache.get("key1") is None
    assert cache.get("key2") is None


def test_expired_entries_dropped_without_keep_stale():
    clock = FakeClock()
    cache = CacheService(default_ttl=10, clock=clock, keep_stale=False)
    cache.set("a", 1)
    cache.set("b", 2)
    clock.now += 11

    assert cache.get("a") is None
    assert cache.get_stale("a") is None
    assert len(cache) == 1

    cache.set("c", 3)
    assert len(cache) == 1
    assert cache.get_stale("b") is None
    assert cache.get("c") == 3


def test_series_key_and_ttl():
    assert SeriesCache.make_key(" tcs.ns ", "10y", "1d") == "TCS.NS|10y|1d"
    assert SeriesCache.ttl_for("10y") == 24 * 3600
    assert SeriesCache.ttl_for("max") == 24 * 3600
    assert SeriesCache.ttl_for("5y") == 12 * 3600
    assert SeriesCache.ttl_for("1y") == 6 * 3600
    assert SeriesCache.ttl_for("6mo") == 3600
    assert SeriesCache.ttl_for("1mo") == 15 * 60


@pytest.mark.asyncio
async def test_series_memory_hit_skips_fetch():
    cache = SeriesCache()
    fetch = CountingFetch()
    assert await cache.get_series("TCS.NS", "10y", "1d", fetch) == SERIES
    assert await cache.get_series("tcs.ns", "10y", "1d", fetch) == SERIES
    assert fetch.calls == 1


@pytest.mark.asyncio
async def test_series_expires_by_range_ttl():
    clock = FakeClock()
    cache = SeriesCache(clock=clock)
    fetch = CountingFetch()
    await cache.get_series("TCS.NS", "1mo", "1d", fetch)
    clock.now += 15 * 60 + 1
    await cache.get_series("TCS.NS", "1mo", "1d", fetch)
    assert fetch.calls == 2


@pytest.mark.asyncio
async def test_concurrent_requests_share_one_fetch():
    cache = SeriesCache()
    release = asyncio.Event()
    calls = 0

    async def slow_fetch(symbol, range_, interval):
        nonlocal calls
        calls += 1
        await release.wait()
        return SERIES

    waiters = [asyncio.create_task(cache.get_series("GC=F", "10y", "1d", slow_fetch)) for _ in range(3)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*waiters)

    assert calls == 1
    assert all(r == SERIES for r in results)


@pytest.mark.asyncio
async def test_empty_series_counts_as_failure():
    cache = SeriesCache()
    with pytest.raises(MarketDataError):
        await cache.get_series("NOPE", "10y", "1d", CountingFetch(result=[]))


@pytest.mark.asyncio
async def test_failure_serves_stale_memory():
    clock = FakeClock()
    cache = SeriesCache(clock=clock)
    await cache.get_series("TCS.NS", "1mo", "1d", CountingFetch())
    clock.now += 3600

    failing = CountingFetch(error=MarketDataError("upstream down"))
    assert await cache.get_series("TCS.NS", "1mo", "1d", failing) == SERIES
    assert failing.calls == 1


@pytest.mark.asyncio
async def test_failure_without_any_cache_propagates():
    cache = SeriesCache()
    with pytest.raises(MarketDataError):
        await cache.get_series("TCS.NS", "10y", "1d", CountingFetch(error=MarketDataError("down")))


@pytest.mark.asyncio
async def test_durable_layer_survives_restart(session_factory):
    clock = FakeClock()
    first = SeriesCache(session_factory=session_factory, clock=clock)
    await first.get_series("TCS.NS", "10y", "1d", CountingFetch())

    restarted = SeriesCache(session_factory=session_factory, clock=clock)
    fetch = CountingFetch(result=[PricePoint(5, 99.0)])
    clock.now += 60
    assert await restarted.get_series("TCS.NS", "10y", "1d", fetch) == SERIES
    assert fetch.calls == 0


@pytest.mark.asyncio
async def test_stale_durable_served_within_window(session_factory):
    clock = FakeClock()
    await SeriesCache(session_factory=session_factory, clock=clock).get_series(
        "TCS.NS", "10y", "1d", CountingFetch()
    )

    clock.now += 3 * 24 * 3600
    restarted = SeriesCache(session_factory=session_factory, clock=clock)
    failing = CountingFetch(error=MarketDataError("down"))
    assert await restarted.get_series("TCS.NS", "10y", "1d", failing) == SERIES
    assert failing.calls == 1


@pytest.mark.asyncio
async def test_stale_durable_beyond_window_is_not_served(session_factory):
    clock = FakeClock()
    await SeriesCache(session_factory=session_factory, clock=clock).get_series(
        "TCS.NS", "10y", "1d", CountingFetch()
    )

    clock.now += 15 * 24 * 3600
    restarted = SeriesCache(session_factory=session_factory, clock=clock)
    with pytest.raises(MarketDataError):
        await restarted.get_series("TCS.NS", "10y", "1d", CountingFetch(error=MarketDataError("down")))


@pytest.mark.asyncio
async def test_durable_errors_do_not_fail_the_call():
    def broken_factory():
        raise RuntimeError("database is locked")

    cache = SeriesCache(session_factory=broken_factory)
    assert await cache.get_series("TCS.NS", "10y", "1d", CountingFetch()) == SERIES
