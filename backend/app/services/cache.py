"""In-memory TTL cache and the two-layer price series cache."""

import asyncio
import json
import logging
import threading
import time
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import SERIES_CACHE_DEFAULT_TTL, SERIES_CACHE_TTL, SERIES_STALE_WINDOW
from app.models.database import async_session_factory
from app.models.holding import PricePoint
from app.models.portfolio import PriceSeriesCacheEntry
from app.services.errors import MarketDataError

logger = logging.getLogger(__name__)

SeriesFetcher = Callable[[str, str, str], Awaitable[list[PricePoint]]]

class CacheService:
    """Thread-safe in-memory cache with TTL support.

    By default expired entries are kept until overwritten so callers can still
    fall back to them with ``get_stale`` when the upstream is down. With
    ``keep_stale=False`` they are dropped on read and purged on every write.
    """

    def __init__(
        self,
        default_ttl: int = 60,
        clock: Callable[[], float] = time.time,
        keep_stale: bool = True,
    ):
        self._store: dict[str, tuple[Any, float]] = {}
        self._default_ttl = default_ttl
        self._clock = clock
        self._keep_stale = keep_stale
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() > expires_at:
                if not self._keep_stale:
                    del self._store[key]
                return None
            return value

    def get_stale(self, key: str) -> Any | None:
        with self._lock:
            entry = self._store.get(key)
            return entry[0] if entry is not None else None

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = ttl if ttl is not None else self._default_ttl
        now = self._clock()
        with self._lock:
            if not self._keep_stale:
                self._purge_expired(now)
            self._store[key] = (value, now + ttl)

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, (_, expires_at) in self._store.items() if now > expires_at]
        for k in expired:
            del self._store[k]

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


class SeriesCache:
    """Memoizes price series by (symbol, range, interval).

    Lookup order is memory, then the durable SQLite table, then the network.
    Simultaneous requests for one key share a single fetch. On fetch failure
    stale memory data is served first, then durable data younger than the
    stale window; otherwise the error propagates.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        stale_window: float = SERIES_STALE_WINDOW,
        clock: Callable[[], float] = time.time,
    ):
        self._memory = CacheService(default_ttl=SERIES_CACHE_DEFAULT_TTL, clock=clock)
        self._session_factory = session_factory
        self._stale_window = stale_window
        self._clock = clock
        self._inflight: dict[str, asyncio.Task] = {}

    @staticmethod
    def make_key(symbol: str, range_: str, interval: str) -> str:
        return f"{symbol.strip().upper()}|{range_}|{interval}"

    @staticmethod
    def ttl_for(range_: str) -> int:
        return SERIES_CACHE_TTL.get(range_, SERIES_CACHE_DEFAULT_TTL)

    async def get_series(
        self, symbol: str, range_: str, interval: str, fetch: SeriesFetcher
    ) -> list[PricePoint]:
        key = self.make_key(symbol, range_, interval)
        cached = self._memory.get(key)
        if cached is not None:
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._load(key, symbol, range_, interval, fetch))
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))
        # Shield so one cancelled caller does not cancel the shared fetch
        return await asyncio.shield(task)

    async def _load(
        self, key: str, symbol: str, range_: str, interval: str, fetch: SeriesFetcher
    ) -> list[PricePoint]:
        ttl = self.ttl_for(range_)
        durable = await self._read_durable(key)
        now = self._clock()
        if durable is not None:
            points, fetched_at = durable
            age = now - fetched_at
            if age <= ttl:
                self._memory.set(key, points, ttl=ttl - age)
                return points

        try:
            points = await fetch(symbol, range_, interval)
            if not points:
                raise MarketDataError(f"No data for symbol {symbol}")
        except Exception as e:
            stale = self._memory.get_stale(key)
            if stale:
                logger.warning(f"Serving stale in-memory series for {key}: {e}")
                return stale
            if durable is not None and now - durable[1] <= self._stale_window:
                logger.warning(f"Serving stale durable series for {key}: {e}")
                return durable[0]
            raise

        self._memory.set(key, points, ttl=ttl)
        await self._write_durable(key, points, now)
        return points

    async def _read_durable(self, key: str) -> tuple[list[PricePoint], float] | None:
        if self._session_factory is None:
            return None
        try:
            async with self._session_factory() as session:
                entry = await session.get(PriceSeriesCacheEntry, key)
                if entry is None:
                    return None
                points = [PricePoint(int(ts), float(price)) for ts, price in json.loads(entry.points_json)]
                return points, entry.fetched_at
        except Exception as e:
            logger.error(f"Durable series cache read failed for {key}: {e}")
            return None

    async def _write_durable(self, key: str, points: list[PricePoint], fetched_at: float) -> None:
        if self._session_factory is None:
            return
        try:
            async with self._session_factory() as session:
                await session.merge(
                    PriceSeriesCacheEntry(
                        cache_key=key,
                        points_json=json.dumps([[p.ts, p.price] for p in points]),
                        fetched_at=fetched_at,
                    )
                )
                await session.commit()
        except Exception as e:
            logger.error(f"Durable series cache write failed for {key}: {e}")


# Global instance, handed to the market data provider
series_cache = SeriesCache(session_factory=async_session_factory)
