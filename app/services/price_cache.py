"""In-process caches for analytics reads.

``TTLCache`` is a small keyed cache (uptrend summaries, single-timestamp
snapshots). ``PriceRangeCache`` holds one contiguous, day-aligned block of
price samples and answers multi-timestamp lookups from memory while the
request stays inside that block.
"""
from __future__ import annotations

import asyncio
import bisect
import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable, Iterable
from typing import Any

from app.db.store import TimeSeriesStore
from app.models.records import PriceSample
from app.utils.metrics import CACHE_LOOKUPS
from app.utils.time_utils import day_ceil, day_floor

logger = logging.getLogger(__name__)


def snapshot_price(sample: PriceSample) -> float:
    """Price "at" a candle's timestamp: its open, falling back to close."""
    return sample.open if sample.open > 0 else sample.close


def closest_timestamp(sorted_ts: list[int], target: int, tolerance_ms: int) -> int | None:
    """Exact match, else the latest at most ``tolerance_ms`` before, else the earliest at most that much after."""
    idx = bisect.bisect_left(sorted_ts, target)
    if idx < len(sorted_ts) and sorted_ts[idx] == target:
        return target
    if idx > 0 and target - sorted_ts[idx - 1] <= tolerance_ms:
        return sorted_ts[idx - 1]
    if idx < len(sorted_ts) and sorted_ts[idx] - target <= tolerance_ms:
        return sorted_ts[idx]
    return None


class TTLCache:
    """LRU cache with per-entry expiry counted from the last put. The least
    recently read entry is evicted when full."""

    def __init__(
        self,
        max_size: int,
        ttl_sec: float,
        name: str = "ttl",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._max_size = max(1, max_size)
        self._ttl = ttl_sec
        self._name = name
        self._clock = clock
        self._data: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()

    def get(self, key: Hashable) -> Any | None:
        entry = self._data.get(key)
        if entry is not None:
            stored_at, value = entry
            if self._clock() - stored_at < self._ttl:
                self._data.move_to_end(key)
                CACHE_LOOKUPS.labels(cache=self._name, result="hit").inc()
                return value
            del self._data[key]
        CACHE_LOOKUPS.labels(cache=self._name, result="miss").inc()
        return None

    def put(self, key: Hashable, value: Any) -> None:
        self._data.pop(key, None)
        if len(self._data) >= self._max_size:
            self._purge_expired()
        while len(self._data) >= self._max_size:
            self._data.popitem(last=False)
        self._data[key] = (self._clock(), value)

    def invalidate_all(self) -> None:
        self._data.clear()

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, (t, _) in self._data.items() if now - t >= self._ttl]:
            del self._data[key]

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        entry = self._data.get(key)
        return entry is not None and self._clock() - entry[0] < self._ttl


class PriceRangeCache:
    """Whole-range snapshot cache shared by the backtest simulator and the optimizer.

    A bulk request is widened by the lookup tolerance and snapped to UTC day
    boundaries; that block is loaded once and replaces whatever was cached.
    Requests fully inside the block never touch the store.
    """

    def __init__(self, store: TimeSeriesStore):
        self._store = store
        self._lock = asyncio.Lock()
        self._start: int | None = None
        self._end: int | None = None
        self._prices: dict[int, dict[str, float]] = {}
        self._sorted_ts: list[int] = []

    @property
    def covered_range(self) -> tuple[int, int] | None:
        if self._start is None or self._end is None:
            return None
        return self._start, self._end

    async def get_bulk_prices(
        self, times: Iterable[int], tolerance_ms: int = 0
    ) -> dict[int, dict[str, float]]:
        """Map each requested timestamp to ``{symbol: price}`` (empty dict when nothing is close enough)."""
        wanted = sorted(set(times))
        if not wanted:
            return {}
        lo = wanted[0] - tolerance_ms
        hi = wanted[-1] + tolerance_ms

        async with self._lock:
            if self._start is not None and self._start <= lo and hi <= self._end:
                CACHE_LOOKUPS.labels(cache="price_range", result="hit").inc()
            else:
                CACHE_LOOKUPS.labels(cache="price_range", result="miss").inc()
                await self._load(day_floor(lo), day_ceil(hi))
            prices = self._prices
            sorted_ts = self._sorted_ts

        out: dict[int, dict[str, float]] = {}
        for ts in wanted:
            found = closest_timestamp(sorted_ts, ts, tolerance_ms)
            out[ts] = prices[found] if found is not None else {}
        return out

    async def _load(self, start_ms: int, end_ms: int) -> None:
        started = time.monotonic()
        samples = await self._store.get_prices_between(start_ms, end_ms)
        prices: dict[int, dict[str, float]] = {}
        for s in samples:
            prices.setdefault(s.ts_ms, {})[s.symbol] = snapshot_price(s)
        self._prices = prices
        self._sorted_ts = sorted(prices)
        self._start, self._end = start_ms, end_ms
        logger.info(
            "Price range cache loaded %d samples over %d timestamps in %.0fms",
            len(samples), len(prices), (time.monotonic() - started) * 1000,
        )

    async def invalidate_range(self, start_ms: int, end_ms: int) -> None:
        """Drop the cached block if it overlaps [start_ms, end_ms]."""
        async with self._lock:
            if self._start is None or end_ms < self._start or start_ms > self._end:
                return
            self._reset()
            logger.debug("Price range cache invalidated by write at %d..%d", start_ms, end_ms)

    async def clear(self) -> None:
        async with self._lock:
            self._reset()
        logger.info("Price range cache cleared")

    def _reset(self) -> None:
        self._start = self._end = None
        self._prices = {}
        self._sorted_ts = []
