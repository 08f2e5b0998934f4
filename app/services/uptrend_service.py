"""Uptrend wave summary over a time window.

Each symbol's candles are loaded and scanned on a small dedicated thread
pool; the whole batch shares one deadline and is discarded if it runs
over. Only one summary is computed at a time; a second caller gets
``AnalysisBusyError`` instead of waiting.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from app.db.store import TimeSeriesStore
from app.services.index_calculator import InvalidParameterError, bucketize
from app.services.price_cache import TTLCache
from app.services.wave_detector import UptrendWave, WaveParams, detect_waves
from app.utils.metrics import WAVE_DETECTION_DURATION
from app.utils.time_utils import HOUR_MS, align5, ms_to_iso, now_ms

logger = logging.getLogger(__name__)


class WaveDetectionTimeout(Exception):
    """Wave detection ran past its deadline; no partial result is kept."""


class AnalysisBusyError(Exception):
    """Another uptrend computation is running."""


class UptrendService:
    def __init__(
        self,
        store: TimeSeriesStore,
        cache: TTLCache,
        *,
        pool_size: int = 4,
        timeout_sec: float = 120.0,
        clock: Callable[[], int] = now_ms,
    ):
        self._store = store
        self._cache = cache
        self._timeout_sec = timeout_sec
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=max(1, pool_size), thread_name_prefix="wave")
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def summary_for_hours(self, hours: float, params: WaveParams) -> dict | None:
        if hours <= 0:
            raise InvalidParameterError("hours must be > 0")
        end_ms = align5(self._clock())
        start_ms = end_ms - int(hours * HOUR_MS)
        return await self.summary_for_range(start_ms, end_ms, params)

    async def summary_for_range(self, start_ms: int, end_ms: int, params: WaveParams) -> dict | None:
        """Bucketed wave summary, or None when the window holds no qualifying wave.

        Raises AnalysisBusyError when a computation is already running and
        WaveDetectionTimeout when the batch misses its deadline.
        """
        if start_ms > end_ms:
            raise InvalidParameterError("start must not be after end")
        start_ms, end_ms = align5(start_ms), align5(end_ms)
        key = params.cache_key(start_ms, end_ms)
        cached = self._cache.get(key)
        if cached is not None:
            logger.info("Uptrend cache hit: %s", key)
            return cached

        if self._busy:
            raise AnalysisBusyError("uptrend computation already running")
        self._busy = True
        try:
            waves = await self._detect_all(start_ms, end_ms, params)
        finally:
            self._busy = False

        if waves is None:
            return None
        summary = self._summarize(waves, params)
        if summary is not None:
            self._cache.put(key, summary)
        return summary

    async def _detect_all(self, start_ms: int, end_ms: int, params: WaveParams) -> list[UptrendWave] | None:
        symbols = await self._store.get_distinct_symbols(start_ms, end_ms)
        if not symbols:
            logger.warning("No price data between %s and %s", ms_to_iso(start_ms), ms_to_iso(end_ms))
            return None

        logger.info(
            "Wave detection: %d symbol(s) %s -> %s keep=%.2f nnh=%d min=%.2f mode=%s",
            len(symbols), ms_to_iso(start_ms), ms_to_iso(end_ms),
            params.keep_ratio, params.no_new_high_candles, params.min_uptrend, params.price_mode.value,
        )
        loop = asyncio.get_running_loop()

        async def one_symbol(symbol: str) -> list[UptrendWave]:
            candles = await self._store.get_symbol_prices(symbol, start_ms, end_ms)
            return await loop.run_in_executor(self._executor, detect_waves, symbol, candles, params)

        tasks = [asyncio.ensure_future(one_symbol(s)) for s in symbols]
        started = time.monotonic()
        try:
            per_symbol = await asyncio.wait_for(asyncio.gather(*tasks), timeout=self._timeout_sec)
        except asyncio.TimeoutError:
            for t in tasks:
                t.cancel()
            logger.error(
                "Wave detection exceeded %.0fs over %d symbol(s), result discarded",
                self._timeout_sec, len(symbols),
            )
            raise WaveDetectionTimeout(f"wave detection exceeded {self._timeout_sec:.0f}s") from None
        elapsed = time.monotonic() - started
        WAVE_DETECTION_DURATION.observe(elapsed)

        waves = [w for symbol_waves in per_symbol for w in symbol_waves]
        logger.info("Wave detection done in %.0fms: %d wave(s)", elapsed * 1000, len(waves))
        return waves

    def _summarize(self, waves: list[UptrendWave], params: WaveParams) -> dict | None:
        if not waves:
            logger.warning("No wave reached the minimum uptrend")
            return None

        waves = sorted(waves, key=lambda w: (-w.uptrend_percent, w.symbol, w.start_ts))
        ongoing = sum(1 for w in waves if w.is_ongoing)
        avg = sum(w.uptrend_percent for w in waves) / len(waves)

        _, buckets = bucketize(waves, lambda w: w.uptrend_percent)
        distribution = [
            {
                "range": label,
                "count": len(members),
                "ongoingCount": sum(1 for w in members if w.is_ongoing),
                "coins": [w.to_dict() for w in members],
            }
            for label, members in buckets
        ]
        return {
            "timestamp": self._clock(),
            "totalCoins": len(waves),
            "pullbackThreshold": params.keep_ratio,
            "avgUptrend": round(avg, 2),
            "maxUptrend": round(waves[0].uptrend_percent, 2),
            "ongoingCount": ongoing,
            "distribution": distribution,
            "allCoinsRanking": [w.to_dict() for w in waves],
        }
