"""Ingestion and backfill pipeline.

Keeps the price store aligned with the exchange's 5-minute calendar:
two-phase bulk backfill, live collection of the newest closed candle,
buffering of live rounds while a backfill runs, gap detection and repair,
delisting cleanup and duplicate cleanup. The store's unique indexes are
the final arbiter of first-writer-wins; the existence checks here only
avoid wasted exchange calls.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from app.config import GlobalConfig
from app.db.store import TimeSeriesStore
from app.exchange.base_client import ExchangeClient, ExchangeRateLimitedError
from app.models.records import IndexPoint, PriceSample
from app.services.base_price_registry import BasePriceRegistry
from app.services.index_calculator import InvalidParameterError, compute_index
from app.services.price_cache import PriceRangeCache, TTLCache
from app.utils.metrics import (
    BACKFILL_IN_PROGRESS,
    BACKFILL_PHASE_DURATION,
    INDEX_POINTS_WRITTEN,
    PENDING_QUEUE_SIZE,
    ROWS_INSERTED,
)
from app.utils.time_utils import (
    DAY_MS,
    FIVE_MIN_MS,
    align5,
    grid,
    latest_closed_slot,
    ms_to_iso,
    now_ms,
)

logger = logging.getLogger(__name__)

_PAGE_LIMIT = 500
_INDEX_BATCH = 288  # one day of 5m slots per store round trip
_MISSING_DETAIL_SYMBOLS = 50
_MISSING_DETAIL_TIMESTAMPS = 10


@dataclass
class PendingSample:
    ts_ms: int
    candles: list[PriceSample]


@dataclass
class _PhaseStats:
    symbols: int = 0
    completed: int = 0
    failed: int = 0
    rate_limited: int = 0
    api_calls: int = 0
    saved: int = 0
    base_prices: dict[str, float] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "symbols": self.symbols,
            "completed": self.completed,
            "failed": self.failed,
            "rateLimited": self.rate_limited,
            "apiCalls": self.api_calls,
            "saved": self.saved,
        }


def find_missing_ranges(missing: Iterable[int]) -> list[tuple[int, int]]:
    """Merge missing 5m timestamps into inclusive [start, end] ranges.

    Points no more than 5 minutes apart belong to the same range; a lone
    point becomes ``(t, t)``.
    """
    ordered = sorted(set(missing))
    if not ordered:
        return []
    ranges: list[tuple[int, int]] = []
    range_start = range_end = ordered[0]
    for ts in ordered[1:]:
        if ts - range_end > FIVE_MIN_MS:
            ranges.append((range_start, range_end))
            range_start = ts
        range_end = ts
    ranges.append((range_start, range_end))
    return ranges


class IngestionPipeline:
    def __init__(
        self,
        store: TimeSeriesStore,
        exchange: ExchangeClient,
        registry: BasePriceRegistry,
        *,
        range_cache: PriceRangeCache | None = None,
        uptrend_cache: TTLCache | None = None,
        settings: GlobalConfig | None = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], object] | None = None,
    ):
        self._store = store
        self._exchange = exchange
        self._registry = registry
        self._range_cache = range_cache
        self._uptrend_cache = uptrend_cache
        self._settings = settings or GlobalConfig()
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._backfill_in_progress = False
        self._pending: dict[int, PendingSample] = {}

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def backfill_in_progress(self) -> bool:
        return self._backfill_in_progress

    def set_backfill_in_progress(self, in_progress: bool) -> None:
        self._backfill_in_progress = in_progress
        BACKFILL_IN_PROGRESS.set(1 if in_progress else 0)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def registry(self) -> BasePriceRegistry:
        return self._registry

    async def _invalidate_caches(self, start_ms: int, end_ms: int) -> None:
        if self._uptrend_cache is not None:
            self._uptrend_cache.invalidate_all()
        if self._range_cache is not None:
            await self._range_cache.invalidate_range(start_ms, end_ms)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_duplicate_data(self) -> dict:
        """Remove duplicate price/index rows, keeping the lowest id of each group."""
        logger.info("Checking for duplicate rows...")
        prices = await self._store.delete_duplicate_prices()
        indexes = await self._store.delete_duplicate_indexes()
        if prices or indexes:
            logger.warning("Removed duplicates: %d price rows, %d index rows", prices, indexes)
        else:
            logger.info("No duplicate rows found")
        return {"deletedPriceRows": prices, "deletedIndexRows": indexes}

    async def cleanup_delisted(self, active_symbols: set[str]) -> list[str]:
        """Drop base prices of symbols the exchange no longer lists. History is kept."""
        if not active_symbols:
            return []
        delisted = sorted(self._registry.symbols() - active_symbols)
        if not delisted:
            return []
        await self._registry.remove(delisted)
        logger.warning(
            "Removed base prices of %d delisted symbol(s), history kept: %s",
            len(delisted), ", ".join(delisted),
        )
        return delisted

    # ------------------------------------------------------------------
    # Live collection
    # ------------------------------------------------------------------

    async def _fetch_latest_candles(self, symbols: list[str]) -> list[PriceSample]:
        gate = asyncio.Semaphore(max(1, self._settings.thread_pool_size))

        async def fetch_one(symbol: str) -> PriceSample | None:
            async with gate:
                try:
                    return await self._exchange.get_latest_closed_candle(symbol)
                except Exception as e:
                    logger.debug("Latest candle fetch failed for %s: %s", symbol, e)
                    return None

        started = time.monotonic()
        results = await asyncio.gather(*(fetch_one(s) for s in symbols))
        candles = [c for c in results if c is not None]
        logger.info(
            "Fetched latest candles: %d/%d in %.0fms",
            len(candles), len(symbols), (time.monotonic() - started) * 1000,
        )
        return candles

    @staticmethod
    def _round_timestamp(candles: list[PriceSample]) -> int:
        # a lagging symbol can return an older candle; the round belongs to the majority slot
        return Counter(c.ts_ms for c in candles).most_common(1)[0][0]

    async def calculate_and_save_current_index(self) -> IndexPoint | None:
        """Collect the newest closed candle of every symbol and write one index point."""
        if not self._registry.has_any():
            logger.warning("No base prices yet; waiting for backfill")
            return None

        expected_ts = latest_closed_slot(self._clock())
        if await self._store.index_exists(expected_ts):
            logger.debug("Index for %s already stored, skipping round", ms_to_iso(expected_ts))
            return None

        symbols = await self._exchange.get_active_symbols()
        if not symbols:
            logger.warning("Exchange returned no active symbols")
            return None
        await self.cleanup_delisted(set(symbols))

        candles = await self._fetch_latest_candles(symbols)
        if not candles:
            logger.warning("No candles fetched this round")
            return None

        kline_ts = self._round_timestamp(candles)
        if await self._store.index_exists(kline_ts):
            logger.debug("Index for %s already stored after fetch, skipping", ms_to_iso(kline_ts))
            return None

        round_candles = [c for c in candles if c.ts_ms == kline_ts]
        result = compute_index(kline_ts, round_candles, self._registry.snapshot())
        if result.missing_base:
            added = await self._registry.set_new(result.missing_base)
            for symbol, price in added.items():
                logger.info("New symbol %s seeded base price %s", symbol, price)
        if result.point is None:
            logger.warning("No symbol with a base price at %s", ms_to_iso(kline_ts))
            return None

        if await self._store.index_exists(kline_ts):
            logger.debug("Index for %s written concurrently, skipping", ms_to_iso(kline_ts))
            return None
        if not await self._store.save_index(result.point):
            logger.debug("Index for %s lost the insert race", ms_to_iso(kline_ts))
            return None
        INDEX_POINTS_WRITTEN.labels(source="live").inc()

        inserted = await self._store.insert_prices([c for c in candles if c.close > 0])
        ROWS_INSERTED.labels(source="live").inc(inserted)
        await self._invalidate_caches(min(c.ts_ms for c in candles), kline_ts)

        p = result.point
        logger.info(
            "Index saved: time=%s value=%.4f%% up/down=%d/%d adr=%.2f coins=%d",
            ms_to_iso(kline_ts), p.index_value, p.up_count, p.down_count, p.adr, p.coin_count,
        )
        return p

    async def collect_and_buffer(self) -> bool:
        """Live round while a backfill runs: keep raw candles only, compute later."""
        expected_ts = latest_closed_slot(self._clock())
        if expected_ts in self._pending or await self._store.index_exists(expected_ts):
            logger.debug("Slot %s already stored or buffered", ms_to_iso(expected_ts))
            return False

        symbols = await self._exchange.get_active_symbols()
        if not symbols:
            logger.warning("Exchange returned no active symbols")
            return False

        candles = await self._fetch_latest_candles(symbols)
        if not candles:
            logger.warning("No candles fetched this round")
            return False

        kline_ts = self._round_timestamp(candles)
        if kline_ts in self._pending or await self._store.index_exists(kline_ts):
            logger.debug("Slot %s already stored or buffered after fetch", ms_to_iso(kline_ts))
            return False

        self._pending[kline_ts] = PendingSample(kline_ts, candles)
        PENDING_QUEUE_SIZE.set(len(self._pending))
        logger.info("Buffered live round %s (queue=%d)", ms_to_iso(kline_ts), len(self._pending))
        return True

    async def flush_pending_data(self) -> dict:
        """Turn buffered live rounds into prices + index points with the final base prices."""
        stats = {"savedIndexes": 0, "savedPrices": 0, "skipped": 0}
        if not self._pending:
            logger.info("Pending queue empty, nothing to flush")
            return stats

        logger.info("Flushing %d buffered live round(s)", len(self._pending))
        base_prices = self._registry.snapshot()
        for ts in sorted(self._pending):
            pending = self._pending.pop(ts)
            PENDING_QUEUE_SIZE.set(len(self._pending))
            if await self._store.index_exists(ts):
                stats["skipped"] += 1
                continue
            round_candles = [c for c in pending.candles if c.ts_ms == ts]
            result = compute_index(ts, round_candles, base_prices)
            if result.point is None:
                logger.warning("Buffered round %s has no symbol with a base price", ms_to_iso(ts))
                stats["skipped"] += 1
                continue
            if await self._store.save_index(result.point):
                stats["savedIndexes"] += 1
                INDEX_POINTS_WRITTEN.labels(source="flush").inc()
            else:
                stats["skipped"] += 1
            inserted = await self._store.insert_prices([c for c in pending.candles if c.close > 0])
            stats["savedPrices"] += inserted
            ROWS_INSERTED.labels(source="live").inc(inserted)
            await self._invalidate_caches(ts, ts)

        logger.info(
            "Pending flush done: %d index point(s), %d price row(s), %d skipped",
            stats["savedIndexes"], stats["savedPrices"], stats["skipped"],
        )
        return stats

    # ------------------------------------------------------------------
    # Backfill
    # ------------------------------------------------------------------

    async def backfill(self, days: int | None = None, concurrency: int | None = None) -> dict:
        """Two-phase historical backfill followed by index computation.

        Phase 1 covers (store's latest + 5m | now - days) .. latest closed slot.
        Phase 2 closes the gap that opened while phase 1 ran.
        """
        days = days or self._settings.backfill_days
        concurrency = concurrency or self._settings.backfill_concurrency
        started = time.monotonic()
        logger.info("Backfill starting: days=%d concurrency=%d", days, concurrency)

        await self._registry.load()
        latest_ts = await self._store.get_latest_price_ts()
        phase1_end = latest_closed_slot(self._clock())
        if latest_ts is None:
            phase1_start = phase1_end - days * DAY_MS
            logger.info("Store empty, full backfill of %d day(s)", days)
        elif latest_ts >= phase1_end:
            logger.info("Store already current (latest=%s), nothing to backfill", ms_to_iso(latest_ts))
            return {"skipped": True, "phases": []}
        else:
            phase1_start = latest_ts + FIVE_MIN_MS
            logger.info("Incremental backfill from %s (latest=%s)", ms_to_iso(phase1_start), ms_to_iso(latest_ts))

        summary: dict = {"skipped": False, "phases": []}
        summary["phases"].append(
            await self._run_phase("main", phase1_start, phase1_end, concurrency)
        )

        phase2_start = phase1_end + FIVE_MIN_MS
        phase2_end = latest_closed_slot(self._clock())
        if phase2_start <= phase2_end:
            summary["phases"].append(
                await self._run_phase("catchup", phase2_start, phase2_end, concurrency)
            )
        else:
            logger.info("No catch-up window, store is current")

        await self._invalidate_caches(phase1_start, max(phase1_end, phase2_end))
        summary["elapsedSeconds"] = round(time.monotonic() - started, 1)
        logger.info("Backfill finished in %.1fs", summary["elapsedSeconds"])
        return summary

    async def _run_phase(self, name: str, start_ms: int, end_ms: int, concurrency: int) -> dict:
        logger.info("Backfill phase %s: %s -> %s", name, ms_to_iso(start_ms), ms_to_iso(end_ms))
        with BACKFILL_PHASE_DURATION.labels(phase=name).time():
            stats = await self._backfill_phase(start_ms, end_ms, concurrency, collect_base=True)
            added = await self._registry.set_new(stats.base_prices)
            if added:
                logger.info("Phase %s seeded %d base price(s)", name, len(added))
            indexes = await self.calculate_indexes_for_range(start_ms, end_ms)
        out = stats.as_dict()
        out.update({"phase": name, "newBasePrices": len(added), "indexesSaved": indexes})
        return out

    async def _backfill_phase(
        self, start_ms: int, end_ms: int, concurrency: int, collect_base: bool
    ) -> _PhaseStats:
        stats = _PhaseStats()
        symbols = await self._exchange.get_active_symbols()
        if not symbols:
            logger.warning("Exchange returned no active symbols")
            return stats
        stats.symbols = len(symbols)

        existing = await self._store.get_existing_pairs(start_ms, end_ms)
        logger.info("Phase window already holds data for %d symbol(s)", len(existing))

        gate = asyncio.Semaphore(max(1, concurrency))
        phase_started = time.monotonic()

        async def run_symbol(symbol: str) -> None:
            async with gate:
                try:
                    await self._backfill_symbol(
                        symbol, start_ms, end_ms, existing.get(symbol, set()), collect_base, stats
                    )
                    stats.completed += 1
                    if stats.completed % 50 == 0 or stats.completed == stats.symbols:
                        logger.info(
                            "Backfill progress %d/%d (api calls=%d, saved=%d) %.0fs",
                            stats.completed, stats.symbols, stats.api_calls, stats.saved,
                            time.monotonic() - phase_started,
                        )
                except Exception as e:
                    stats.failed += 1
                    logger.error("Backfill failed for %s: %s", symbol, e)
                    every = self._settings.failure_backoff_every
                    if every > 0 and stats.failed % every == 0:
                        logger.warning(
                            "%d backfill failures, pausing %.1fs",
                            stats.failed, self._settings.failure_backoff_sec,
                        )
                        await self._sleep(self._settings.failure_backoff_sec)

        await asyncio.gather(*(run_symbol(s) for s in symbols))
        logger.info(
            "Phase done: ok=%d failed=%d rate_limited=%d api_calls=%d saved=%d in %.0fs",
            stats.completed, stats.failed, stats.rate_limited, stats.api_calls, stats.saved,
            time.monotonic() - phase_started,
        )
        return stats

    async def _backfill_symbol(
        self,
        symbol: str,
        start_ms: int,
        end_ms: int,
        existing_ts: set[int],
        collect_base: bool,
        stats: _PhaseStats,
    ) -> None:
        cursor = start_ms
        first_page = True
        while cursor <= end_ms:
            if self._exchange.is_rate_limited():
                logger.warning("Rate limited, abandoning backfill of %s", symbol)
                stats.rate_limited += 1
                return
            try:
                page = await self._exchange.get_candles(symbol, "5m", cursor, end_ms, _PAGE_LIMIT)
            except ExchangeRateLimitedError:
                logger.warning("Rate limited, abandoning backfill of %s", symbol)
                stats.rate_limited += 1
                return
            stats.api_calls += 1
            if not page:
                return

            if collect_base and first_page and page[0].open > 0:
                stats.base_prices.setdefault(symbol, page[0].open)
            first_page = False

            fresh = [c for c in page if c.ts_ms not in existing_ts and c.close > 0]
            if fresh:
                inserted = await self._store.insert_prices(fresh)
                stats.saved += inserted
                ROWS_INSERTED.labels(source="backfill").inc(inserted)

            interval_ms = self._exchange.request_interval_ms
            if interval_ms > 0:
                await self._sleep(interval_ms / 1000)
            cursor = page[-1].ts_ms + FIVE_MIN_MS

    async def calculate_indexes_for_range(self, start_ms: int, end_ms: int) -> int:
        """Compute and store index points for every stored timestamp in range that lacks one."""
        existing = await self._store.get_index_timestamps(start_ms, end_ms)
        timestamps = await self._store.get_distinct_timestamps(start_ms, end_ms)
        todo = [t for t in timestamps if t not in existing]
        logger.info(
            "Range has %d timestamp(s), %d already indexed, %d to compute",
            len(timestamps), len(existing), len(todo),
        )
        if not todo:
            return 0

        base_prices = self._registry.snapshot()
        points: list[IndexPoint] = []
        for i in range(0, len(todo), _INDEX_BATCH):
            chunk = todo[i:i + _INDEX_BATCH]
            by_ts: dict[int, list[PriceSample]] = {}
            for s in await self._store.get_prices_at_times(chunk):
                by_ts.setdefault(s.ts_ms, []).append(s)
            for ts in chunk:
                result = compute_index(ts, by_ts.get(ts, []), base_prices)
                if result.point is not None:
                    points.append(result.point)

        saved = await self._store.save_indexes(points)
        INDEX_POINTS_WRITTEN.labels(source="backfill").inc(saved)
        logger.info("Saved %d index point(s)", saved)
        return saved

    async def backfill_prices_only(self, days: int) -> dict:
        """Fill price history for backtests without touching base prices or indexes."""
        if days <= 0 or days > 365:
            raise InvalidParameterError("days must be between 1 and 365")
        end_ms = self._clock()
        start_ms = end_ms - days * DAY_MS
        logger.info("Price-only backfill %s -> %s (%d days)", ms_to_iso(start_ms), ms_to_iso(end_ms), days)

        started = time.monotonic()
        with BACKFILL_PHASE_DURATION.labels(phase="prices_only").time():
            stats = await self._backfill_phase(
                align5(start_ms), latest_closed_slot(end_ms),
                self._settings.backfill_concurrency, collect_base=False,
            )
        await self._invalidate_caches(start_ms, end_ms)
        elapsed = int(time.monotonic() - started)
        return {
            "success": True,
            "days": days,
            "startTime": ms_to_iso(start_ms),
            "endTime": ms_to_iso(end_ms),
            "elapsedSeconds": elapsed,
            "saved": stats.saved,
            "message": f"Price backfill finished: {days} day(s) in {elapsed}s",
        }

    # ------------------------------------------------------------------
    # Gap detection and repair
    # ------------------------------------------------------------------

    async def _missing_by_symbol(
        self, start_ms: int, end_ms: int, symbols: list[str]
    ) -> tuple[list[int], dict[str, set[int]], dict[str, list[int]]]:
        expected = grid(start_ms, end_ms)
        existing = await self._store.get_existing_pairs(start_ms, end_ms, symbols)
        missing: dict[str, list[int]] = {}
        for symbol in symbols:
            have = existing.get(symbol, set())
            gaps = [t for t in expected if t not in have]
            if gaps:
                missing[symbol] = gaps
        return expected, existing, missing

    async def find_missing(self, start_ms: int, end_ms: int) -> dict:
        """Per-symbol missing 5m slots in [start, end], capped at the latest closed candle."""
        actual_end = min(end_ms, latest_closed_slot(self._clock()))
        symbols = await self._exchange.get_active_symbols()
        expected, existing, missing = await self._missing_by_symbol(start_ms, actual_end, symbols)

        details = []
        for symbol in symbols:
            gaps = missing.get(symbol)
            if not gaps:
                continue
            details.append({
                "symbol": symbol,
                "existing": len(existing.get(symbol, ())),
                "missing": len(gaps),
                "missingRanges": [[a, b] for a, b in find_missing_ranges(gaps)],
                "missingTimestamps": [ms_to_iso(t) for t in gaps[:_MISSING_DETAIL_TIMESTAMPS]],
            })
        total_missing = sum(len(g) for g in missing.values())
        logger.info(
            "Gap check: %d symbol(s), %d with gaps, %d missing row(s)",
            len(symbols), len(missing), total_missing,
        )
        return {
            "totalSymbols": len(symbols),
            "expectedPerCoin": len(expected),
            "symbolsWithMissing": len(missing),
            "totalMissingRecords": total_missing,
            "details": details[:_MISSING_DETAIL_SYMBOLS],
        }

    async def repair_missing(
        self,
        start_ms: int | None = None,
        end_ms: int | None = None,
        days: int = 7,
        symbols: list[str] | None = None,
    ) -> dict:
        """Re-fetch every missing range and bulk insert what the exchange returns."""
        started = time.monotonic()
        now = self._clock()
        start_ms = start_ms if start_ms is not None else now - days * DAY_MS
        end_ms = end_ms if end_ms is not None else latest_closed_slot(now)
        time_range = f"{ms_to_iso(start_ms)} ~ {ms_to_iso(end_ms)}"

        targets = symbols or await self._exchange.get_active_symbols()
        if not targets:
            return {"success": False, "message": "No active symbols available"}

        _, _, missing = await self._missing_by_symbol(start_ms, end_ms, targets)
        if not missing:
            return {
                "success": True,
                "message": "No missing data found",
                "checkedSymbols": len(targets),
                "repairedSymbolCount": 0,
                "totalRepairedRecords": 0,
                "timeRange": time_range,
            }

        logger.info("Repairing gaps for %d symbol(s)", len(missing))
        inserted = 0
        details = []
        for n, (symbol, gaps) in enumerate(sorted(missing.items()), start=1):
            wanted = set(gaps)
            rows: list[PriceSample] = []
            ranges_done = []
            for range_start, range_end in find_missing_ranges(gaps):
                if range_end <= range_start:
                    range_end = range_start + FIVE_MIN_MS
                try:
                    candles = await self._exchange.get_candles_paginated(
                        symbol, "5m", range_start, range_end, _PAGE_LIMIT
                    )
                except Exception as e:
                    logger.warning("Repair fetch failed for %s: %s", symbol, e)
                    continue
                found = [c for c in candles if c.close > 0 and c.ts_ms in wanted]
                if found:
                    rows.extend(found)
                    ranges_done.append(f"{ms_to_iso(range_start)} ~ {ms_to_iso(range_end)}")
            symbol_inserted = await self._store.insert_prices(rows) if rows else 0
            if symbol_inserted:
                inserted += symbol_inserted
                details.append({"symbol": symbol, "repairedCount": symbol_inserted, "repairedRanges": ranges_done})
            if n % 50 == 0 or n == len(missing):
                logger.info("Repair progress %d/%d", n, len(missing))

        ROWS_INSERTED.labels(source="repair").inc(inserted)
        if inserted:
            await self._invalidate_caches(start_ms, end_ms)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info("Repair done: %d symbol(s), %d row(s) in %dms", len(details), inserted, elapsed_ms)
        return {
            "success": True,
            "checkedSymbols": len(targets),
            "repairedSymbolCount": len(details),
            "totalRepairedRecords": inserted,
            "timeRange": time_range,
            "totalTimeMs": elapsed_ms,
            "repairedDetails": details,
        }

    # ------------------------------------------------------------------
    # Administrative deletes
    # ------------------------------------------------------------------

    async def delete_data_in_range(self, start_ms: int, end_ms: int) -> dict:
        index_count = await self._store.count_indexes_between(start_ms, end_ms)
        price_points = len(await self._store.get_distinct_timestamps(start_ms, end_ms))
        logger.info(
            "Deleting %s -> %s: %d index row(s), %d price timestamp(s)",
            ms_to_iso(start_ms), ms_to_iso(end_ms), index_count, price_points,
        )
        await self._store.delete_indexes_between(start_ms, end_ms)
        await self._store.delete_prices_between(start_ms, end_ms)
        await self._invalidate_caches(start_ms, end_ms)
        return {
            "deletedIndexCount": index_count,
            "deletedPriceTimePoints": price_points,
            "startTime": ms_to_iso(start_ms),
            "endTime": ms_to_iso(end_ms),
        }

    async def cleanup_data_in_range(self, start_ms: int, end_ms: int) -> dict:
        """Delete prices and index points in range ahead of a re-backfill."""
        started = time.monotonic()
        prices = await self._store.delete_prices_between(start_ms, end_ms)
        indexes = await self._store.delete_indexes_between(start_ms, end_ms)
        await self._invalidate_caches(start_ms, end_ms)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Cleanup %s -> %s removed %d price row(s), %d index row(s)",
            ms_to_iso(start_ms), ms_to_iso(end_ms), prices, indexes,
        )
        return {
            "success": True,
            "deletedCoinPriceCount": prices,
            "deletedMarketIndexCount": indexes,
            "timeRange": f"{ms_to_iso(start_ms)} ~ {ms_to_iso(end_ms)}",
            "elapsedMs": elapsed_ms,
        }

    async def delete_symbol_data(self, symbol: str) -> dict:
        had_base = self._registry.get(symbol) is not None
        prices = await self._store.delete_symbol_prices(symbol)
        deleted_base = await self._registry.remove([symbol])
        if self._uptrend_cache is not None:
            self._uptrend_cache.invalidate_all()
        if self._range_cache is not None:
            await self._range_cache.clear()
        logger.warning("Deleted all data of %s: %d price row(s), base price=%s", symbol, prices, had_base)
        return {
            "success": True,
            "symbol": symbol,
            "deletedPriceCount": prices,
            "deletedBasePrice": had_base or deleted_base > 0,
        }
