"""Brute-force parameter sweep over the short-top-N backtest.

All combinations share one prefetched snapshot map: the union of every
timestamp any combination reads is loaded once through the range cache,
then each combination is simulated on an executor thread.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import math
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date

from app.services.backtest_simulator import (
    BacktestParams,
    BacktestResult,
    load_zone,
    required_timestamps,
    simulate,
)
from app.services.index_calculator import InvalidParameterError
from app.services.price_cache import PriceRangeCache
from app.utils.metrics import OPTIMIZER_DURATION
from app.utils.time_utils import now_ms, today_in

logger = logging.getLogger(__name__)

RANKING_HOURS_OPTIONS = (24, 48, 72, 168)
TOP_N_OPTIONS = (5, 10, 15, 20, 30)
ENTRY_HOUR_OPTIONS = tuple(range(0, 24, 2))
HOLD_HOURS_OPTIONS = (24, 48, 72)


def _parse_csv(raw: str | None, keep: Callable[[int], bool], default: Iterable[int], name: str) -> list[int]:
    if raw is None or not raw.strip():
        return list(default)
    try:
        values = sorted({int(p.strip()) for p in raw.split(",") if p.strip()})
    except ValueError:
        logger.error("Could not parse %s=%r, using defaults", name, raw)
        return list(default)
    values = [v for v in values if keep(v)]
    return values or list(default)


def parse_entry_hours(raw: str | None) -> list[int]:
    return _parse_csv(raw, lambda h: 0 <= h <= 23, ENTRY_HOUR_OPTIONS, "entryHours")


def parse_hold_hours(raw: str | None) -> list[int]:
    return _parse_csv(raw, lambda h: h > 0, HOLD_HOURS_OPTIONS, "holdHours")


@dataclass(frozen=True)
class SweepSpec:
    total_amount: float
    days: int
    timezone: str = "Asia/Shanghai"
    entry_hours: tuple[int, ...] = ENTRY_HOUR_OPTIONS
    hold_hours: tuple[int, ...] = HOLD_HOURS_OPTIONS
    ranking_hours: tuple[int, ...] = RANKING_HOURS_OPTIONS
    top_n: tuple[int, ...] = TOP_N_OPTIONS

    def validate(self) -> None:
        if self.total_amount <= 0:
            raise InvalidParameterError("totalAmount must be > 0")
        if not 1 <= self.days <= 365:
            raise InvalidParameterError("days must be between 1 and 365")
        load_zone(self.timezone)

    def combinations(self) -> list[BacktestParams]:
        return [
            BacktestParams(
                entry_hour=entry,
                entry_minute=0,
                total_amount=self.total_amount,
                days=self.days,
                ranking_hours=ranking,
                hold_hours=hold,
                top_n=top_n,
                timezone=self.timezone,
            )
            for ranking, top_n, entry, hold in itertools.product(
                self.ranking_hours, self.top_n, self.entry_hours, self.hold_hours
            )
        ]


def prefetch_timestamps(sweep: SweepSpec, today: date) -> set[int]:
    """Union of every snapshot timestamp any combination of ``sweep`` reads.

    Top-N does not move any timestamp, so one representative per
    (entry hour, ranking window, hold window) is enough.
    """
    times: set[int] = set()
    for entry, ranking, hold in itertools.product(sweep.entry_hours, sweep.ranking_hours, sweep.hold_hours):
        params = BacktestParams(
            entry_hour=entry,
            total_amount=sweep.total_amount,
            days=sweep.days,
            ranking_hours=ranking,
            hold_hours=hold,
            top_n=1,
            timezone=sweep.timezone,
        )
        times |= required_timestamps(params, today)
    return times


def _summary_row(params: BacktestParams, result: BacktestResult) -> dict:
    return {
        "rankingHours": params.ranking_hours,
        "topN": params.top_n,
        "entryHour": params.entry_hour,
        "holdHours": params.hold_hours,
        "totalProfit": result.total_profit,
        "winRate": result.win_rate,
        "dailyWinRate": result.daily_win_rate,
        "totalTrades": result.total_trades,
        "validDays": result.valid_days,
    }


class StrategyOptimizer:
    def __init__(self, range_cache: PriceRangeCache, clock: Callable[[], int] = now_ms):
        self._range_cache = range_cache
        self._clock = clock

    async def _sweep(self, sweep: SweepSpec) -> list[tuple[BacktestParams, BacktestResult]]:
        sweep.validate()
        combos = sweep.combinations()
        today = today_in(load_zone(sweep.timezone), self._clock())
        times = prefetch_timestamps(sweep, today)
        logger.info(
            "Optimizer: %d combination(s), %d unique snapshot timestamp(s), days=%d",
            len(combos), len(times), sweep.days,
        )
        # exact snapshots only; a day missing one is skipped
        price_map = await self._range_cache.get_bulk_prices(times, tolerance_ms=0)

        loop = asyncio.get_running_loop()
        results = await asyncio.gather(
            *(loop.run_in_executor(None, simulate, p, price_map, today) for p in combos)
        )
        return list(zip(combos, results))

    async def optimize(self, sweep: SweepSpec) -> dict:
        started = time.monotonic()
        with OPTIMIZER_DURATION.labels(variant="overall").time():
            runs = await self._sweep(sweep)
        rows = [_summary_row(p, r) for p, r in runs]
        rows.sort(key=lambda r: -r["totalProfit"])
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info("Optimizer finished %d combination(s) in %dms", len(rows), elapsed_ms)
        return {
            "success": True,
            "params": {"totalAmount": sweep.total_amount, "days": sweep.days, "timezone": sweep.timezone},
            "totalCombinations": len(rows),
            "timeTakenMs": elapsed_ms,
            "topStrategies": rows,
        }

    async def optimize_daily(self, sweep: SweepSpec, page: int = 1, page_size: int = 10) -> dict:
        """Per-day ranking of every combination, newest day first, one page of days at a time."""
        if page < 1 or page_size < 1:
            raise InvalidParameterError("page and pageSize must be >= 1")
        started = time.monotonic()
        with OPTIMIZER_DURATION.labels(variant="daily").time():
            runs = await self._sweep(sweep)

        by_day: dict[str, list[dict]] = {}
        for params, result in runs:
            label = (
                f"{params.entry_hour}:00 | {params.ranking_hours}h | Top {params.top_n} | hold {params.hold_hours}h"
            )
            for day in result.daily_results:
                by_day.setdefault(day.date, []).append({
                    "label": label,
                    "entryHour": params.entry_hour,
                    "rankingHours": params.ranking_hours,
                    "topN": params.top_n,
                    "holdHours": params.hold_hours,
                    "profit": day.total_profit,
                    "winCount": day.win_count,
                    "loseCount": day.lose_count,
                    "trades": [t.to_dict() for t in day.trades],
                })

        dates = sorted(by_day, reverse=True)
        total_pages = math.ceil(len(dates) / page_size)
        page_dates = dates[(page - 1) * page_size:page * page_size]
        days = [
            {"date": d, "rankings": sorted(by_day[d], key=lambda r: (-r["profit"], r["label"]))}
            for d in page_dates
        ]
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Daily optimizer: %d combination(s), %d day(s), page %d/%d in %dms",
            len(runs), len(dates), page, total_pages, elapsed_ms,
        )
        return {
            "success": True,
            "params": {"totalAmount": sweep.total_amount, "days": sweep.days, "timezone": sweep.timezone},
            "totalCombinations": len(runs),
            "timeTakenMs": elapsed_ms,
            "pagination": {
                "page": page,
                "pageSize": page_size,
                "totalPages": total_pages,
                "totalDays": len(dates),
            },
            "days": days,
        }
