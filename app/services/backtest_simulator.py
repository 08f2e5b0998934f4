"""Short-the-top-gainers backtest.

Every day at a fixed local time, rank symbols by their change over the
trailing ranking window, short the top N with equal stakes and close
after the hold window. ``simulate`` is pure: it only reads the snapshot
map it is given, so the optimizer can run many of them against one
shared prefetch.
"""
from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time as dtime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.db.store import TimeSeriesStore
from app.services.index_calculator import InvalidParameterError
from app.services.price_cache import TTLCache, snapshot_price
from app.utils.time_utils import days_back, now_ms, today_in

logger = logging.getLogger(__name__)

_DAYS_PER_MONTH = 30


def round2(value: float) -> float:
    """Half-up rounding to 2 places."""
    return math.floor(value * 100 + 0.5) / 100


def rate(wins: int, total: int) -> float:
    """Percentage with 2 decimals, 0 when ``total`` is 0."""
    return math.floor(wins * 10000 / total + 0.5) / 100 if total > 0 else 0.0


def load_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidParameterError(f"Unknown timezone: {name}") from None


@dataclass(frozen=True)
class BacktestParams:
    entry_hour: int
    entry_minute: int = 0
    total_amount: float = 1000.0
    days: int = 30
    ranking_hours: int = 24
    hold_hours: int = 24
    top_n: int = 10
    timezone: str = "Asia/Shanghai"

    def validate(self) -> None:
        if not 0 <= self.entry_hour <= 23:
            raise InvalidParameterError("entryHour must be between 0 and 23")
        if not 0 <= self.entry_minute <= 59:
            raise InvalidParameterError("entryMinute must be between 0 and 59")
        if self.total_amount <= 0:
            raise InvalidParameterError("totalAmount must be > 0")
        if not 1 <= self.days <= 365:
            raise InvalidParameterError("days must be between 1 and 365")
        if self.ranking_hours <= 0 or self.hold_hours <= 0:
            raise InvalidParameterError("rankingHours and holdHours must be > 0")
        if self.top_n <= 0:
            raise InvalidParameterError("topN must be > 0")
        load_zone(self.timezone)

    @property
    def amount_per_coin(self) -> float:
        return self.total_amount / self.top_n


@dataclass(frozen=True)
class TradingDay:
    day: date
    entry_local: datetime
    exit_local: datetime
    ranking_base_ts: int
    entry_ts: int
    exit_ts: int


def _to_ms(local: datetime, tz: ZoneInfo) -> int:
    return int(local.replace(tzinfo=tz).timestamp() * 1000)


def trading_days(params: BacktestParams, today: date) -> list[TradingDay]:
    """The ``days`` calendar days ending yesterday, oldest first, with their three snapshot times."""
    tz = load_zone(params.timezone)
    out = []
    for day in days_back(today - timedelta(days=1), params.days):
        entry = datetime.combine(day, dtime(params.entry_hour, params.entry_minute))
        exit_ = entry + timedelta(hours=params.hold_hours)
        base = entry - timedelta(hours=params.ranking_hours)
        out.append(TradingDay(day, entry, exit_, _to_ms(base, tz), _to_ms(entry, tz), _to_ms(exit_, tz)))
    return out


def required_timestamps(params: BacktestParams, today: date) -> set[int]:
    """Every snapshot timestamp one run of ``params`` reads."""
    times: set[int] = set()
    for d in trading_days(params, today):
        times.update((d.ranking_base_ts, d.entry_ts, d.exit_ts))
    return times


@dataclass(frozen=True)
class BacktestTrade:
    symbol: str
    entry_price: float
    exit_price: float
    ranking_change: float
    profit: float
    profit_percent: float

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "entryPrice": self.entry_price,
            "exitPrice": self.exit_price,
            "change24h": self.ranking_change,
            "profit": self.profit,
            "profitPercent": self.profit_percent,
        }


@dataclass
class DailyResult:
    date: str
    entry_time: str
    exit_time: str
    total_profit: float
    win_count: int
    lose_count: int
    trades: list[BacktestTrade] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "entryTime": self.entry_time,
            "exitTime": self.exit_time,
            "totalProfit": self.total_profit,
            "winCount": self.win_count,
            "loseCount": self.lose_count,
            "trades": [t.to_dict() for t in self.trades],
        }


@dataclass
class MonthlyResult:
    label: str
    total_profit: float
    win_days: int
    lose_days: int

    def to_dict(self) -> dict:
        return {
            "monthLabel": self.label,
            "totalProfit": self.total_profit,
            "winDays": self.win_days,
            "loseDays": self.lose_days,
        }


@dataclass
class BacktestResult:
    total_days: int
    valid_days: int = 0
    total_trades: int = 0
    win_trades: int = 0
    lose_trades: int = 0
    win_rate: float = 0.0
    win_days: int = 0
    lose_days: int = 0
    daily_win_rate: float = 0.0
    win_months: int = 0
    lose_months: int = 0
    monthly_win_rate: float = 0.0
    total_profit: float = 0.0
    daily_results: list[DailyResult] = field(default_factory=list)
    monthly_results: list[MonthlyResult] = field(default_factory=list)
    skipped_days: list[str] = field(default_factory=list)

    def summary_dict(self) -> dict:
        return {
            "totalDays": self.total_days,
            "validDays": self.valid_days,
            "totalTrades": self.total_trades,
            "winTrades": self.win_trades,
            "loseTrades": self.lose_trades,
            "winRate": self.win_rate,
            "winDays": self.win_days,
            "loseDays": self.lose_days,
            "dailyWinRate": self.daily_win_rate,
            "winMonths": self.win_months,
            "loseMonths": self.lose_months,
            "monthlyWinRate": self.monthly_win_rate,
            "totalProfit": self.total_profit,
        }

    def to_dict(self) -> dict:
        out = self.summary_dict()
        out["dailyResults"] = [d.to_dict() for d in self.daily_results]
        out["monthlyResults"] = [m.to_dict() for m in self.monthly_results]
        out["skippedDays"] = list(self.skipped_days)
        return out


def _rank(base_map: Mapping[str, float], entry_map: Mapping[str, float], top_n: int) -> list[tuple[str, float]]:
    changes = []
    for symbol, entry in entry_map.items():
        base = base_map.get(symbol)
        if base and base > 0 and entry > 0:
            changes.append((symbol, (entry - base) / base * 100))
    changes.sort(key=lambda c: (-c[1], c[0]))
    return changes[:top_n]


def simulate(
    params: BacktestParams,
    price_map: Mapping[int, Mapping[str, float]],
    today: date,
) -> BacktestResult:
    """Run the strategy over ``price_map`` ({ts: {symbol: price}}). Deterministic for equal inputs."""
    result = BacktestResult(total_days=params.days)
    amount = params.amount_per_coin
    total_profit = 0.0

    for d in trading_days(params, today):
        label = d.day.isoformat()
        base_map = price_map.get(d.ranking_base_ts) or {}
        entry_map = price_map.get(d.entry_ts) or {}
        exit_map = price_map.get(d.exit_ts) or {}
        if not base_map or not entry_map or not exit_map:
            result.skipped_days.append(label)
            continue
        top = _rank(base_map, entry_map, params.top_n)
        if not top:
            result.skipped_days.append(label)
            continue

        trades = []
        day_profit = 0.0
        day_win = day_lose = 0
        for symbol, change in top:
            entry = entry_map.get(symbol)
            exit_ = exit_map.get(symbol)
            if entry is None or exit_ is None or entry <= 0:
                continue
            profit_pct = (entry - exit_) / entry * 100
            profit = amount * profit_pct / 100
            trades.append(BacktestTrade(symbol, entry, exit_, change, round2(profit), round2(profit_pct)))
            day_profit += profit
            if profit > 0:
                day_win += 1
            else:
                day_lose += 1

        result.total_trades += len(trades)
        result.win_trades += day_win
        result.lose_trades += day_lose
        total_profit += day_profit
        if day_profit > 0:
            result.win_days += 1
        else:
            result.lose_days += 1
        result.daily_results.append(
            DailyResult(
                date=label,
                entry_time=d.entry_local.isoformat(timespec="minutes"),
                exit_time=d.exit_local.isoformat(timespec="minutes"),
                total_profit=round2(day_profit),
                win_count=day_win,
                lose_count=day_lose,
                trades=trades,
            )
        )

    result.valid_days = len(result.daily_results)
    result.win_rate = rate(result.win_trades, result.total_trades)
    result.daily_win_rate = rate(result.win_days, result.valid_days)
    result.total_profit = round2(total_profit)
    _roll_up_months(result)
    return result


def _roll_up_months(result: BacktestResult) -> None:
    """Close a "month" every 30 valid days and at the last one."""
    month_profit = 0.0
    win_days = lose_days = 0
    last = len(result.daily_results) - 1
    for i, day in enumerate(result.daily_results):
        month_profit += day.total_profit
        if day.total_profit > 0:
            win_days += 1
        elif day.total_profit < 0:
            lose_days += 1
        if (i + 1) % _DAYS_PER_MONTH == 0 or i == last:
            result.monthly_results.append(
                MonthlyResult(f"Month {len(result.monthly_results) + 1}", round2(month_profit), win_days, lose_days)
            )
            if month_profit > 0:
                result.win_months += 1
            else:
                result.lose_months += 1
            month_profit = 0.0
            win_days = lose_days = 0
    result.monthly_win_rate = rate(result.win_months, result.win_months + result.lose_months)


class BacktestService:
    """Single backtest runs. Snapshots are resolved one timestamp at a time with a
    closest-match tolerance and kept in a short-lived TTL cache."""

    def __init__(
        self,
        store: TimeSeriesStore,
        snapshot_cache: TTLCache,
        *,
        tolerance_ms: int = 30 * 60 * 1000,
        clock: Callable[[], int] = now_ms,
    ):
        self._store = store
        self._cache = snapshot_cache
        self._tolerance_ms = tolerance_ms
        self._clock = clock

    def clear_cache(self) -> None:
        self._cache.invalidate_all()

    async def snapshot_at(self, ts_ms: int) -> dict[str, float]:
        """{symbol: price} at ``ts_ms``: exact, else latest before, else earliest after, within tolerance."""
        cached = self._cache.get(ts_ms)
        if cached is not None:
            return cached

        found = ts_ms
        samples = await self._store.get_prices_at(ts_ms)
        if not samples:
            before = await self._store.get_latest_price_ts_at_or_before(ts_ms)
            if before is not None and ts_ms - before <= self._tolerance_ms:
                found = before
            else:
                after = await self._store.get_earliest_price_ts_at_or_after(ts_ms)
                found = after if after is not None and after - ts_ms <= self._tolerance_ms else None
            samples = await self._store.get_prices_at(found) if found is not None else []

        snapshot = {s.symbol: snapshot_price(s) for s in samples}
        self._cache.put(ts_ms, snapshot)
        return snapshot

    async def run(self, params: BacktestParams) -> BacktestResult:
        params.validate()
        today = today_in(load_zone(params.timezone), self._clock())
        logger.info(
            "Backtest: entry=%02d:%02d total=%.2f days=%d ranking=%dh hold=%dh top=%d tz=%s",
            params.entry_hour, params.entry_minute, params.total_amount, params.days,
            params.ranking_hours, params.hold_hours, params.top_n, params.timezone,
        )
        price_map = {ts: await self.snapshot_at(ts) for ts in sorted(required_timestamps(params, today))}
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, simulate, params, price_map, today)
        logger.info(
            "Backtest done: valid days=%d/%d trades=%d win rate=%.2f%% daily win rate=%.2f%% profit=%.2f",
            result.valid_days, result.total_days, result.total_trades,
            result.win_rate, result.daily_win_rate, result.total_profit,
        )
        return result
