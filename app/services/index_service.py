"""Read side of the breadth index: latest point, history, stats, distribution, debug views."""
from __future__ import annotations

import logging
from collections.abc import Callable
from zoneinfo import ZoneInfo

from app.db.store import TimeSeriesStore
from app.models.records import IndexPoint
from app.services.base_price_registry import BasePriceRegistry
from app.services.index_calculator import InvalidParameterError, bucketize, compute_index, pct_change
from app.utils.time_utils import HOUR_MS, align5, ms_to_iso, now_ms

logger = logging.getLogger(__name__)

# (label suffix, hours)
_STATS_WINDOWS = (("24h", 24), ("3d", 72), ("7d", 168), ("30d", 720))
_DEBUG_TZ = ZoneInfo("Asia/Shanghai")


class IndexService:
    def __init__(
        self,
        store: TimeSeriesStore,
        registry: BasePriceRegistry,
        clock: Callable[[], int] = now_ms,
    ):
        self._store = store
        self._registry = registry
        self._clock = clock

    async def current(self) -> IndexPoint | None:
        return await self._store.get_latest_index()

    async def history(self, hours: int) -> list[IndexPoint]:
        if hours <= 0:
            raise InvalidParameterError("hours must be > 0")
        return await self._store.get_index_history(self._clock() - hours * HOUR_MS)

    async def stats(self) -> dict:
        stats: dict = {}
        latest = await self._store.get_latest_index()
        if latest is not None:
            stats["current"] = latest.index_value
            stats["coinCount"] = latest.coin_count
            stats["lastUpdate"] = latest.ts_ms

        # one read for the longest window, shorter windows are suffixes of it
        now = self._clock()
        longest = await self._store.get_index_history(now - _STATS_WINDOWS[-1][1] * HOUR_MS)
        for suffix, hours in _STATS_WINDOWS:
            cutoff = now - hours * HOUR_MS
            window = [p.index_value for p in longest if p.ts_ms >= cutoff]
            if len(window) > 1:
                stats[f"change{suffix}"] = window[-1] - window[0]
                stats[f"high{suffix}"] = max(window)
                stats[f"low{suffix}"] = min(window)
        return stats

    # ------------------------------------------------------------------
    # Distribution
    # ------------------------------------------------------------------

    async def distribution_for_hours(self, hours: float) -> dict | None:
        """Change of every symbol from ``hours`` ago (candle open) to the latest stored close."""
        if hours <= 0:
            raise InvalidParameterError("hours must be > 0")
        latest_ts = await self._store.get_latest_price_ts()
        if latest_ts is None:
            logger.warning("No price data stored yet, backfill may still be running")
            return None
        base_target = align5(self._clock()) - int(hours * HOUR_MS)
        base_ts = await self._store.get_earliest_price_ts_at_or_after(base_target)
        if base_ts is None:
            logger.warning("No prices at or after %s", ms_to_iso(base_target))
            return None
        return await self._distribution(base_ts, latest_ts)

    async def distribution_for_range(self, start_ms: int, end_ms: int) -> dict | None:
        if start_ms > end_ms:
            raise InvalidParameterError("start must not be after end")
        base_ts = await self._store.get_earliest_price_ts_at_or_after(align5(start_ms))
        current_ts = await self._store.get_latest_price_ts_at_or_before(align5(end_ms))
        if base_ts is None or current_ts is None or base_ts > current_ts:
            logger.warning("No prices between %s and %s", ms_to_iso(start_ms), ms_to_iso(end_ms))
            return None
        return await self._distribution(base_ts, current_ts)

    async def _distribution(self, base_ts: int, current_ts: int) -> dict | None:
        base_prices = {s.symbol: s.open for s in await self._store.get_prices_at(base_ts) if s.open > 0}
        current_prices = {s.symbol: s.close for s in await self._store.get_prices_at(current_ts)}
        extremes = await self._store.get_price_extremes(base_ts, current_ts)
        logger.info(
            "Distribution %s -> %s: base=%d current=%d extremes=%d",
            ms_to_iso(base_ts), ms_to_iso(current_ts), len(base_prices), len(current_prices), len(extremes),
        )

        details = []
        for symbol, current in current_prices.items():
            base = base_prices.get(symbol)
            if not base or current <= 0:
                continue
            high, low = extremes.get(symbol, (0.0, 0.0))
            details.append({
                "symbol": symbol,
                "changePercent": pct_change(current, base),
                "maxChange": pct_change(high, base) if high > 0 else 0.0,
                "minChange": pct_change(low, base) if low > 0 else 0.0,
            })
        if not details:
            logger.warning("No symbol has both a base and a current price")
            return None

        details.sort(key=lambda d: (-d["changePercent"], d["symbol"]))
        size, buckets = bucketize(details, lambda d: d["changePercent"])
        logger.info("Distribution over %d symbol(s), bucket width %s%%", len(details), size)
        return {
            "timestamp": self._clock(),
            "baseTime": base_ts,
            "currentTime": current_ts,
            "totalCoins": len(details),
            "upCount": sum(1 for d in details if d["changePercent"] > 0),
            "downCount": sum(1 for d in details if d["changePercent"] < 0),
            "bucketSize": size,
            "distribution": [
                {
                    "range": label,
                    "count": len(members),
                    "coins": [d["symbol"] for d in members],
                    "coinDetails": members,
                }
                for label, members in buckets
            ],
            "allCoinsRanking": details,
        }

    # ------------------------------------------------------------------
    # Debug views
    # ------------------------------------------------------------------

    async def symbol_prices(self, symbol: str, hours: int) -> dict:
        start_ms = self._clock() - hours * HOUR_MS
        samples = await self._store.get_symbol_prices(symbol, start_ms, self._clock())
        return {
            "symbol": symbol,
            "queryStartTime": ms_to_iso(start_ms),
            "count": len(samples),
            "data": [
                {
                    "timestamp": ms_to_iso(s.ts_ms),
                    "timestampCN": ms_to_iso(s.ts_ms, _DEBUG_TZ),
                    "openPrice": s.open,
                    "highPrice": s.high,
                    "lowPrice": s.low,
                    "closePrice": s.close,
                }
                for s in samples
            ],
        }

    async def base_prices(self) -> dict:
        entries = await self._store.load_base_prices()
        created_at = self._registry.created_at
        return {
            "count": len(entries),
            "createdAt": created_at.isoformat() if created_at else None,
            "data": [
                {
                    "symbol": e.symbol,
                    "price": e.price,
                    "createdAt": e.created_at.isoformat() if e.created_at else None,
                }
                for e in entries
            ],
        }

    async def verify(self) -> dict:
        """Recompute the latest index from stored closes and compare with the stored point."""
        base = self._registry.snapshot()
        if not base:
            return {"success": False, "error": "Base prices not loaded"}
        latest_ts = await self._store.get_latest_price_ts()
        samples = await self._store.get_prices_at(latest_ts) if latest_ts is not None else []
        if not samples:
            return {"success": False, "error": "No price data stored"}

        coins = []
        for s in samples:
            b = base.get(s.symbol)
            if b and b > 0 and s.close > 0:
                coins.append({
                    "symbol": s.symbol,
                    "basePrice": b,
                    "latestPrice": s.close,
                    "changePercent": round(pct_change(s.close, b), 4),
                })
        coins.sort(key=lambda c: (-c["changePercent"], c["symbol"]))

        result = compute_index(latest_ts, samples, base)
        calculated = result.point.index_value if result.point else 0.0
        out = {
            "success": True,
            "basePriceTime": self._registry.created_at.isoformat() if self._registry.created_at else None,
            "latestPriceTime": ms_to_iso(latest_ts),
            "basePriceCount": len(base),
            "latestPriceCount": len(samples),
            "totalCoins": len(coins),
            "upCount": sum(1 for c in coins if c["changePercent"] > 0),
            "downCount": sum(1 for c in coins if c["changePercent"] < 0),
            "calculatedIndex": round(calculated, 4),
            "coins": coins,
        }
        stored = await self._store.get_latest_index()
        if stored is not None:
            out["storedIndex"] = round(stored.index_value, 4)
            out["storedIndexTime"] = ms_to_iso(stored.ts_ms)
            out["indexMatch"] = abs(calculated - stored.index_value) < 0.0001
        return out
