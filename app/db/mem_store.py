"""Dict-backed TimeSeriesStore.

Same async signatures as SqlTimeSeriesStore so pipeline and analytics code
runs unchanged against it (tests, offline replays). Uniqueness is enforced by
the dict keys, mirroring the database's unique indexes, so the duplicate
cleanup methods always find nothing.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from app.db.store import TimeSeriesStore
from app.models.records import BasePriceEntry, IndexPoint, PriceSample


class InMemoryTimeSeriesStore(TimeSeriesStore):
    def __init__(self) -> None:
        # ts_ms -> symbol -> sample
        self._prices: dict[int, dict[str, PriceSample]] = {}
        self._indexes: dict[int, IndexPoint] = {}
        self._base_prices: dict[str, BasePriceEntry] = {}
        self.calls: dict[str, int] = {}

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    # ------------------------------------------------------------------
    # Price samples
    # ------------------------------------------------------------------

    async def insert_prices(self, samples: list[PriceSample]) -> int:
        self._count("insert_prices")
        inserted = 0
        for s in samples:
            bucket = self._prices.setdefault(s.ts_ms, {})
            if s.symbol in bucket:
                continue
            bucket[s.symbol] = s
            inserted += 1
        return inserted

    async def get_prices_at(self, ts_ms: int) -> list[PriceSample]:
        self._count("get_prices_at")
        return sorted(self._prices.get(ts_ms, {}).values(), key=lambda s: s.symbol)

    async def get_prices_at_times(self, ts_list: Iterable[int]) -> list[PriceSample]:
        self._count("get_prices_at_times")
        out: list[PriceSample] = []
        for ts in sorted(set(ts_list)):
            out.extend(sorted(self._prices.get(ts, {}).values(), key=lambda s: s.symbol))
        return out

    async def get_prices_between(self, start_ms: int, end_ms: int) -> list[PriceSample]:
        self._count("get_prices_between")
        out: list[PriceSample] = []
        for ts in sorted(t for t in self._prices if start_ms <= t <= end_ms):
            out.extend(sorted(self._prices[ts].values(), key=lambda s: s.symbol))
        return out

    async def get_symbol_prices(self, symbol: str, start_ms: int, end_ms: int) -> list[PriceSample]:
        self._count("get_symbol_prices")
        return [
            self._prices[ts][symbol]
            for ts in sorted(self._prices)
            if start_ms <= ts <= end_ms and symbol in self._prices[ts]
        ]

    async def get_distinct_timestamps(self, start_ms: int, end_ms: int) -> list[int]:
        self._count("get_distinct_timestamps")
        return sorted(t for t, bucket in self._prices.items() if start_ms <= t <= end_ms and bucket)

    async def get_distinct_symbols(self, start_ms: int, end_ms: int) -> list[str]:
        self._count("get_distinct_symbols")
        symbols: set[str] = set()
        for ts, bucket in self._prices.items():
            if start_ms <= ts <= end_ms:
                symbols.update(bucket)
        return sorted(symbols)

    async def get_existing_pairs(
        self, start_ms: int, end_ms: int, symbols: Iterable[str] | None = None
    ) -> dict[str, set[int]]:
        self._count("get_existing_pairs")
        wanted = set(symbols) if symbols is not None else None
        pairs: dict[str, set[int]] = {}
        for ts, bucket in self._prices.items():
            if not start_ms <= ts <= end_ms:
                continue
            for symbol in bucket:
                if wanted is None or symbol in wanted:
                    pairs.setdefault(symbol, set()).add(ts)
        return pairs

    async def get_latest_price_ts(self) -> int | None:
        self._count("get_latest_price_ts")
        populated = [t for t, bucket in self._prices.items() if bucket]
        return max(populated) if populated else None

    async def get_earliest_price_ts_at_or_after(self, ts_ms: int) -> int | None:
        self._count("get_earliest_price_ts_at_or_after")
        found = [t for t, bucket in self._prices.items() if t >= ts_ms and bucket]
        return min(found) if found else None

    async def get_latest_price_ts_at_or_before(self, ts_ms: int) -> int | None:
        self._count("get_latest_price_ts_at_or_before")
        found = [t for t, bucket in self._prices.items() if t <= ts_ms and bucket]
        return max(found) if found else None

    async def get_price_extremes(self, start_ms: int, end_ms: int) -> dict[str, tuple[float, float]]:
        self._count("get_price_extremes")
        extremes: dict[str, tuple[float, float]] = {}
        for ts, bucket in self._prices.items():
            if not start_ms <= ts <= end_ms:
                continue
            for symbol, s in bucket.items():
                if symbol in extremes:
                    high, low = extremes[symbol]
                    extremes[symbol] = (max(high, s.high), min(low, s.low))
                else:
                    extremes[symbol] = (s.high, s.low)
        return extremes

    async def delete_prices_between(self, start_ms: int, end_ms: int) -> int:
        self._count("delete_prices_between")
        deleted = 0
        for ts in [t for t in self._prices if start_ms <= t <= end_ms]:
            deleted += len(self._prices.pop(ts))
        return deleted

    async def delete_symbol_prices(self, symbol: str) -> int:
        self._count("delete_symbol_prices")
        deleted = 0
        for bucket in self._prices.values():
            if bucket.pop(symbol, None) is not None:
                deleted += 1
        return deleted

    async def delete_duplicate_prices(self) -> int:
        self._count("delete_duplicate_prices")
        return 0

    # ------------------------------------------------------------------
    # Index points
    # ------------------------------------------------------------------

    async def index_exists(self, ts_ms: int) -> bool:
        self._count("index_exists")
        return ts_ms in self._indexes

    async def get_index_timestamps(self, start_ms: int, end_ms: int) -> set[int]:
        self._count("get_index_timestamps")
        return {t for t in self._indexes if start_ms <= t <= end_ms}

    async def save_index(self, point: IndexPoint) -> bool:
        return await self.save_indexes([point]) == 1

    async def save_indexes(self, points: list[IndexPoint]) -> int:
        self._count("save_indexes")
        saved = 0
        for p in points:
            if p.ts_ms in self._indexes:
                continue
            self._indexes[p.ts_ms] = p
            saved += 1
        return saved

    async def get_latest_index(self) -> IndexPoint | None:
        self._count("get_latest_index")
        if not self._indexes:
            return None
        return self._indexes[max(self._indexes)]

    async def get_index_history(self, start_ms: int) -> list[IndexPoint]:
        self._count("get_index_history")
        return [self._indexes[t] for t in sorted(self._indexes) if t >= start_ms]

    async def count_indexes_between(self, start_ms: int, end_ms: int) -> int:
        self._count("count_indexes_between")
        return sum(1 for t in self._indexes if start_ms <= t <= end_ms)

    async def delete_indexes_between(self, start_ms: int, end_ms: int) -> int:
        self._count("delete_indexes_between")
        doomed = [t for t in self._indexes if start_ms <= t <= end_ms]
        for t in doomed:
            del self._indexes[t]
        return len(doomed)

    async def delete_duplicate_indexes(self) -> int:
        self._count("delete_duplicate_indexes")
        return 0

    # ------------------------------------------------------------------
    # Base prices
    # ------------------------------------------------------------------

    async def load_base_prices(self) -> list[BasePriceEntry]:
        self._count("load_base_prices")
        return list(self._base_prices.values())

    async def insert_base_prices(self, prices: dict[str, float]) -> int:
        self._count("insert_base_prices")
        inserted = 0
        for symbol, price in prices.items():
            if symbol in self._base_prices:
                continue
            self._base_prices[symbol] = BasePriceEntry(symbol, price, datetime.now(UTC))
            inserted += 1
        return inserted

    async def delete_base_prices(self, symbols: Iterable[str]) -> int:
        self._count("delete_base_prices")
        deleted = 0
        for symbol in symbols:
            if self._base_prices.pop(symbol, None) is not None:
                deleted += 1
        return deleted
