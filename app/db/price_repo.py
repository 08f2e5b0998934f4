"""PostgreSQL implementation of TimeSeriesStore.

Each call opens its own short session from the injected factory so the store
can be shared by concurrent tasks. Writes rely on the unique indexes with
ON CONFLICT DO NOTHING; application-level existence checks are only a
fast path.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import delete, distinct, exists, func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.store import TimeSeriesStore
from app.models.base_price import BasePrice
from app.models.coin_price import CoinPrice
from app.models.market_index import MarketIndex
from app.models.records import BasePriceEntry, IndexPoint, PriceSample

logger = logging.getLogger(__name__)

# asyncpg caps bind parameters at 32767 per statement
_INSERT_CHUNK = 2000


def _to_sample(row: CoinPrice) -> PriceSample:
    return PriceSample(
        symbol=row.symbol,
        ts_ms=row.ts_ms,
        open=row.open,
        high=row.high,
        low=row.low,
        close=row.close,
        volume=row.volume or 0.0,
    )


def _to_point(row: MarketIndex) -> IndexPoint:
    return IndexPoint(
        ts_ms=row.ts_ms,
        index_value=row.index_value,
        total_volume=row.total_volume,
        coin_count=row.coin_count,
        up_count=row.up_count,
        down_count=row.down_count,
        adr=row.adr,
    )


def _chunks(items: list, size: int = _INSERT_CHUNK):
    for i in range(0, len(items), size):
        yield items[i : i + size]


class SqlTimeSeriesStore(TimeSeriesStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Price samples
    # ------------------------------------------------------------------

    async def insert_prices(self, samples: list[PriceSample]) -> int:
        if not samples:
            return 0
        inserted = 0
        async with self._session_factory() as session:
            for chunk in _chunks(samples):
                values = [
                    {
                        "symbol": s.symbol,
                        "ts_ms": s.ts_ms,
                        "open": s.open,
                        "high": s.high,
                        "low": s.low,
                        "close": s.close,
                        "volume": s.volume,
                    }
                    for s in chunk
                ]
                stmt = (
                    pg_insert(CoinPrice)
                    .values(values)
                    .on_conflict_do_nothing(index_elements=["symbol", "ts_ms"])
                )
                result = await session.execute(stmt)
                inserted += max(result.rowcount or 0, 0)
            await session.commit()
        return inserted

    async def get_prices_at(self, ts_ms: int) -> list[PriceSample]:
        return await self._select_prices(CoinPrice.ts_ms == ts_ms)

    async def get_prices_at_times(self, ts_list: Iterable[int]) -> list[PriceSample]:
        ts_values = sorted(set(ts_list))
        if not ts_values:
            return []
        return await self._select_prices(CoinPrice.ts_ms.in_(ts_values))

    async def get_prices_between(self, start_ms: int, end_ms: int) -> list[PriceSample]:
        return await self._select_prices(CoinPrice.ts_ms.between(start_ms, end_ms))

    async def get_symbol_prices(self, symbol: str, start_ms: int, end_ms: int) -> list[PriceSample]:
        return await self._select_prices(
            CoinPrice.symbol == symbol,
            CoinPrice.ts_ms.between(start_ms, end_ms),
        )

    async def _select_prices(self, *conditions) -> list[PriceSample]:
        stmt = select(CoinPrice).where(*conditions).order_by(CoinPrice.ts_ms, CoinPrice.symbol)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_to_sample(row) for row in result.scalars().all()]

    async def get_distinct_timestamps(self, start_ms: int, end_ms: int) -> list[int]:
        stmt = (
            select(distinct(CoinPrice.ts_ms))
            .where(CoinPrice.ts_ms.between(start_ms, end_ms))
            .order_by(CoinPrice.ts_ms)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [row[0] for row in result.all()]

    async def get_distinct_symbols(self, start_ms: int, end_ms: int) -> list[str]:
        stmt = (
            select(distinct(CoinPrice.symbol))
            .where(CoinPrice.ts_ms.between(start_ms, end_ms))
            .order_by(CoinPrice.symbol)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [row[0] for row in result.all()]

    async def get_existing_pairs(
        self, start_ms: int, end_ms: int, symbols: Iterable[str] | None = None
    ) -> dict[str, set[int]]:
        stmt = select(CoinPrice.symbol, CoinPrice.ts_ms).where(
            CoinPrice.ts_ms.between(start_ms, end_ms)
        )
        if symbols is not None:
            stmt = stmt.where(CoinPrice.symbol.in_(list(symbols)))
        pairs: dict[str, set[int]] = {}
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            for symbol, ts_ms in result.all():
                pairs.setdefault(symbol, set()).add(ts_ms)
        return pairs

    async def get_latest_price_ts(self) -> int | None:
        return await self._scalar(select(func.max(CoinPrice.ts_ms)))

    async def get_earliest_price_ts_at_or_after(self, ts_ms: int) -> int | None:
        return await self._scalar(select(func.min(CoinPrice.ts_ms)).where(CoinPrice.ts_ms >= ts_ms))

    async def get_latest_price_ts_at_or_before(self, ts_ms: int) -> int | None:
        return await self._scalar(select(func.max(CoinPrice.ts_ms)).where(CoinPrice.ts_ms <= ts_ms))

    async def get_price_extremes(self, start_ms: int, end_ms: int) -> dict[str, tuple[float, float]]:
        stmt = (
            select(CoinPrice.symbol, func.max(CoinPrice.high), func.min(CoinPrice.low))
            .where(CoinPrice.ts_ms.between(start_ms, end_ms))
            .group_by(CoinPrice.symbol)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return {symbol: (high, low) for symbol, high, low in result.all()}

    async def delete_prices_between(self, start_ms: int, end_ms: int) -> int:
        return await self._execute_delete(
            delete(CoinPrice).where(CoinPrice.ts_ms.between(start_ms, end_ms))
        )

    async def delete_symbol_prices(self, symbol: str) -> int:
        return await self._execute_delete(delete(CoinPrice).where(CoinPrice.symbol == symbol))

    async def delete_duplicate_prices(self) -> int:
        return await self._execute_delete(
            text(
                "DELETE FROM coin_price a USING coin_price b "
                "WHERE a.symbol = b.symbol AND a.ts_ms = b.ts_ms AND a.id > b.id"
            )
        )

    # ------------------------------------------------------------------
    # Index points
    # ------------------------------------------------------------------

    async def index_exists(self, ts_ms: int) -> bool:
        found = await self._scalar(select(exists().where(MarketIndex.ts_ms == ts_ms)))
        return bool(found)

    async def get_index_timestamps(self, start_ms: int, end_ms: int) -> set[int]:
        stmt = select(MarketIndex.ts_ms).where(MarketIndex.ts_ms.between(start_ms, end_ms))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return {row[0] for row in result.all()}

    async def save_index(self, point: IndexPoint) -> bool:
        return await self.save_indexes([point]) == 1

    async def save_indexes(self, points: list[IndexPoint]) -> int:
        if not points:
            return 0
        saved = 0
        async with self._session_factory() as session:
            for chunk in _chunks(points):
                values = [
                    {
                        "ts_ms": p.ts_ms,
                        "index_value": p.index_value,
                        "total_volume": p.total_volume,
                        "coin_count": p.coin_count,
                        "up_count": p.up_count,
                        "down_count": p.down_count,
                        "adr": p.adr,
                    }
                    for p in chunk
                ]
                stmt = (
                    pg_insert(MarketIndex)
                    .values(values)
                    .on_conflict_do_nothing(index_elements=["ts_ms"])
                )
                result = await session.execute(stmt)
                saved += max(result.rowcount or 0, 0)
            await session.commit()
        return saved

    async def get_latest_index(self) -> IndexPoint | None:
        stmt = select(MarketIndex).order_by(MarketIndex.ts_ms.desc()).limit(1)
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _to_point(row) if row else None

    async def get_index_history(self, start_ms: int) -> list[IndexPoint]:
        stmt = select(MarketIndex).where(MarketIndex.ts_ms >= start_ms).order_by(MarketIndex.ts_ms)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_to_point(row) for row in result.scalars().all()]

    async def count_indexes_between(self, start_ms: int, end_ms: int) -> int:
        count = await self._scalar(
            select(func.count()).select_from(MarketIndex).where(MarketIndex.ts_ms.between(start_ms, end_ms))
        )
        return int(count or 0)

    async def delete_indexes_between(self, start_ms: int, end_ms: int) -> int:
        return await self._execute_delete(
            delete(MarketIndex).where(MarketIndex.ts_ms.between(start_ms, end_ms))
        )

    async def delete_duplicate_indexes(self) -> int:
        return await self._execute_delete(
            text(
                "DELETE FROM market_index a USING market_index b "
                "WHERE a.ts_ms = b.ts_ms AND a.id > b.id"
            )
        )

    # ------------------------------------------------------------------
    # Base prices
    # ------------------------------------------------------------------

    async def load_base_prices(self) -> list[BasePriceEntry]:
        async with self._session_factory() as session:
            result = await session.execute(select(BasePrice).order_by(BasePrice.id))
            return [
                BasePriceEntry(symbol=row.symbol, price=row.price, created_at=row.created_at)
                for row in result.scalars().all()
            ]

    async def insert_base_prices(self, prices: dict[str, float]) -> int:
        if not prices:
            return 0
        values = [{"symbol": s, "price": p} for s, p in prices.items()]
        stmt = pg_insert(BasePrice).values(values).on_conflict_do_nothing(index_elements=["symbol"])
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return max(result.rowcount or 0, 0)

    async def delete_base_prices(self, symbols: Iterable[str]) -> int:
        symbol_list = list(symbols)
        if not symbol_list:
            return 0
        return await self._execute_delete(delete(BasePrice).where(BasePrice.symbol.in_(symbol_list)))

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _scalar(self, stmt):
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar()

    async def _execute_delete(self, stmt) -> int:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            deleted = max(result.rowcount or 0, 0)
        if deleted:
            logger.info("Deleted %d rows", deleted)
        return deleted
