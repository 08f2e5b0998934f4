"""InMemoryTimeSeriesStore behaves like the SQL store's unique indexes."""
import pytest

from app.db.mem_store import InMemoryTimeSeriesStore
from app.models.records import IndexPoint, PriceSample

T0 = 1_704_067_200_000
STEP = 300_000


def _sample(symbol: str, ts: int, price: float = 1.0) -> PriceSample:
    return PriceSample(symbol, ts, price, price, price, price)


def _point(ts: int, value: float = 0.0) -> IndexPoint:
    return IndexPoint(ts, value, 0.0, 1, 0, 0, 0.0)


@pytest.mark.unit
class TestPrices:
    async def test_first_writer_wins(self):
        store = InMemoryTimeSeriesStore()
        assert await store.insert_prices([_sample("A", T0, 1.0)]) == 1
        assert await store.insert_prices([_sample("A", T0, 2.0), _sample("B", T0)]) == 1
        prices = await store.get_prices_at(T0)
        assert [(s.symbol, s.close) for s in prices] == [("A", 1.0), ("B", 1.0)]

    async def test_range_queries(self):
        store = InMemoryTimeSeriesStore()
        await store.insert_prices([_sample("A", T0), _sample("A", T0 + STEP), _sample("B", T0 + 2 * STEP)])
        assert await store.get_distinct_timestamps(T0, T0 + STEP) == [T0, T0 + STEP]
        assert await store.get_distinct_symbols(T0 + STEP, T0 + 2 * STEP) == ["A", "B"]
        assert await store.get_existing_pairs(T0, T0 + 2 * STEP, ["A"]) == {"A": {T0, T0 + STEP}}
        assert await store.get_latest_price_ts() == T0 + 2 * STEP
        assert await store.get_earliest_price_ts_at_or_after(T0 + 1) == T0 + STEP
        assert await store.get_latest_price_ts_at_or_before(T0 + STEP - 1) == T0

    async def test_extremes(self):
        store = InMemoryTimeSeriesStore()
        await store.insert_prices([
            PriceSample("A", T0, 10, 12, 9, 11),
            PriceSample("A", T0 + STEP, 11, 15, 10, 14),
        ])
        assert await store.get_price_extremes(T0, T0 + STEP) == {"A": (15, 9)}

    async def test_deletes(self):
        store = InMemoryTimeSeriesStore()
        await store.insert_prices([_sample("A", T0), _sample("B", T0), _sample("A", T0 + STEP)])
        assert await store.delete_symbol_prices("A") == 2
        assert await store.delete_prices_between(T0, T0) == 1
        assert await store.get_latest_price_ts() is None


@pytest.mark.unit
class TestIndexesAndBasePrices:
    async def test_index_unique_per_timestamp(self):
        store = InMemoryTimeSeriesStore()
        assert await store.save_index(_point(T0, 1.0))
        assert not await store.save_index(_point(T0, 2.0))
        assert (await store.get_latest_index()).index_value == 1.0
        assert await store.count_indexes_between(T0, T0) == 1

    async def test_base_prices_never_overwritten(self):
        store = InMemoryTimeSeriesStore()
        assert await store.insert_base_prices({"A": 1.0}) == 1
        assert await store.insert_base_prices({"A": 2.0, "B": 3.0}) == 1
        loaded = {e.symbol: e.price for e in await store.load_base_prices()}
        assert loaded == {"A": 1.0, "B": 3.0}
