"""TTL cache and whole-range price cache."""
import pytest

from app.db.mem_store import InMemoryTimeSeriesStore
from app.models.records import PriceSample
from app.services.price_cache import PriceRangeCache, TTLCache, closest_timestamp, snapshot_price
from app.utils.time_utils import DAY_MS, FIVE_MIN_MS

JAN1 = 1_704_067_200_000


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.mark.unit
class TestTTLCache:
    def test_expires_after_ttl(self):
        clock = FakeClock()
        cache = TTLCache(10, ttl_sec=60, clock=clock)
        cache.put("k", 1)
        clock.now = 59
        assert cache.get("k") == 1
        clock.now = 60
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_evicts_oldest_when_full(self):
        cache = TTLCache(2, ttl_sec=60, clock=FakeClock())
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)
        assert "a" not in cache
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_read_keeps_entry_over_unread_one(self):
        cache = TTLCache(2, ttl_sec=60, clock=FakeClock())
        cache.put("a", 1)
        cache.put("b", 2)
        assert cache.get("a") == 1
        cache.put("c", 3)
        assert "b" not in cache
        assert cache.get("a") == 1
        assert cache.get("c") == 3

    def test_invalidate_all(self):
        cache = TTLCache(2, ttl_sec=60, clock=FakeClock())
        cache.put("a", 1)
        cache.invalidate_all()
        assert cache.get("a") is None


@pytest.mark.unit
class TestClosestTimestamp:
    def test_exact_then_before_then_after(self):
        ts = [100, 200, 300]
        assert closest_timestamp(ts, 200, 50) == 200
        assert closest_timestamp(ts, 240, 50) == 200
        assert closest_timestamp(ts, 260, 50) == 300
        assert closest_timestamp(ts, 460, 50) is None
        assert closest_timestamp([], 100, 50) is None

    def test_snapshot_price_prefers_open(self):
        assert snapshot_price(PriceSample("A", 0, 10, 12, 9, 11)) == 10
        assert snapshot_price(PriceSample("A", 0, 0, 12, 9, 11)) == 11


async def _seeded_store(days: int = 3) -> InMemoryTimeSeriesStore:
    store = InMemoryTimeSeriesStore()
    samples = []
    for d in range(days):
        for h in range(0, 24, 6):
            ts = JAN1 + d * DAY_MS + h * 3_600_000
            samples.append(PriceSample("A", ts, 100 + d, 100 + d, 100 + d, 100 + d))
            samples.append(PriceSample("B", ts, 50 + d, 50 + d, 50 + d, 50 + d))
    await store.insert_prices(samples)
    store.calls.clear()
    return store


@pytest.mark.unit
class TestPriceRangeCache:
    async def test_contained_request_hits_memory(self):
        store = await _seeded_store()
        cache = PriceRangeCache(store)

        first = await cache.get_bulk_prices([JAN1, JAN1 + 6 * 3_600_000])
        assert store.calls == {"get_prices_between": 1}
        assert cache.covered_range == (JAN1, JAN1 + DAY_MS - 1)

        again = await cache.get_bulk_prices([JAN1 + 6 * 3_600_000, JAN1])
        assert again == first
        assert store.calls == {"get_prices_between": 1}
        assert first[JAN1] == {"A": 100, "B": 50}

    async def test_request_outside_replaces_block(self):
        store = await _seeded_store()
        cache = PriceRangeCache(store)
        await cache.get_bulk_prices([JAN1])
        out = await cache.get_bulk_prices([JAN1, JAN1 + DAY_MS])
        assert store.calls["get_prices_between"] == 2
        assert cache.covered_range == (JAN1, JAN1 + 2 * DAY_MS - 1)
        assert out[JAN1 + DAY_MS] == {"A": 101, "B": 51}

    async def test_missing_timestamp_maps_to_empty(self):
        cache = PriceRangeCache(await _seeded_store())
        out = await cache.get_bulk_prices([JAN1 + FIVE_MIN_MS])
        assert out == {JAN1 + FIVE_MIN_MS: {}}

    async def test_tolerance_falls_back_to_neighbour(self):
        cache = PriceRangeCache(await _seeded_store())
        out = await cache.get_bulk_prices([JAN1 + 30 * 60_000], tolerance_ms=30 * 60_000)
        assert out[JAN1 + 30 * 60_000] == {"A": 100, "B": 50}

    async def test_invalidate_only_on_overlap(self):
        cache = PriceRangeCache(await _seeded_store())
        await cache.get_bulk_prices([JAN1])
        await cache.invalidate_range(JAN1 + 2 * DAY_MS, JAN1 + 3 * DAY_MS)
        assert cache.covered_range is not None
        await cache.invalidate_range(JAN1 + 3_600_000, JAN1 + 3_600_000)
        assert cache.covered_range is None

    async def test_clear(self):
        store = await _seeded_store()
        cache = PriceRangeCache(store)
        await cache.get_bulk_prices([JAN1])
        await cache.clear()
        await cache.get_bulk_prices([JAN1])
        assert store.calls["get_prices_between"] == 2
