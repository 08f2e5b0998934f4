"""BacktestService: closest-snapshot lookup and a full run over stored prices."""
import pytest

from app.models.records import PriceSample
from app.services.backtest_simulator import BacktestParams, BacktestService
from app.services.index_calculator import InvalidParameterError
from app.services.price_cache import TTLCache

JAN1 = 1_704_067_200_000
DAY = 86_400_000
MINUTE = 60_000
T = JAN1 + 7 * DAY


def _at(symbol, ts, price):
    return PriceSample(symbol, ts, price, price, price, price + 1)


@pytest.fixture
def service(mem_store):
    return BacktestService(
        mem_store, TTLCache(100, 60, name="snapshot"), tolerance_ms=30 * MINUTE, clock=lambda: JAN1 + 9 * DAY + DAY // 2
    )


@pytest.mark.unit
class TestSnapshotAt:
    async def test_exact(self, service, mem_store):
        await mem_store.insert_prices([_at("AAAUSDT", T, 10.0), _at("BBBUSDT", T, 20.0)])
        assert await service.snapshot_at(T) == {"AAAUSDT": 10.0, "BBBUSDT": 20.0}

    async def test_latest_before_within_tolerance(self, service, mem_store):
        await mem_store.insert_prices([_at("AAAUSDT", T - 10 * MINUTE, 10.0), _at("AAAUSDT", T + 5 * MINUTE, 11.0)])
        assert await service.snapshot_at(T) == {"AAAUSDT": 10.0}

    async def test_earliest_after_within_tolerance(self, service, mem_store):
        await mem_store.insert_prices([_at("AAAUSDT", T + 20 * MINUTE, 12.0)])
        assert await service.snapshot_at(T) == {"AAAUSDT": 12.0}

    async def test_nothing_close_enough(self, service, mem_store):
        await mem_store.insert_prices([_at("AAAUSDT", T - 45 * MINUTE, 10.0)])
        assert await service.snapshot_at(T) == {}

    async def test_cached(self, service, mem_store):
        await mem_store.insert_prices([_at("AAAUSDT", T, 10.0)])
        await service.snapshot_at(T)
        reads = mem_store.calls["get_prices_at"]

        assert await service.snapshot_at(T) == {"AAAUSDT": 10.0}
        assert mem_store.calls["get_prices_at"] == reads

        service.clear_cache()
        await service.snapshot_at(T)
        assert mem_store.calls["get_prices_at"] == reads + 1


@pytest.mark.unit
class TestRun:
    async def test_shorts_the_top_gainer(self, service, mem_store):
        base, entry, exit_ = JAN1 + 7 * DAY, JAN1 + 8 * DAY, JAN1 + 9 * DAY
        await mem_store.insert_prices([
            _at("AAAUSDT", base, 100.0), _at("BBBUSDT", base, 100.0),
            _at("AAAUSDT", entry, 120.0), _at("BBBUSDT", entry, 110.0),
            _at("AAAUSDT", exit_, 108.0), _at("BBBUSDT", exit_, 110.0),
        ])
        params = BacktestParams(entry_hour=0, total_amount=100.0, days=1, top_n=1, timezone="UTC")

        result = await service.run(params)

        assert result.valid_days == 1
        assert result.total_trades == 1
        assert result.win_trades == 1
        assert result.total_profit == 10.0
        trade = result.daily_results[0].trades[0]
        assert (trade.symbol, trade.entry_price, trade.exit_price) == ("AAAUSDT", 120.0, 108.0)
        assert trade.ranking_change == pytest.approx(20.0)

    async def test_missing_snapshots_skip_the_day(self, service):
        params = BacktestParams(entry_hour=0, days=2, timezone="UTC")
        result = await service.run(params)
        assert result.valid_days == 0
        assert result.skipped_days == ["2024-01-08", "2024-01-09"]

    async def test_invalid_params(self, service):
        with pytest.raises(InvalidParameterError):
            await service.run(BacktestParams(entry_hour=24))
