"""IngestionPipeline against the in-memory store and a replayed exchange."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.exchange.faulty_client import FaultyExchangeClient
from app.exchange.replay_client import ReplayExchangeClient
from app.services.base_price_registry import BasePriceRegistry
from app.services.index_calculator import InvalidParameterError
from app.services.ingestion import IngestionPipeline, find_missing_ranges

NOW_MS = 1_699_999_830_000
STEP = 300_000
LAST_CLOSED = 1_699_999_500_000
FIRST = LAST_CLOSED - 24 * STEP


def _build(store, client, settings, sleep=None, **kwargs):
    return IngestionPipeline(
        store,
        client,
        BasePriceRegistry(store),
        settings=settings,
        clock=lambda: NOW_MS,
        sleep=sleep or AsyncMock(),
        **kwargs,
    )


@pytest.mark.unit
class TestFindMissingRanges:
    def test_empty(self):
        assert find_missing_ranges([]) == []

    def test_merges_adjacent_slots(self):
        ts = [0, STEP, 2 * STEP, 5 * STEP]
        assert find_missing_ranges(ts) == [(0, 2 * STEP), (5 * STEP, 5 * STEP)]

    def test_unsorted_with_duplicates(self):
        assert find_missing_ranges([STEP, 0, STEP]) == [(0, STEP)]


@pytest.mark.unit
class TestBackfill:
    async def test_full_backfill_from_empty_store(self, pipeline, mem_store):
        summary = await pipeline.backfill(days=1, concurrency=2)

        assert summary["skipped"] is False
        assert len(summary["phases"]) == 1
        phase = summary["phases"][0]
        assert phase["phase"] == "main"
        assert phase["saved"] == 50
        assert phase["newBasePrices"] == 2
        assert phase["indexesSaved"] == 25

        # base price is the open of the first candle in the window
        assert pipeline.registry.snapshot() == {"AAAUSDT": 100, "BBBUSDT": 200}
        assert await mem_store.count_indexes_between(FIRST, LAST_CLOSED) == 25

        first = (await mem_store.get_index_history(FIRST))[0]
        assert first.ts_ms == FIRST
        assert first.index_value == pytest.approx(0.0)
        latest = await mem_store.get_latest_index()
        assert latest.ts_ms == LAST_CLOSED
        # AAA +24%, BBB -12%
        assert latest.index_value == pytest.approx(6.0)
        assert (latest.up_count, latest.down_count, latest.coin_count) == (1, 1, 2)

    async def test_second_run_is_skipped(self, pipeline):
        await pipeline.backfill(days=1)
        assert await pipeline.backfill(days=1) == {"skipped": True, "phases": []}

    async def test_incremental_backfill_starts_after_latest(self, pipeline, mem_store, exchange, series):
        await mem_store.insert_prices(series("AAAUSDT", [100.0], end_ts=LAST_CLOSED - 10 * STEP))
        await pipeline.backfill(days=1)
        starts = {start for _, _, start, _ in exchange.request_log}
        assert starts == {LAST_CLOSED - 9 * STEP}

    async def test_existing_base_price_is_kept(self, pipeline, mem_store):
        await mem_store.insert_base_prices({"AAAUSDT": 50.0})
        await pipeline.backfill(days=1)
        assert pipeline.registry.get("AAAUSDT") == 50.0
        assert pipeline.registry.get("BBBUSDT") == 200

    async def test_rate_limited_symbols_are_abandoned(self, mem_store, test_settings, series):
        client = FaultyExchangeClient(
            {"AAAUSDT": series("AAAUSDT", [1.0, 2.0]), "BBBUSDT": series("BBBUSDT", [1.0, 2.0])},
            clock=lambda: NOW_MS,
            rate_limit_after=0,
        )
        pipeline = _build(mem_store, client, test_settings)
        summary = await pipeline.backfill(days=1)
        phase = summary["phases"][0]
        assert phase["rateLimited"] == 2
        assert phase["saved"] == 0
        assert client.is_rate_limited()

    async def test_failures_trigger_backoff(self, mem_store, test_settings, series):
        client = FaultyExchangeClient(
            {"AAAUSDT": series("AAAUSDT", [1.0, 2.0]), "BBBUSDT": series("BBBUSDT", [1.0, 2.0])},
            clock=lambda: NOW_MS,
            fail_on_methods=["get_candles"],
            fail_symbols={"BBBUSDT"},
        )
        sleep = AsyncMock()
        pipeline = _build(mem_store, client, test_settings, sleep=sleep)
        summary = await pipeline.backfill(days=1)

        phase = summary["phases"][0]
        assert phase["failed"] == 1
        assert phase["completed"] == 1
        sleep.assert_awaited_with(test_settings.failure_backoff_sec)
        assert pipeline.registry.symbols() == {"AAAUSDT"}

    async def test_request_interval_sleeps_between_pages(self, mem_store, test_settings, series):
        client = ReplayExchangeClient(
            {"AAAUSDT": series("AAAUSDT", [1.0, 2.0])}, clock=lambda: NOW_MS, request_interval_ms=250
        )
        sleep = AsyncMock()
        pipeline = _build(mem_store, client, test_settings, sleep=sleep)
        await pipeline.backfill(days=1)
        sleep.assert_awaited_with(0.25)


@pytest.mark.unit
class TestPricesOnlyBackfill:
    @pytest.mark.parametrize("days", [0, -1, 366])
    async def test_rejects_out_of_range_days(self, pipeline, days):
        with pytest.raises(InvalidParameterError):
            await pipeline.backfill_prices_only(days)

    async def test_leaves_base_prices_and_indexes_alone(self, pipeline, mem_store):
        result = await pipeline.backfill_prices_only(1)
        assert result["success"] is True
        assert result["saved"] == 50
        assert not pipeline.registry.has_any()
        assert await mem_store.get_latest_index() is None


@pytest.mark.unit
class TestLiveIndex:
    async def test_computes_and_saves_index(self, mem_store, test_settings, series):
        client = ReplayExchangeClient(
            {"AAAUSDT": series("AAAUSDT", [110.0]), "BBBUSDT": series("BBBUSDT", [220.0])},
            clock=lambda: NOW_MS,
        )
        pipeline = _build(mem_store, client, test_settings)
        await pipeline.registry.set_new({"AAAUSDT": 100.0, "BBBUSDT": 200.0})

        point = await pipeline.calculate_and_save_current_index()

        assert point.ts_ms == LAST_CLOSED
        assert point.index_value == pytest.approx(10.0)
        assert (point.up_count, point.down_count, point.coin_count) == (2, 0, 2)
        assert point.adr == 2.0
        assert len(await mem_store.get_prices_at(LAST_CLOSED)) == 2

    async def test_same_slot_is_not_written_twice(self, mem_store, test_settings, series):
        client = ReplayExchangeClient({"AAAUSDT": series("AAAUSDT", [110.0])}, clock=lambda: NOW_MS)
        pipeline = _build(mem_store, client, test_settings)
        await pipeline.registry.set_new({"AAAUSDT": 100.0})

        assert await pipeline.calculate_and_save_current_index() is not None
        assert await pipeline.calculate_and_save_current_index() is None
        assert await mem_store.count_indexes_between(0, NOW_MS) == 1

    async def test_waits_for_base_prices(self, pipeline):
        assert await pipeline.calculate_and_save_current_index() is None

    async def test_new_symbol_gets_base_price(self, mem_store, test_settings, series):
        client = ReplayExchangeClient(
            {"AAAUSDT": series("AAAUSDT", [110.0]), "CCCUSDT": series("CCCUSDT", [3.0])},
            clock=lambda: NOW_MS,
        )
        pipeline = _build(mem_store, client, test_settings)
        await pipeline.registry.set_new({"AAAUSDT": 100.0})

        point = await pipeline.calculate_and_save_current_index()

        assert point.coin_count == 1
        assert pipeline.registry.get("CCCUSDT") == 3.0
        stored = {e.symbol for e in await mem_store.load_base_prices()}
        assert stored == {"AAAUSDT", "CCCUSDT"}

    async def test_delisted_symbol_loses_base_price(self, mem_store, test_settings, series):
        client = ReplayExchangeClient({"AAAUSDT": series("AAAUSDT", [110.0])}, clock=lambda: NOW_MS)
        pipeline = _build(mem_store, client, test_settings)
        await pipeline.registry.set_new({"AAAUSDT": 100.0, "ZZZUSDT": 5.0})

        await pipeline.calculate_and_save_current_index()

        assert pipeline.registry.get("ZZZUSDT") is None
        assert {e.symbol for e in await mem_store.load_base_prices()} == {"AAAUSDT"}

    async def test_lagging_symbol_excluded_from_round(self, mem_store, test_settings, series):
        client = ReplayExchangeClient(
            {
                "AAAUSDT": series("AAAUSDT", [110.0]),
                "BBBUSDT": series("BBBUSDT", [220.0]),
                "CCCUSDT": series("CCCUSDT", [50.0], end_ts=LAST_CLOSED - STEP),
            },
            clock=lambda: NOW_MS,
        )
        pipeline = _build(mem_store, client, test_settings)
        await pipeline.registry.set_new({"AAAUSDT": 100.0, "BBBUSDT": 200.0, "CCCUSDT": 10.0})

        point = await pipeline.calculate_and_save_current_index()

        assert point.ts_ms == LAST_CLOSED
        assert point.coin_count == 2
        assert point.index_value == pytest.approx(10.0)
        # the lagging candle is still kept as history
        assert [s.symbol for s in await mem_store.get_prices_at(LAST_CLOSED - STEP)] == ["CCCUSDT"]

    async def test_failed_symbol_fetch_is_skipped(self, mem_store, test_settings, series):
        client = FaultyExchangeClient(
            {"AAAUSDT": series("AAAUSDT", [110.0]), "BBBUSDT": series("BBBUSDT", [220.0])},
            clock=lambda: NOW_MS,
            fail_on_methods=["get_latest_closed_candle"],
            fail_symbols={"BBBUSDT"},
        )
        pipeline = _build(mem_store, client, test_settings)
        await pipeline.registry.set_new({"AAAUSDT": 100.0, "BBBUSDT": 200.0})

        point = await pipeline.calculate_and_save_current_index()

        assert point.coin_count == 1

    async def test_saved_round_invalidates_caches(self, mem_store, test_settings, series):
        client = ReplayExchangeClient({"AAAUSDT": series("AAAUSDT", [110.0])}, clock=lambda: NOW_MS)
        range_cache = MagicMock()
        range_cache.invalidate_range = AsyncMock()
        uptrend_cache = MagicMock()
        pipeline = _build(
            mem_store, client, test_settings, range_cache=range_cache, uptrend_cache=uptrend_cache
        )
        await pipeline.registry.set_new({"AAAUSDT": 100.0})

        await pipeline.calculate_and_save_current_index()

        range_cache.invalidate_range.assert_awaited_once_with(LAST_CLOSED, LAST_CLOSED)
        uptrend_cache.invalidate_all.assert_called_once()


@pytest.mark.unit
class TestPendingQueue:
    async def test_buffer_then_flush(self, mem_store, test_settings, series):
        client = ReplayExchangeClient(
            {"AAAUSDT": series("AAAUSDT", [110.0]), "BBBUSDT": series("BBBUSDT", [180.0])},
            clock=lambda: NOW_MS,
        )
        pipeline = _build(mem_store, client, test_settings)

        assert await pipeline.collect_and_buffer() is True
        assert await pipeline.collect_and_buffer() is False
        assert pipeline.pending_count == 1
        assert await mem_store.get_latest_index() is None

        await pipeline.registry.set_new({"AAAUSDT": 100.0, "BBBUSDT": 200.0})
        stats = await pipeline.flush_pending_data()

        assert stats == {"savedIndexes": 1, "savedPrices": 2, "skipped": 0}
        assert pipeline.pending_count == 0
        point = await mem_store.get_latest_index()
        assert point.ts_ms == LAST_CLOSED
        assert point.index_value == pytest.approx(0.0)

    async def test_flush_skips_already_indexed_slot(self, mem_store, test_settings, series):
        client = ReplayExchangeClient({"AAAUSDT": series("AAAUSDT", [110.0])}, clock=lambda: NOW_MS)
        pipeline = _build(mem_store, client, test_settings)
        await pipeline.collect_and_buffer()
        await pipeline.registry.set_new({"AAAUSDT": 100.0})
        await pipeline.calculate_and_save_current_index()

        stats = await pipeline.flush_pending_data()

        assert stats["skipped"] == 1
        assert stats["savedIndexes"] == 0

    async def test_flush_empty_queue(self, pipeline):
        assert await pipeline.flush_pending_data() == {"savedIndexes": 0, "savedPrices": 0, "skipped": 0}


@pytest.mark.unit
class TestGaps:
    async def test_find_missing(self, pipeline, mem_store, series):
        rows = series("AAAUSDT", [1.0, 2.0, 3.0, 4.0, 5.0])
        del rows[2]
        await mem_store.insert_prices(rows)

        result = await pipeline.find_missing(LAST_CLOSED - 4 * STEP, LAST_CLOSED + 10 * STEP)

        assert result["totalSymbols"] == 2
        assert result["expectedPerCoin"] == 5
        assert result["symbolsWithMissing"] == 2
        assert result["totalMissingRecords"] == 6
        aaa, bbb = result["details"]
        assert aaa["symbol"] == "AAAUSDT"
        assert aaa["existing"] == 4
        assert aaa["missingRanges"] == [[LAST_CLOSED - 2 * STEP, LAST_CLOSED - 2 * STEP]]
        assert bbb["missingRanges"] == [[LAST_CLOSED - 4 * STEP, LAST_CLOSED]]

    async def test_repair_fills_gap(self, pipeline, mem_store, series):
        rows = series("AAAUSDT", [float(i + 1) for i in range(10)])
        gap = rows[4:7]
        await mem_store.insert_prices([r for r in rows if r not in gap])

        result = await pipeline.repair_missing(
            start_ms=LAST_CLOSED - 9 * STEP, end_ms=LAST_CLOSED, symbols=["AAAUSDT"]
        )

        assert result["success"] is True
        assert result["totalRepairedRecords"] == 3
        assert result["repairedSymbolCount"] == 1
        assert result["repairedDetails"][0]["repairedCount"] == 3
        stored = await mem_store.get_symbol_prices("AAAUSDT", 0, NOW_MS)
        assert len(stored) == 10

        again = await pipeline.repair_missing(
            start_ms=LAST_CLOSED - 9 * STEP, end_ms=LAST_CLOSED, symbols=["AAAUSDT"]
        )
        assert again["message"] == "No missing data found"
        assert again["totalRepairedRecords"] == 0

    async def test_unaligned_start_over_complete_store_has_no_gaps(self, pipeline, mem_store, exchange, series):
        for symbol in ("AAAUSDT", "BBBUSDT"):
            await mem_store.insert_prices(series(symbol, [float(i + 1) for i in range(10)]))
        start = LAST_CLOSED - 4 * STEP + 30_000

        result = await pipeline.find_missing(start, LAST_CLOSED)

        assert result["expectedPerCoin"] == 4
        assert result["symbolsWithMissing"] == 0
        assert result["totalMissingRecords"] == 0
        assert result["details"] == []

        exchange.get_candles_paginated = AsyncMock(wraps=exchange.get_candles_paginated)
        for _ in range(2):
            repair = await pipeline.repair_missing(start_ms=start, end_ms=LAST_CLOSED)
            assert repair["message"] == "No missing data found"
            assert repair["repairedSymbolCount"] == 0
        exchange.get_candles_paginated.assert_not_awaited()

    async def test_unfillable_gap_reports_nothing_repaired(self, pipeline, mem_store, series):
        # the exchange history starts at LAST_CLOSED - 24 steps, so this gap cannot be filled
        old_end = LAST_CLOSED - 30 * STEP
        rows = series("AAAUSDT", [1.0, 2.0, 3.0, 4.0, 5.0], end_ts=old_end)
        del rows[2]
        await mem_store.insert_prices(rows)

        result = await pipeline.repair_missing(
            start_ms=old_end - 4 * STEP, end_ms=old_end, symbols=["AAAUSDT"]
        )

        assert result["success"] is True
        assert result["repairedSymbolCount"] == 0
        assert result["totalRepairedRecords"] == 0
        assert result["repairedDetails"] == []

    async def test_repair_without_symbols(self, mem_store, test_settings):
        client = ReplayExchangeClient(clock=lambda: NOW_MS)
        pipeline = _build(mem_store, client, test_settings)
        result = await pipeline.repair_missing(days=1)
        assert result == {"success": False, "message": "No active symbols available"}


@pytest.mark.unit
class TestMaintenance:
    async def test_cleanup_duplicates(self, pipeline):
        assert await pipeline.cleanup_duplicate_data() == {"deletedPriceRows": 0, "deletedIndexRows": 0}

    async def test_delete_data_in_range(self, pipeline, mem_store):
        await pipeline.backfill(days=1)
        result = await pipeline.delete_data_in_range(FIRST, FIRST + STEP)
        assert result["deletedIndexCount"] == 2
        assert result["deletedPriceTimePoints"] == 2
        assert await mem_store.count_indexes_between(FIRST, LAST_CLOSED) == 23

    async def test_cleanup_data_in_range(self, pipeline):
        await pipeline.backfill(days=1)
        result = await pipeline.cleanup_data_in_range(FIRST, FIRST + STEP)
        assert result["deletedCoinPriceCount"] == 4
        assert result["deletedMarketIndexCount"] == 2

    async def test_delete_symbol_data(self, pipeline, mem_store):
        await pipeline.backfill(days=1)
        result = await pipeline.delete_symbol_data("AAAUSDT")
        assert result == {
            "success": True,
            "symbol": "AAAUSDT",
            "deletedPriceCount": 25,
            "deletedBasePrice": True,
        }
        assert pipeline.registry.get("AAAUSDT") is None
        assert await mem_store.get_symbol_prices("AAAUSDT", 0, NOW_MS) == []

    async def test_cleanup_delisted_ignores_empty_listing(self, pipeline):
        await pipeline.registry.set_new({"AAAUSDT": 1.0})
        assert await pipeline.cleanup_delisted(set()) == []
        assert pipeline.registry.has_any()
