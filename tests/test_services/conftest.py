"""Service-layer test fixtures: in-memory store, replayed exchange, fixed clock."""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from app.config import GlobalConfig
from app.exchange.replay_client import ReplayExchangeClient
from app.models.records import PriceSample
from app.services.base_price_registry import BasePriceRegistry
from app.services.ingestion import IngestionPipeline

# 2023-11-14 22:10:30 UTC, 30s into a 5-minute slot
NOW_MS = 1_699_999_830_000
STEP = 300_000
# open time of the newest closed candle at NOW_MS
LAST_CLOSED = 1_699_999_500_000


def make_series(symbol: str, prices: list[float], end_ts: int = LAST_CLOSED) -> list[PriceSample]:
    """One 5m candle per price ending at ``end_ts``; open equals close."""
    start = end_ts - (len(prices) - 1) * STEP
    return [PriceSample(symbol, start + i * STEP, p, p * 1.01, p * 0.99, p, 10.0) for i, p in enumerate(prices)]


@pytest.fixture
def now_ms():
    return NOW_MS


@pytest.fixture
def last_closed():
    return LAST_CLOSED


@pytest.fixture
def test_settings():
    """GlobalConfig with fast, deterministic knobs."""
    return GlobalConfig(
        thread_pool_size=4,
        backfill_days=1,
        backfill_concurrency=2,
        request_interval_ms=0,
        failure_backoff_every=1,
        failure_backoff_sec=0.5,
        collect_offset_sec=20,
        telegram_bot_token="",
        telegram_chat_id="",
    )


@pytest.fixture
def series():
    return make_series


@pytest.fixture
def exchange():
    """Replay exchange with two symbols and two hours of history."""
    client = ReplayExchangeClient(clock=lambda: NOW_MS)
    client.load("AAAUSDT", make_series("AAAUSDT", [100 + i for i in range(25)]))
    client.load("BBBUSDT", make_series("BBBUSDT", [200 - i for i in range(25)]))
    return client


@pytest.fixture
def registry(mem_store):
    return BasePriceRegistry(mem_store)


@pytest.fixture
def fake_sleep():
    return AsyncMock()


@pytest_asyncio.fixture
async def pipeline(mem_store, exchange, registry, test_settings, fake_sleep):
    return IngestionPipeline(
        mem_store,
        exchange,
        registry,
        settings=test_settings,
        clock=lambda: NOW_MS,
        sleep=fake_sleep,
    )
