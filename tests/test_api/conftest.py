"""API test fixtures: app.state wired to in-memory services, no lifespan."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.dependencies import limiter
from app.exchange.replay_client import ReplayExchangeClient
from app.main import app
from app.services.backtest_simulator import BacktestService
from app.services.base_price_registry import BasePriceRegistry
from app.services.index_service import IndexService
from app.services.ingestion import IngestionPipeline
from app.services.optimizer import StrategyOptimizer
from app.services.price_cache import PriceRangeCache, TTLCache
from app.services.uptrend_service import UptrendService

_STATE_KEYS = (
    "store",
    "pipeline",
    "scheduler",
    "range_cache",
    "index_service",
    "uptrend_service",
    "backtest_service",
    "optimizer",
)


@pytest.fixture(autouse=True)
def _clean_app_state():
    """Fresh rate-limit counters and no services leaking between tests."""
    limiter.reset()
    yield
    for key in _STATE_KEYS:
        if hasattr(app.state, key):
            delattr(app.state, key)


@pytest.fixture
def scheduler():
    mock = MagicMock()
    mock.status.return_value = {
        "backfillComplete": True,
        "backfillInProgress": False,
        "collectionPaused": False,
        "lastError": None,
        "pendingRounds": 0,
        "basePriceCount": 0,
        "lastIndexTime": None,
        "collectorEnabled": True,
    }
    mock.rebackfill.return_value = True
    return mock


@pytest_asyncio.fixture
async def api_client(mem_store, scheduler):
    """AsyncClient against the real app with every service backed by ``mem_store``."""
    registry = BasePriceRegistry(mem_store)
    range_cache = PriceRangeCache(mem_store)
    uptrend_cache = TTLCache(10, 300, name="uptrend")
    exchange = ReplayExchangeClient(active_symbols=["AAAUSDT"])
    uptrend_service = UptrendService(mem_store, uptrend_cache, pool_size=2, timeout_sec=5)

    app.state.store = mem_store
    app.state.pipeline = IngestionPipeline(
        mem_store, exchange, registry, range_cache=range_cache, uptrend_cache=uptrend_cache
    )
    app.state.scheduler = scheduler
    app.state.range_cache = range_cache
    app.state.index_service = IndexService(mem_store, registry)
    app.state.uptrend_service = uptrend_service
    app.state.backtest_service = BacktestService(mem_store, TTLCache(100, 60, name="snapshot"))
    app.state.optimizer = StrategyOptimizer(range_cache)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    uptrend_service.shutdown()
