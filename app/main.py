from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded
from starlette.responses import JSONResponse

from app.api.backtest import router as backtest_router
from app.api.data_admin import router as data_admin_router
from app.api.health import router as health_router
from app.api.index import router as index_router
from app.api.metrics import router as metrics_router
from app.config import GlobalConfig
from app.db.price_repo import SqlTimeSeriesStore
from app.db.session import IndexSessionLocal, engine_index
from app.dependencies import limiter
from app.exchange.binance_client import BinanceClient
from app.middleware.request_id import RequestIdMiddleware
from app.services.alert_service import get_alert_service
from app.services.backtest_simulator import BacktestService
from app.services.base_price_registry import BasePriceRegistry
from app.services.collector_scheduler import CollectorScheduler
from app.services.index_calculator import InvalidParameterError
from app.services.index_service import IndexService
from app.services.ingestion import IngestionPipeline
from app.services.optimizer import StrategyOptimizer
from app.services.price_cache import PriceRangeCache, TTLCache
from app.services.rate_limiter import GlobalRateLimiter
from app.services.uptrend_service import AnalysisBusyError, UptrendService, WaveDetectionTimeout
from app.utils.logging import setup_logging

settings = GlobalConfig()


def _filter_sensitive_data(event, hint):
    """Strip sensitive data from Sentry events."""
    if "request" in event:
        headers = event["request"].get("headers", {})
        for key in list(headers.keys()):
            if key.lower() in ("cookie", "authorization", "x-mbx-apikey"):
                headers[key] = "[FILTERED]"
    return event


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.2,
            send_default_pii=False,
            include_local_variables=False,  # stack frames hold the Binance key
            before_send=_filter_sensitive_data,
        )

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)
    logger.info("Starting market-index service (%s market)...", settings.binance_market)

    # Thread pool for asyncio.to_thread (Binance sync calls) and backtest simulation
    loop = asyncio.get_running_loop()
    pool_size = max(10, settings.thread_pool_size)
    loop.set_default_executor(ThreadPoolExecutor(max_workers=pool_size))

    store = SqlTimeSeriesStore(IndexSessionLocal)
    rate_limiter = GlobalRateLimiter(max_rate=settings.api_rate_limit)
    exchange = BinanceClient(
        settings.binance_api_key,
        settings.binance_api_secret,
        futures=settings.is_futures,
        quote_asset=settings.quote_asset,
        rate_limiter=rate_limiter,
        request_interval_ms=settings.request_interval_ms,
        rate_limit_cooldown_sec=settings.rate_limit_cooldown_sec,
    )
    registry = BasePriceRegistry(store)
    range_cache = PriceRangeCache(store)
    uptrend_cache = TTLCache(settings.uptrend_cache_size, settings.uptrend_cache_ttl_sec, name="uptrend")
    snapshot_cache = TTLCache(settings.price_cache_size, settings.price_cache_ttl_sec, name="snapshot")

    try:
        await registry.load()
    except Exception as e:
        logger.warning("Failed to load base prices at startup: %s", e)

    pipeline = IngestionPipeline(
        store,
        exchange,
        registry,
        range_cache=range_cache,
        uptrend_cache=uptrend_cache,
        settings=settings,
    )
    uptrend_service = UptrendService(
        store,
        uptrend_cache,
        pool_size=settings.wave_pool_size,
        timeout_sec=settings.wave_timeout_sec,
    )
    scheduler = CollectorScheduler(pipeline, get_alert_service(), settings)

    app.state.store = store
    app.state.pipeline = pipeline
    app.state.scheduler = scheduler
    app.state.range_cache = range_cache
    app.state.index_service = IndexService(store, registry)
    app.state.uptrend_service = uptrend_service
    app.state.backtest_service = BacktestService(
        store,
        snapshot_cache,
        tolerance_ms=settings.closest_price_tolerance_min * 60 * 1000,
    )
    app.state.optimizer = StrategyOptimizer(range_cache)

    # Backfill first, then the 5-minute loop (both non-blocking)
    scheduler.start()

    yield

    logger.info("Shutting down collector...")
    await scheduler.stop()
    uptrend_service.shutdown()
    await engine_index.dispose()
    logger.info("Collector stopped")


app = FastAPI(
    title="Market Index",
    description="Binance market-breadth index, uptrend waves and short-top-N backtests",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting (slowapi)
app.state.limiter = limiter


def _rate_limit_handler(request, exc: RateLimitExceeded):
    return JSONResponse(
        {"success": False, "message": f"Rate limit exceeded: {exc.detail}"},
        status_code=429,
        headers={"Retry-After": "60"},
    )


def _error(status_code: int):
    def handler(request, exc: Exception):
        return JSONResponse({"success": False, "message": str(exc)}, status_code=status_code)

    return handler


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
app.add_exception_handler(InvalidParameterError, _error(400))
app.add_exception_handler(AnalysisBusyError, _error(503))
app.add_exception_handler(WaveDetectionTimeout, _error(504))

app.add_middleware(RequestIdMiddleware)

# Include API routers
app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(index_router)
app.include_router(data_admin_router)
app.include_router(backtest_router)


@app.get("/")
async def root():
    return {"status": "running", "service": "market-index"}
