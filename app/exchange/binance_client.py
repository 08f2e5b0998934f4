from __future__ import annotations

import asyncio
import logging
import time

import binance.client
from binance.exceptions import BinanceAPIException

from app.exchange.base_client import ExchangeClient, ExchangeRateLimitedError
from app.models.records import PriceSample
from app.services.rate_limiter import GlobalRateLimiter
from app.utils.metrics import EXCHANGE_REQUESTS

logger = logging.getLogger(__name__)

_RATE_LIMIT_STATUS = (418, 429)

# Binance request weight by kline limit (spot and futures agree for <=500)
_KLINE_WEIGHT = ((100, 1), (500, 2), (1000, 5))


def _kline_weight(limit: int) -> int:
    for bound, weight in _KLINE_WEIGHT:
        if limit <= bound:
            return weight
    return 10


def _parse_kline(symbol: str, row: list) -> PriceSample:
    # [open_time, open, high, low, close, volume, close_time, quote_volume, ...]
    return PriceSample(
        symbol=symbol,
        ts_ms=int(row[0]),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[7]),
    )


class BinanceClient(ExchangeClient):
    """Binance REST market data that wraps python-binance's sync Client with asyncio.to_thread()."""

    def __init__(
        self,
        api_key: str = "",
        api_secret: str = "",
        *,
        futures: bool = True,
        quote_asset: str = "USDT",
        rate_limiter: GlobalRateLimiter | None = None,
        request_interval_ms: int = 100,
        rate_limit_cooldown_sec: float = 60.0,
    ) -> None:
        self.client = binance.client.Client(api_key or None, api_secret or None)
        self._futures = futures
        self._quote_asset = quote_asset
        self._rate_limiter = rate_limiter or GlobalRateLimiter()
        self._request_interval_ms = request_interval_ms
        self._cooldown_sec = rate_limit_cooldown_sec
        self._rate_limited_until = 0.0

    # ------------------------------------------------------------------
    # Private sync helpers
    # ------------------------------------------------------------------

    def _sync_get_active_symbols(self) -> list[str]:
        if self._futures:
            info = self.client.futures_exchange_info()
            return sorted(
                s["symbol"]
                for s in info["symbols"]
                if s.get("status") == "TRADING"
                and s.get("quoteAsset") == self._quote_asset
                and s.get("contractType") == "PERPETUAL"
            )
        info = self.client.get_exchange_info()
        return sorted(
            s["symbol"]
            for s in info["symbols"]
            if s.get("status") == "TRADING"
            and s.get("quoteAsset") == self._quote_asset
            and s.get("isSpotTradingAllowed", True)
        )

    def _sync_get_klines(
        self, symbol: str, interval: str, start_ms: int | None, end_ms: int | None, limit: int
    ) -> list[list]:
        kwargs: dict = {"symbol": symbol, "interval": interval, "limit": limit}
        if start_ms is not None:
            kwargs["startTime"] = start_ms
        if end_ms is not None:
            kwargs["endTime"] = end_ms
        if self._futures:
            return self.client.futures_klines(**kwargs)
        return self.client.get_klines(**kwargs)

    # ------------------------------------------------------------------
    # Rate-limit bookkeeping
    # ------------------------------------------------------------------

    def is_rate_limited(self) -> bool:
        return time.monotonic() < self._rate_limited_until

    @property
    def request_interval_ms(self) -> int:
        return self._request_interval_ms

    async def _call(self, endpoint: str, weight: int, fn, *args):
        await self._rate_limiter.acquire(weight)
        try:
            result = await asyncio.to_thread(fn, *args)
        except BinanceAPIException as e:
            if e.status_code in _RATE_LIMIT_STATUS:
                self._rate_limited_until = time.monotonic() + self._cooldown_sec
                EXCHANGE_REQUESTS.labels(endpoint=endpoint, outcome="rate_limited").inc()
                logger.warning(
                    "Binance rate limit hit (%d) on %s, cooling down %.0fs",
                    e.status_code, endpoint, self._cooldown_sec,
                )
                raise ExchangeRateLimitedError(str(e)) from e
            EXCHANGE_REQUESTS.labels(endpoint=endpoint, outcome="error").inc()
            raise
        except Exception:
            EXCHANGE_REQUESTS.labels(endpoint=endpoint, outcome="error").inc()
            raise
        EXCHANGE_REQUESTS.labels(endpoint=endpoint, outcome="ok").inc()
        return result

    # ------------------------------------------------------------------
    # Public async interface
    # ------------------------------------------------------------------

    async def get_active_symbols(self) -> list[str]:
        return await self._call("exchange_info", 40, self._sync_get_active_symbols)

    async def get_latest_closed_candle(self, symbol: str) -> PriceSample | None:
        rows = await self._call("klines", 1, self._sync_get_klines, symbol, "5m", None, None, 2)
        now_ms = int(time.time() * 1000)
        closed = [r for r in rows if int(r[6]) < now_ms]
        if not closed:
            return None
        return _parse_kline(symbol, closed[-1])

    async def get_candles(
        self,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
        limit: int = 500,
    ) -> list[PriceSample]:
        rows = await self._call(
            "klines", _kline_weight(limit), self._sync_get_klines, symbol, interval, start_ms, end_ms, limit
        )
        return [_parse_kline(symbol, r) for r in rows]
