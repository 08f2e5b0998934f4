from __future__ import annotations

from abc import ABC, abstractmethod

from app.models.records import PriceSample

_INTERVAL_MS = {
    "1m": 60_000,
    "5m": 300_000,
    "1h": 3_600_000,
}


class ExchangeRateLimitedError(Exception):
    """Exchange answered 418/429; callers should stop paging instead of retrying."""


class ExchangeClient(ABC):
    """Async market-data interface (5m OHLC candles)."""

    @abstractmethod
    async def get_active_symbols(self) -> list[str]: ...

    @abstractmethod
    async def get_latest_closed_candle(self, symbol: str) -> PriceSample | None: ...

    @abstractmethod
    async def get_candles(
        self,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
        limit: int = 500,
    ) -> list[PriceSample]:
        """Candles whose open time lies in [start_ms, end_ms], oldest first, at most ``limit``."""

    @abstractmethod
    def is_rate_limited(self) -> bool: ...

    @property
    @abstractmethod
    def request_interval_ms(self) -> int:
        """Suggested pause between consecutive page requests."""

    async def get_candles_paginated(
        self,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
        page_size: int = 500,
    ) -> list[PriceSample]:
        """Page through [start_ms, end_ms] in time order. Stops early when rate-limited."""
        step_ms = _INTERVAL_MS[interval]
        out: list[PriceSample] = []
        cursor = start_ms
        while cursor <= end_ms:
            if self.is_rate_limited():
                break
            page = await self.get_candles(symbol, interval, cursor, end_ms, page_size)
            if not page:
                break
            out.extend(page)
            cursor = page[-1].ts_ms + step_ms
        return out
