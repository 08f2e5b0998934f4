"""ReplayExchangeClient extension for failure mode testing."""
from __future__ import annotations

from app.exchange.base_client import ExchangeRateLimitedError
from app.exchange.replay_client import ReplayExchangeClient


class FaultyExchangeClient(ReplayExchangeClient):
    """ReplayExchangeClient that can inject failures and rate limiting for testing error handling."""

    def __init__(
        self,
        candles=None,
        *,
        fail_after: int = 0,
        fail_with: type[Exception] = ConnectionError,
        fail_message: str = "Simulated exchange failure",
        fail_on_methods: list[str] | None = None,
        fail_symbols: set[str] | None = None,
        rate_limit_after: int | None = None,
        **kwargs,
    ):
        super().__init__(candles, **kwargs)
        self._fail_after = fail_after
        self._fail_with = fail_with
        self._fail_message = fail_message
        self._fail_on_methods = fail_on_methods or [
            "get_candles",
            "get_latest_closed_candle",
        ]
        # None means every symbol
        self._fail_symbols = fail_symbols
        self._rate_limit_after = rate_limit_after
        self._call_counts: dict[str, int] = {}
        self._total_candle_calls = 0

    def _check_failure(self, method_name: str, symbol: str | None = None) -> None:
        if method_name not in self._fail_on_methods:
            return
        if symbol is not None and self._fail_symbols is not None and symbol not in self._fail_symbols:
            return
        count = self._call_counts.get(method_name, 0) + 1
        self._call_counts[method_name] = count
        # fail_after=0 means fail on every call; otherwise fail once count exceeds threshold
        if count > self._fail_after:
            raise self._fail_with(self._fail_message)

    async def get_active_symbols(self):
        self._check_failure("get_active_symbols")
        return await super().get_active_symbols()

    async def get_latest_closed_candle(self, symbol):
        self._check_failure("get_latest_closed_candle", symbol)
        return await super().get_latest_closed_candle(symbol)

    async def get_candles(self, symbol, interval, start_ms, end_ms, limit=500):
        self._total_candle_calls += 1
        if self._rate_limit_after is not None and self._total_candle_calls > self._rate_limit_after:
            self.set_rate_limited(True)
            raise ExchangeRateLimitedError("Simulated 429")
        self._check_failure("get_candles", symbol)
        return await super().get_candles(symbol, interval, start_ms, end_ms, limit)

    def reset_failures(self) -> None:
        """Reset call counts to re-enable normal behavior."""
        self._call_counts.clear()

    def disable_failures(self) -> None:
        """Completely disable failure injection."""
        self._call_counts.clear()
        self._fail_on_methods = []
        self._rate_limit_after = None
        self.set_rate_limited(False)
