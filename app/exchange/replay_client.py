from __future__ import annotations

import bisect
import time

from app.exchange.base_client import ExchangeClient
from app.models.records import PriceSample

_FIVE_MIN_MS = 300_000


class ReplayExchangeClient(ExchangeClient):
    """
    ExchangeClient implementation backed by in-memory candles.
    Serves offline replays and tests; no real API calls are made.
    Only the 5m interval is stored; other intervals are rejected.
    """

    def __init__(
        self,
        candles: dict[str, list[PriceSample]] | None = None,
        *,
        active_symbols: list[str] | None = None,
        clock=None,
        request_interval_ms: int = 0,
    ):
        self._candles: dict[str, list[PriceSample]] = {}
        self._active = active_symbols
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._request_interval_ms = request_interval_ms
        self._rate_limited = False
        self.request_log: list[tuple[str, str, int, int]] = []
        for symbol, rows in (candles or {}).items():
            self.load(symbol, rows)

    # ------------------------------------------------------------------
    # Data helpers
    # ------------------------------------------------------------------

    def load(self, symbol: str, rows: list[PriceSample]) -> None:
        merged = {c.ts_ms: c for c in self._candles.get(symbol, [])}
        merged.update({c.ts_ms: c for c in rows})
        self._candles[symbol] = [merged[t] for t in sorted(merged)]

    def set_active_symbols(self, symbols: list[str] | None) -> None:
        self._active = symbols

    def set_rate_limited(self, value: bool) -> None:
        self._rate_limited = value

    # ------------------------------------------------------------------
    # ExchangeClient
    # ------------------------------------------------------------------

    async def get_active_symbols(self) -> list[str]:
        if self._active is not None:
            return list(self._active)
        return sorted(self._candles)

    async def get_latest_closed_candle(self, symbol: str) -> PriceSample | None:
        # newest candle whose close time (open + 5m) has passed
        cutoff = self._clock() - _FIVE_MIN_MS
        rows = self._candles.get(symbol, [])
        times = [c.ts_ms for c in rows]
        idx = bisect.bisect_right(times, cutoff)
        return rows[idx - 1] if idx else None

    async def get_candles(
        self,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
        limit: int = 500,
    ) -> list[PriceSample]:
        if interval != "5m":
            raise ValueError(f"Unsupported interval: {interval}")
        self.request_log.append((symbol, interval, start_ms, end_ms))
        rows = self._candles.get(symbol, [])
        times = [c.ts_ms for c in rows]
        lo = bisect.bisect_left(times, start_ms)
        hi = bisect.bisect_right(times, end_ms)
        return rows[lo:hi][:limit]

    def is_rate_limited(self) -> bool:
        return self._rate_limited

    @property
    def request_interval_ms(self) -> int:
        return self._request_interval_ms
