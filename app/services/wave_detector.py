"""Single-direction uptrend wave decomposition.

One symbol's candles are scanned once, oldest first, by a small state
machine. A wave runs from a local low to its peak and ends on a pullback
below ``keep_ratio`` of its rise or after ``no_new_high_candles`` candles
without a new high. A deeper low than anything since the wave started
restarts the wave at that candle.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from app.models.records import PriceSample
from app.services.index_calculator import InvalidParameterError


class PriceMode(StrEnum):
    LOW_HIGH = "lowHigh"      # start/breakdown on low, peak on high
    OPEN_CLOSE = "openClose"  # start/breakdown on open, peak on close
    OPEN_HIGH = "openHigh"    # start/breakdown on open, peak on high


@dataclass(frozen=True)
class WaveParams:
    keep_ratio: float = 0.75
    no_new_high_candles: int = 6  # <= 0 disables the sideways exit
    min_uptrend: float = 4.0
    price_mode: PriceMode = PriceMode.LOW_HIGH

    def __post_init__(self):
        if not 0 < self.keep_ratio <= 1:
            raise InvalidParameterError("keepRatio must be in (0, 1]")
        if self.min_uptrend < 0:
            raise InvalidParameterError("minUptrend must be >= 0")
        try:
            object.__setattr__(self, "price_mode", PriceMode(self.price_mode))
        except ValueError:
            raise InvalidParameterError(
                f"priceMode must be one of {', '.join(m.value for m in PriceMode)}"
            ) from None

    def cache_key(self, start_ms: int, end_ms: int) -> str:
        return (
            f"{start_ms}_{end_ms}_{self.keep_ratio:.2f}_{self.no_new_high_candles}"
            f"_{self.min_uptrend:.2f}_{self.price_mode.value}"
        )


@dataclass(frozen=True)
class UptrendWave:
    symbol: str
    start_ts: int
    peak_ts: int
    start_price: float
    peak_price: float
    uptrend_percent: float
    is_ongoing: bool

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "uptrendPercent": self.uptrend_percent,
            "ongoing": self.is_ongoing,
            "waveStartTime": self.start_ts,
            "wavePeakTime": self.peak_ts,
            "startPrice": self.start_price,
            "peakPrice": self.peak_price,
        }


def _refs(candle: PriceSample, mode: PriceMode) -> tuple[float, float]:
    """(start/breakdown reference, peak reference) for one candle."""
    if mode is PriceMode.OPEN_CLOSE:
        return candle.open, candle.close
    if mode is PriceMode.OPEN_HIGH:
        return candle.open, candle.high
    return candle.low, candle.high


class _WaveState:
    """The single active wave. ``start_idx``/``peak_idx`` index into the candle list."""

    __slots__ = ("start_idx", "peak_idx", "start_price", "peak_price", "lowest_low", "since_new_high")

    def __init__(self, idx: int, start_price: float, peak_price: float):
        self.restart(idx, start_price, idx, peak_price)

    def restart(self, start_idx: int, start_price: float, peak_idx: int, peak_price: float) -> None:
        self.start_idx = start_idx
        self.start_price = start_price
        self.lowest_low = start_price
        self.peak_idx = peak_idx
        self.peak_price = peak_price
        self.since_new_high = 0

    def uptrend_percent(self) -> float:
        if self.start_price <= 0:
            return 0.0
        return (self.peak_price - self.start_price) / self.start_price * 100


def detect_waves(symbol: str, candles: list[PriceSample], params: WaveParams) -> list[UptrendWave]:
    """All qualifying waves of one symbol, in time order. ``candles`` must be sorted by time."""
    if len(candles) < 2:
        return []

    mode = params.price_mode
    waves: list[UptrendWave] = []

    def emit(state: _WaveState, ongoing: bool) -> None:
        start_ts = candles[state.start_idx].ts_ms
        peak_ts = candles[state.peak_idx].ts_ms
        pct = state.uptrend_percent()
        if state.peak_price > state.start_price and start_ts != peak_ts and pct >= params.min_uptrend:
            waves.append(
                UptrendWave(
                    symbol=symbol,
                    start_ts=start_ts,
                    peak_ts=peak_ts,
                    start_price=state.start_price,
                    peak_price=state.peak_price,
                    uptrend_percent=round(pct, 2),
                    is_ongoing=ongoing,
                )
            )

    start_ref, peak_ref = _refs(candles[0], mode)
    state = _WaveState(0, start_ref, peak_ref)

    for i in range(1, len(candles)):
        candle = candles[i]
        start_ref, peak_ref = _refs(candle, mode)

        # a deeper low invalidates the current base
        if start_ref < state.lowest_low:
            state.restart(i, start_ref, i, peak_ref)
            continue

        made_new_high = peak_ref > state.peak_price
        if made_new_high:
            state.peak_price = peak_ref
            state.peak_idx = i
            state.since_new_high = 0
        else:
            state.since_new_high += 1

        rise = state.peak_price - state.start_price
        position_ratio = (candle.close - state.start_price) / rise if rise > 0 else 1.0
        pullback = not made_new_high and rise > 0 and position_ratio < params.keep_ratio
        sideways = params.no_new_high_candles > 0 and state.since_new_high >= params.no_new_high_candles
        if not (pullback or sideways):
            continue

        emit(state, ongoing=False)

        # next wave starts at the lowest point between the old peak and here
        low_idx, low_price = i, start_ref
        for j in range(i, state.peak_idx - 1, -1):
            ref = _refs(candles[j], mode)[0]
            if ref <= low_price:
                low_idx, low_price = j, ref
        state.restart(low_idx, low_price, i, peak_ref)

    if state.start_price > 0:
        emit(state, ongoing=True)
    return waves
