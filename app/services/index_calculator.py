"""Breadth index math and dynamic-width bucketing.

Pure functions: no store or exchange access, safe to call from executor threads.
"""
from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from app.models.records import IndexPoint, PriceSample

T = TypeVar("T")

# (max range, bucket width) in percentage points
_BUCKET_LADDER = ((2.0, 0.2), (5.0, 0.5), (20.0, 1.0), (50.0, 2.0))
_WIDEST_BUCKET = 5.0
_EPS = 1e-9


class InvalidParameterError(ValueError):
    """Out-of-range analytics parameter; routers answer 400."""


def pct_change(price: float, base: float) -> float:
    return (price - base) / base * 100


def advance_decline_ratio(up_count: int, down_count: int) -> float:
    return up_count / down_count if down_count > 0 else float(up_count)


@dataclass
class IndexComputation:
    point: IndexPoint | None
    # symbols without a usable base price, with the close that should seed one
    missing_base: dict[str, float] = field(default_factory=dict)


def compute_index(ts_ms: int, samples: Iterable[PriceSample], base_prices: dict[str, float]) -> IndexComputation:
    """Equal-weighted mean % change of every sample against its symbol's base price.

    Symbols with no positive base price are left out of the average and
    reported in ``missing_base`` instead. ``point`` is None when no symbol
    qualified.
    """
    total_change = 0.0
    total_volume = 0.0
    valid = up = down = 0
    missing: dict[str, float] = {}

    for s in samples:
        base = base_prices.get(s.symbol)
        if base is None or base <= 0:
            if s.close > 0:
                missing[s.symbol] = s.close
            continue
        change = pct_change(s.close, base)
        if change > 0:
            up += 1
        elif change < 0:
            down += 1
        total_change += change
        total_volume += s.volume
        valid += 1

    if valid == 0:
        return IndexComputation(None, missing)

    point = IndexPoint(
        ts_ms=ts_ms,
        index_value=total_change / valid,
        total_volume=total_volume,
        coin_count=valid,
        up_count=up,
        down_count=down,
        adr=advance_decline_ratio(up, down),
    )
    return IndexComputation(point, missing)


def choose_bucket_size(min_value: float, max_value: float) -> float:
    spread = max_value - min_value
    for limit, size in _BUCKET_LADDER:
        if spread <= limit:
            return size
    return _WIDEST_BUCKET


def bucket_label(start: float, size: float) -> str:
    start = round(start, 6) + 0.0  # no "-0.0"
    end = round(start + size, 6) + 0.0
    if size < 1:
        return "%.1f%%~%.1f%%" % (start, end)
    return "%.0f%%~%.0f%%" % (start, end)


def bucketize(items: Sequence[T], value_of: Callable[[T], float]) -> tuple[float, list[tuple[str, list[T]]]]:
    """Split ``items`` into contiguous equal-width buckets covering their values.

    Returns the chosen width and ``[(label, members)]`` ordered low to high,
    empty buckets included. Every item lands in exactly one bucket; the
    top edge belongs to the last bucket.
    """
    if not items:
        return _WIDEST_BUCKET, []
    values = [value_of(i) for i in items]
    lo, hi = min(values), max(values)
    size = choose_bucket_size(lo, hi)
    bucket_min = math.floor(lo / size + _EPS) * size
    bucket_max = math.ceil(hi / size - _EPS) * size
    count = max(1, int(round((bucket_max - bucket_min) / size)))

    members: list[list[T]] = [[] for _ in range(count)]
    for item, value in zip(items, values):
        idx = int(math.floor((value - bucket_min) / size + _EPS))
        members[min(max(idx, 0), count - 1)].append(item)

    return size, [(bucket_label(bucket_min + i * size, size), members[i]) for i in range(count)]
