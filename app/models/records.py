"""Plain value objects shared by the store, the exchange client and the analytics.

ORM rows are converted to these at the store boundary so services never hold
session-bound objects.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class PriceSample:
    symbol: str
    ts_ms: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True, slots=True)
class IndexPoint:
    ts_ms: int
    index_value: float
    total_volume: float
    coin_count: int
    up_count: int
    down_count: int
    adr: float

    def to_dict(self) -> dict:
        return {
            "timestamp": self.ts_ms,
            "indexValue": self.index_value,
            "totalVolume": self.total_volume,
            "coinCount": self.coin_count,
            "upCount": self.up_count,
            "downCount": self.down_count,
            "adr": self.adr,
        }


@dataclass(frozen=True, slots=True)
class BasePriceEntry:
    symbol: str
    price: float
    created_at: datetime | None = None
