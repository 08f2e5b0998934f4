from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from app.db.store import TimeSeriesStore
from app.utils.metrics import BASE_PRICES_TRACKED

logger = logging.getLogger(__name__)


class BasePriceRegistry:
    """Reference price per symbol, durable in the store and mirrored in memory.

    Reads are plain dict lookups. All mutation goes through ``load``,
    ``set_new`` and ``remove`` under one lock; the store write happens
    first so memory never claims a base price the store does not have.
    Existing base prices are never overwritten.
    """

    def __init__(self, store: TimeSeriesStore):
        self._store = store
        self._prices: dict[str, float] = {}
        self._created_at: datetime | None = None
        self._lock = asyncio.Lock()

    async def load(self) -> int:
        entries = await self._store.load_base_prices()
        async with self._lock:
            self._prices = {e.symbol: e.price for e in entries}
            self._created_at = entries[0].created_at if entries else None
            BASE_PRICES_TRACKED.set(len(self._prices))
        if entries:
            logger.info("Loaded %d base prices from store", len(entries))
        else:
            logger.info("No base prices stored yet; they will be seeded from history")
        return len(entries)

    def get(self, symbol: str) -> float | None:
        return self._prices.get(symbol)

    def snapshot(self) -> dict[str, float]:
        return dict(self._prices)

    def has_any(self) -> bool:
        return bool(self._prices)

    def symbols(self) -> set[str]:
        return set(self._prices)

    @property
    def created_at(self) -> datetime | None:
        return self._created_at

    def __len__(self) -> int:
        return len(self._prices)

    async def set_new(self, prices: dict[str, float]) -> dict[str, float]:
        """Register base prices for symbols that have none. Returns what was added."""
        async with self._lock:
            fresh = {s: p for s, p in prices.items() if p > 0 and self._prices.get(s, 0) <= 0}
            if not fresh:
                return {}
            await self._store.insert_base_prices(fresh)
            self._prices.update(fresh)
            if self._created_at is None:
                self._created_at = datetime.now()
            BASE_PRICES_TRACKED.set(len(self._prices))
        logger.info("Registered %d new base price(s)", len(fresh))
        return fresh

    async def remove(self, symbols: set[str] | list[str]) -> int:
        doomed = list(symbols)
        if not doomed:
            return 0
        async with self._lock:
            deleted = await self._store.delete_base_prices(doomed)
            for s in doomed:
                self._prices.pop(s, None)
            BASE_PRICES_TRACKED.set(len(self._prices))
        return deleted
