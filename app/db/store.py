from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from app.models.records import BasePriceEntry, IndexPoint, PriceSample


class TimeSeriesStore(ABC):
    """Durable price / index / base-price storage used by the pipeline and analytics.

    All timestamps are UTC epoch milliseconds on the 5-minute grid; ranges are
    inclusive on both ends.
    """

    # ------------------------------------------------------------------
    # Price samples
    # ------------------------------------------------------------------

    @abstractmethod
    async def insert_prices(self, samples: list[PriceSample]) -> int:
        """Batch insert, skipping (symbol, ts) pairs that already exist. Returns rows written."""

    @abstractmethod
    async def get_prices_at(self, ts_ms: int) -> list[PriceSample]: ...

    @abstractmethod
    async def get_prices_at_times(self, ts_list: Iterable[int]) -> list[PriceSample]: ...

    @abstractmethod
    async def get_prices_between(self, start_ms: int, end_ms: int) -> list[PriceSample]: ...

    @abstractmethod
    async def get_symbol_prices(self, symbol: str, start_ms: int, end_ms: int) -> list[PriceSample]:
        """One symbol's samples ordered by time."""

    @abstractmethod
    async def get_distinct_timestamps(self, start_ms: int, end_ms: int) -> list[int]:
        """Sorted distinct sample timestamps in range."""

    @abstractmethod
    async def get_distinct_symbols(self, start_ms: int, end_ms: int) -> list[str]: ...

    @abstractmethod
    async def get_existing_pairs(
        self, start_ms: int, end_ms: int, symbols: Iterable[str] | None = None
    ) -> dict[str, set[int]]:
        """symbol -> set of timestamps present in range."""

    @abstractmethod
    async def get_latest_price_ts(self) -> int | None: ...

    @abstractmethod
    async def get_earliest_price_ts_at_or_after(self, ts_ms: int) -> int | None: ...

    @abstractmethod
    async def get_latest_price_ts_at_or_before(self, ts_ms: int) -> int | None: ...

    @abstractmethod
    async def get_price_extremes(self, start_ms: int, end_ms: int) -> dict[str, tuple[float, float]]:
        """symbol -> (highest high, lowest low) in range."""

    @abstractmethod
    async def delete_prices_between(self, start_ms: int, end_ms: int) -> int: ...

    @abstractmethod
    async def delete_symbol_prices(self, symbol: str) -> int: ...

    @abstractmethod
    async def delete_duplicate_prices(self) -> int:
        """Remove rows sharing (symbol, ts) with a lower-id row."""

    # ------------------------------------------------------------------
    # Index points
    # ------------------------------------------------------------------

    @abstractmethod
    async def index_exists(self, ts_ms: int) -> bool: ...

    @abstractmethod
    async def get_index_timestamps(self, start_ms: int, end_ms: int) -> set[int]: ...

    @abstractmethod
    async def save_index(self, point: IndexPoint) -> bool:
        """Insert one point; False when the timestamp already has one."""

    @abstractmethod
    async def save_indexes(self, points: list[IndexPoint]) -> int: ...

    @abstractmethod
    async def get_latest_index(self) -> IndexPoint | None: ...

    @abstractmethod
    async def get_index_history(self, start_ms: int) -> list[IndexPoint]:
        """Points with ts >= start_ms ordered by time."""

    @abstractmethod
    async def count_indexes_between(self, start_ms: int, end_ms: int) -> int: ...

    @abstractmethod
    async def delete_indexes_between(self, start_ms: int, end_ms: int) -> int: ...

    @abstractmethod
    async def delete_duplicate_indexes(self) -> int: ...

    # ------------------------------------------------------------------
    # Base prices
    # ------------------------------------------------------------------

    @abstractmethod
    async def load_base_prices(self) -> list[BasePriceEntry]: ...

    @abstractmethod
    async def insert_base_prices(self, prices: dict[str, float]) -> int:
        """Insert new base prices; existing symbols are left untouched."""

    @abstractmethod
    async def delete_base_prices(self, symbols: Iterable[str]) -> int: ...
