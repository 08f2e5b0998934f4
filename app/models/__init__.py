from app.models.base import Base
from app.models.base_price import BasePrice
from app.models.coin_price import CoinPrice
from app.models.market_index import MarketIndex
from app.models.records import BasePriceEntry, IndexPoint, PriceSample

__all__ = [
    "Base",
    "BasePrice",
    "CoinPrice",
    "MarketIndex",
    "BasePriceEntry",
    "IndexPoint",
    "PriceSample",
]
