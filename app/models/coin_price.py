from datetime import datetime

from sqlalchemy import BigInteger, Float, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class CoinPrice(Base):
    """One closed 5m candle per symbol. ``ts_ms`` is the candle open time."""

    __tablename__ = "coin_price"
    __table_args__ = (
        Index("idx_coin_price_symbol_ts", "symbol", "ts_ms", unique=True),
        Index("idx_coin_price_ts", "ts_ms"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String, nullable=False)
    ts_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    open: Mapped[float] = mapped_column(Float, nullable=False)
    high: Mapped[float] = mapped_column(Float, nullable=False)
    low: Mapped[float] = mapped_column(Float, nullable=False)
    close: Mapped[float] = mapped_column(Float, nullable=False)
    volume: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
