from datetime import datetime

from sqlalchemy import BigInteger, Float, Index, Integer, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class MarketIndex(Base):
    __tablename__ = "market_index"
    __table_args__ = (
        Index("idx_market_index_ts", "ts_ms", unique=True),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    ts_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    index_value: Mapped[float] = mapped_column(Float, nullable=False)
    total_volume: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    coin_count: Mapped[int] = mapped_column(Integer, nullable=False)
    up_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    down_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    adr: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
