from datetime import datetime

from sqlalchemy import BigInteger, Float, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class BasePrice(Base):
    __tablename__ = "base_price"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
