from __future__ import annotations

from pydantic import BaseModel

from app.models.records import IndexPoint


class IndexPointOut(BaseModel):
    timestamp: int
    indexValue: float
    totalVolume: float
    coinCount: int
    upCount: int
    downCount: int
    adr: float

    @classmethod
    def from_point(cls, point: IndexPoint) -> "IndexPointOut":
        return cls(**point.to_dict())


class CurrentIndexResponse(BaseModel):
    success: bool
    data: IndexPointOut | None = None
    message: str | None = None


class IndexHistoryResponse(BaseModel):
    success: bool = True
    count: int
    data: list[IndexPointOut]


class MessageResponse(BaseModel):
    success: bool
    message: str
