from __future__ import annotations

from pydantic import BaseModel


class BacktestParamsOut(BaseModel):
    entryHour: int
    entryMinute: int
    totalAmount: float
    amountPerCoin: float
    days: int
    rankingHours: int
    holdHours: int
    topN: int
    timezone: str


class BacktestSummaryOut(BaseModel):
    totalDays: int
    validDays: int
    totalTrades: int
    winTrades: int
    loseTrades: int
    winRate: float
    winDays: int
    loseDays: int
    dailyWinRate: float
    winMonths: int
    loseMonths: int
    monthlyWinRate: float
    totalProfit: float


class BacktestResponse(BaseModel):
    success: bool = True
    params: BacktestParamsOut
    summary: BacktestSummaryOut
    dailyResults: list[dict]
    monthlyResults: list[dict]
    skippedDays: list[str]
