from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request

from app.dependencies import get_backtest_service, get_optimizer, get_range_cache, limiter
from app.schemas.backtest import BacktestParamsOut, BacktestResponse, BacktestSummaryOut
from app.schemas.index import MessageResponse
from app.services.backtest_simulator import BacktestParams, BacktestService
from app.services.optimizer import StrategyOptimizer, SweepSpec, parse_entry_hours, parse_hold_hours
from app.services.price_cache import PriceRangeCache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/index/backtest", tags=["backtest"])


@router.get("/short-top10", response_model=BacktestResponse)
@limiter.limit("30/minute")
async def short_top_n(
    request: Request,
    entryHour: int,
    totalAmount: float,
    entryMinute: int = 0,
    days: int = 30,
    rankingHours: int = 24,
    holdHours: int = 24,
    topN: int = 10,
    timezone: str = "Asia/Shanghai",
    svc: BacktestService = Depends(get_backtest_service),
):
    """Short the top N gainers every day at entryHour:entryMinute and close after holdHours."""
    params = BacktestParams(
        entry_hour=entryHour,
        entry_minute=entryMinute,
        total_amount=totalAmount,
        days=days,
        ranking_hours=rankingHours,
        hold_hours=holdHours,
        top_n=topN,
        timezone=timezone,
    )
    result = await svc.run(params)
    return BacktestResponse(
        params=BacktestParamsOut(
            entryHour=entryHour,
            entryMinute=entryMinute,
            totalAmount=totalAmount,
            amountPerCoin=params.amount_per_coin,
            days=days,
            rankingHours=rankingHours,
            holdHours=holdHours,
            topN=topN,
            timezone=timezone,
        ),
        summary=BacktestSummaryOut(**result.summary_dict()),
        dailyResults=[d.to_dict() for d in result.daily_results],
        monthlyResults=[m.to_dict() for m in result.monthly_results],
        skippedDays=result.skipped_days,
    )


def _sweep_spec(total_amount: float, days: int, entry_hours: str | None, hold_hours: str | None, timezone: str) -> SweepSpec:
    return SweepSpec(
        total_amount=total_amount,
        days=days,
        timezone=timezone,
        entry_hours=tuple(parse_entry_hours(entry_hours)),
        hold_hours=tuple(parse_hold_hours(hold_hours)),
    )


@router.get("/optimize")
@limiter.limit("5/minute")
async def optimize(
    request: Request,
    totalAmount: float = 1000,
    days: int = 30,
    entryHours: str | None = None,
    holdHours: str | None = None,
    timezone: str = "Asia/Shanghai",
    optimizer: StrategyOptimizer = Depends(get_optimizer),
):
    """Sweep ranking window x top N x entry hour x hold window, best total profit first."""
    return await optimizer.optimize(_sweep_spec(totalAmount, days, entryHours, holdHours, timezone))


@router.get("/optimize-daily")
@limiter.limit("5/minute")
async def optimize_daily(
    request: Request,
    totalAmount: float = 1000,
    days: int = 30,
    entryHours: str | None = None,
    holdHours: str | None = None,
    timezone: str = "Asia/Shanghai",
    page: int = Query(1, ge=1),
    pageSize: int = Query(10, ge=1, le=100),
    optimizer: StrategyOptimizer = Depends(get_optimizer),
):
    sweep = _sweep_spec(totalAmount, days, entryHours, holdHours, timezone)
    return await optimizer.optimize_daily(sweep, page, pageSize)


@router.post("/clear-cache", response_model=MessageResponse)
async def clear_cache(
    cache: PriceRangeCache = Depends(get_range_cache),
    svc: BacktestService = Depends(get_backtest_service),
):
    await cache.clear()
    svc.clear_cache()
    return MessageResponse(success=True, message="Price cache cleared")
