from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request

from app.dependencies import (
    get_index_service,
    get_uptrend_service,
    limiter,
    parse_time_param,
)
from app.schemas.index import CurrentIndexResponse, IndexHistoryResponse, IndexPointOut
from app.services.index_service import IndexService
from app.services.uptrend_service import UptrendService
from app.services.wave_detector import WaveParams
from app.utils.time_utils import ms_to_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/index", tags=["index"])


@router.get("/current", response_model=CurrentIndexResponse)
async def current_index(svc: IndexService = Depends(get_index_service)):
    point = await svc.current()
    if point is None:
        return CurrentIndexResponse(success=False, message="No data yet")
    return CurrentIndexResponse(success=True, data=IndexPointOut.from_point(point))


@router.get("/history", response_model=IndexHistoryResponse)
async def index_history(
    hours: int = Query(168, gt=0),
    svc: IndexService = Depends(get_index_service),
):
    points = await svc.history(hours)
    return IndexHistoryResponse(count=len(points), data=[IndexPointOut.from_point(p) for p in points])


@router.get("/stats")
async def index_stats(svc: IndexService = Depends(get_index_service)):
    return {"success": True, "stats": await svc.stats()}


@router.get("/distribution")
async def distribution(
    hours: float = 168,
    start: str | None = None,
    end: str | None = None,
    timezone: str = "Asia/Shanghai",
    svc: IndexService = Depends(get_index_service),
):
    """Change distribution since ``hours`` ago, or between ``start`` and ``end`` (local to ``timezone``)."""
    if start and end:
        start_ms = parse_time_param(start, timezone)
        end_ms = parse_time_param(end, timezone)
        data = await svc.distribution_for_range(start_ms, end_ms)
        if data is None:
            return {"success": False, "message": "No price data in the requested range"}
        return {
            "success": True,
            "mode": "timeRange",
            "inputTimezone": timezone,
            "inputStart": start,
            "inputEnd": end,
            "utcStart": ms_to_iso(start_ms),
            "utcEnd": ms_to_iso(end_ms),
            "data": data,
        }

    data = await svc.distribution_for_hours(hours)
    if data is None:
        return {"success": False, "message": "Distribution unavailable, no price data"}
    return {"success": True, "mode": "hours", "hours": hours, "data": data}


@router.get("/uptrend-distribution")
@limiter.limit("10/minute")
async def uptrend_distribution(
    request: Request,
    hours: float = 168,
    keepRatio: float = 0.75,
    noNewHighCandles: int = 6,
    minUptrend: float = 4.0,
    priceMode: str = "lowHigh",
    start: str | None = None,
    end: str | None = None,
    timezone: str = "Asia/Shanghai",
    svc: UptrendService = Depends(get_uptrend_service),
):
    """Uptrend waves bucketed by size. One computation at a time; overlapping calls get 503."""
    params = WaveParams(
        keep_ratio=keepRatio,
        no_new_high_candles=noNewHighCandles,
        min_uptrend=minUptrend,
        price_mode=priceMode,
    )
    echo = {
        "keepRatio": keepRatio,
        "noNewHighCandles": noNewHighCandles,
        "minUptrend": minUptrend,
        "priceMode": params.price_mode.value,
    }

    if start and end:
        start_ms = parse_time_param(start, timezone)
        end_ms = parse_time_param(end, timezone)
        data = await svc.summary_for_range(start_ms, end_ms, params)
        if data is None:
            return {"success": False, "message": "No qualifying waves in the requested range"}
        return {
            "success": True,
            "mode": "timeRange",
            **echo,
            "inputTimezone": timezone,
            "inputStart": start,
            "inputEnd": end,
            "data": data,
        }

    data = await svc.summary_for_hours(hours, params)
    if data is None:
        return {"success": False, "message": "No qualifying waves"}
    return {"success": True, "mode": "hours", "hours": hours, **echo, "data": data}


@router.get("/debug/prices")
async def debug_prices(
    symbol: str,
    hours: int = Query(1, gt=0),
    svc: IndexService = Depends(get_index_service),
):
    return await svc.symbol_prices(symbol.upper(), hours)


@router.get("/debug/basePrices")
async def debug_base_prices(svc: IndexService = Depends(get_index_service)):
    return await svc.base_prices()


@router.get("/debug/verify")
async def debug_verify(svc: IndexService = Depends(get_index_service)):
    return await svc.verify()
