"""Data maintenance endpoints: gap queries and repair, deletes, re-backfill."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from app.dependencies import (
    get_pipeline,
    get_scheduler,
    limiter,
    parse_time_param,
)
from app.schemas.index import MessageResponse
from app.services.collector_scheduler import CollectorScheduler
from app.services.index_calculator import InvalidParameterError
from app.services.ingestion import IngestionPipeline
from app.utils.logging import job_context
from app.utils.time_utils import DAY_MS, HOUR_MS, align5, ms_to_iso, now_ms

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/index", tags=["admin"])


@router.get("/status")
async def collector_status(scheduler: CollectorScheduler = Depends(get_scheduler)):
    return {"success": True, "data": scheduler.status()}


@router.delete("/data")
async def delete_data(
    start: str,
    end: str,
    timezone: str = "Asia/Shanghai",
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    start_ms = parse_time_param(start, timezone)
    end_ms = parse_time_param(end, timezone)
    if start_ms > end_ms:
        raise InvalidParameterError("start must not be after end")
    result = await pipeline.delete_data_in_range(start_ms, end_ms)
    return {
        "success": True,
        "message": "Data deleted",
        "inputTimezone": timezone,
        "inputStart": start,
        "inputEnd": end,
        "utcStart": ms_to_iso(start_ms),
        "utcEnd": ms_to_iso(end_ms),
        **result,
    }


@router.delete("/symbol/{symbol}")
async def delete_symbol(symbol: str, pipeline: IngestionPipeline = Depends(get_pipeline)):
    if not symbol.strip():
        raise InvalidParameterError("symbol must not be empty")
    result = await pipeline.delete_symbol_data(symbol.strip().upper())
    return {"message": "Symbol data deleted", **result}


@router.get("/missing")
async def missing_data(
    days: int = 7,
    start: str | None = None,
    end: str | None = None,
    timezone: str = "Asia/Shanghai",
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    if start and end:
        start_ms = parse_time_param(start, timezone)
        end_ms = parse_time_param(end, timezone)
    else:
        end_ms = align5(now_ms())
        start_ms = end_ms - days * DAY_MS
    result = await pipeline.find_missing(start_ms, end_ms)
    return {
        "success": True,
        "queryRange": {"startUtc": ms_to_iso(start_ms), "endUtc": ms_to_iso(end_ms), "days": days},
        **result,
    }


@router.post("/repair")
@limiter.limit("5/minute")
async def repair_data(
    request: Request,
    days: int = 7,
    start: str | None = None,
    end: str | None = None,
    symbols: str | None = None,
    timezone: str = "Asia/Shanghai",
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """Re-fetch missing 5m candles. ``symbols`` is a comma separated list; empty means all."""
    if not start and not 1 <= days <= 60:
        raise InvalidParameterError("days must be between 1 and 60")
    symbol_list = [s.strip().upper() for s in (symbols or "").split(",") if s.strip()] or None
    start_ms = parse_time_param(start, timezone) if start else None
    end_ms = parse_time_param(end, timezone) if end else None
    with job_context("repair"):
        return await pipeline.repair_missing(start_ms, end_ms, days, symbol_list)


@router.delete("/cleanup")
async def cleanup_data(
    days: int | None = None,
    hours: float | None = None,
    start: str | None = None,
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """Delete prices and index points from ``start`` (UTC), or the last ``hours`` / ``days``, up to now."""
    end_ms = now_ms()
    if start:
        start_ms = parse_time_param(start, "UTC")
    elif hours is not None and hours > 0:
        start_ms = end_ms - int(hours * HOUR_MS)
    elif days is not None and days > 0:
        start_ms = end_ms - days * DAY_MS
    else:
        raise InvalidParameterError("one of days, hours or start is required")
    return await pipeline.cleanup_data_in_range(start_ms, end_ms)


@router.post("/rebackfill", response_model=MessageResponse)
async def rebackfill(scheduler: CollectorScheduler = Depends(get_scheduler)):
    if not scheduler.rebackfill():
        return MessageResponse(success=False, message="A backfill is already running")
    return MessageResponse(success=True, message="Re-backfill started, follow the logs for progress")


@router.post("/backfill-prices")
@limiter.limit("2/minute")
async def backfill_prices(
    request: Request,
    days: int = 30,
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """Fill price history for backtests; base prices and index points are left alone."""
    with job_context("price-backfill"):
        return await pipeline.backfill_prices_only(days)
