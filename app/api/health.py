from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Request
from sqlalchemy import text

from app.db.session import engine_index
from app.utils.time_utils import FIVE_MIN_MS, ms_to_iso, now_ms

router = APIRouter(tags=["system"])
logger = logging.getLogger(__name__)

_start_time = time.monotonic()

# three missed 5-minute rounds
STALE_AFTER_MS = 3 * FIVE_MIN_MS


@router.get("/health")
async def health_check(request: Request):
    """Database reachability, collector state and age of the newest index point."""
    scheduler = getattr(request.app.state, "scheduler", None)
    store = getattr(request.app.state, "store", None)

    db_check = await _check_database()
    collector = scheduler.status() if scheduler is not None else {}
    index_check = await _check_index_age(store) if store is not None and db_check["status"] == "ok" else {}

    collecting = bool(collector) and collector.get("backfillComplete") and not collector.get("collectionPaused")

    overall = "healthy"
    alerts = []
    if db_check["status"] != "ok":
        overall = "unhealthy"
        alerts.append("database_unreachable")
    elif collector.get("collectionPaused"):
        overall = "degraded"
        alerts.append("collection_paused")
    elif collector and not collector.get("backfillComplete"):
        alerts.append("backfill_pending")
    elif collecting and index_check.get("stale"):
        overall = "degraded"
        alerts.append("index_stale")

    return {
        "status": overall,
        "version": "0.1.0",
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "checks": {
            "database": db_check,
            "collector": collector,
            "index": index_check,
        },
        "alerts": alerts,
    }


async def _check_database() -> dict:
    try:
        start = time.monotonic()
        async with engine_index.connect() as conn:
            await conn.execute(text("SELECT 1"))
        latency_ms = round((time.monotonic() - start) * 1000, 1)
        return {"status": "ok", "latency_ms": latency_ms}
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        return {"status": "error", "error": str(e)}


async def _check_index_age(store) -> dict:
    latest = await store.get_latest_index()
    if latest is None:
        return {"latest": None, "age_seconds": None, "stale": True}
    age_ms = now_ms() - latest.ts_ms
    return {
        "latest": ms_to_iso(latest.ts_ms),
        "age_seconds": round(age_ms / 1000),
        "stale": age_ms > STALE_AFTER_MS,
    }
