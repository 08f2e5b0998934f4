"""
CollectorScheduler: startup backfill plus the 5-minute live collection loop.

Startup: duplicate cleanup -> two-phase backfill -> flush of rounds that
were buffered meanwhile. Live rounds fire ``collect_offset_sec`` into
every 5-minute slot. A failed live round pauses collection (fail closed)
until an operator re-backfill succeeds.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from app.config import GlobalConfig
from app.services.alert_service import AlertService
from app.services.ingestion import IngestionPipeline
from app.services.rate_limiter import CircuitBreaker
from app.utils.logging import job_context
from app.utils.metrics import COLLECTION_FAILURES, COLLECTION_PAUSED
from app.utils.time_utils import FIVE_MIN_MS, align5, ms_to_iso, now_ms

logger = logging.getLogger(__name__)


class CollectorScheduler:
    def __init__(
        self,
        pipeline: IngestionPipeline,
        alerts: AlertService,
        settings: GlobalConfig | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._pipeline = pipeline
        self._alerts = alerts
        self._settings = settings or GlobalConfig()
        self._clock = clock
        self._breaker = CircuitBreaker(max_failures=1, name="live-collection")
        self._backfill_complete = False
        self._backfill_task: asyncio.Task | None = None
        self._loop_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._last_round_ts: int | None = None

    @property
    def paused(self) -> bool:
        return self._breaker.is_open

    @property
    def backfill_complete(self) -> bool:
        return self._backfill_complete

    @property
    def backfill_running(self) -> bool:
        return self._backfill_task is not None and not self._backfill_task.done()

    def start(self) -> None:
        self._backfill_task = asyncio.create_task(self.run_backfill())
        if self._settings.collector_enabled:
            self._loop_task = asyncio.create_task(self.run_loop())
        else:
            logger.warning("Live collection disabled by configuration")

    async def stop(self) -> None:
        tasks = [t for t in (self._backfill_task, self._loop_task, *self._background) if t is not None]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pipeline.set_backfill_in_progress(False)

    # ------------------------------------------------------------------
    # Backfill
    # ------------------------------------------------------------------

    async def run_backfill(self, reset_pause: bool = False) -> bool:
        """Cleanup, backfill and flush. True on success."""
        with job_context("backfill"):
            self._backfill_complete = False
            try:
                await self._pipeline.cleanup_duplicate_data()
                self._pipeline.set_backfill_in_progress(True)
                summary = await self._pipeline.backfill(
                    self._settings.backfill_days, self._settings.backfill_concurrency
                )
                self._pipeline.set_backfill_in_progress(False)
                await self._pipeline.flush_pending_data()
            except asyncio.CancelledError:
                self._pipeline.set_backfill_in_progress(False)
                raise
            except Exception:
                logger.exception("Backfill failed, live collection stays off")
                self._pipeline.set_backfill_in_progress(False)
                return False

            rate_limited = sum(p.get("rateLimited", 0) for p in summary.get("phases", []))
            if rate_limited:
                self._fire(self._alerts.send_rate_limited(f"{rate_limited} symbol(s) skipped during backfill"))

            if reset_pause:
                self._breaker.reset()
                COLLECTION_PAUSED.set(0)
            self._backfill_complete = True
            logger.info("Backfill complete, live collection active")
            return True

    def rebackfill(self) -> bool:
        """Start a re-backfill in the background. False when one is already running."""
        if self.backfill_running:
            logger.warning("Re-backfill requested while a backfill is running")
            return False
        logger.info("Re-backfill requested")
        self._backfill_complete = False
        self._backfill_task = asyncio.create_task(self._rebackfill())
        return True

    async def _rebackfill(self) -> None:
        ok = await self.run_backfill(reset_pause=True)
        if ok:
            self._fire(self._alerts.notify("Re-backfill finished", "Live collection resumed."))
        else:
            logger.error("Re-backfill failed, collection remains paused")

    # ------------------------------------------------------------------
    # Live collection
    # ------------------------------------------------------------------

    def seconds_until_next_round(self) -> float:
        now = self._clock()
        target = align5(now) + self._settings.collect_offset_sec * 1000
        if target <= now:
            target += FIVE_MIN_MS
        return (target - now) / 1000

    async def collect_once(self) -> None:
        if self._breaker.is_open:
            logger.warning(
                "Live collection paused after failure (%s); POST /api/index/rebackfill to resume",
                self._breaker.last_error,
            )
            return

        if self._pipeline.backfill_in_progress:
            with job_context("buffer"):
                try:
                    await self._pipeline.collect_and_buffer()
                except Exception:
                    logger.exception("Buffering live round failed")
            return

        if not self._backfill_complete:
            logger.debug("Backfill not complete, skipping live round")
            return

        with job_context("collect"):
            try:
                point = await self._pipeline.calculate_and_save_current_index()
            except Exception as e:
                logger.exception("Live collection failed, pausing further rounds")
                self._breaker.record_failure(str(e))
                COLLECTION_FAILURES.inc()
                COLLECTION_PAUSED.set(1)
                self._fire(self._alerts.send_collection_failure(str(e), e))
                return
            self._breaker.record_success()
            if point is not None:
                self._last_round_ts = point.ts_ms

    async def run_loop(self) -> None:
        logger.info("Live collection loop started (offset %ds)", self._settings.collect_offset_sec)
        while True:
            try:
                await asyncio.sleep(self.seconds_until_next_round())
                await self.collect_once()
            except asyncio.CancelledError:
                logger.info("Live collection loop stopped")
                return
            except Exception:
                logger.exception("Live collection loop error")

    def _fire(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def status(self) -> dict:
        return {
            "backfillComplete": self._backfill_complete,
            "backfillInProgress": self._pipeline.backfill_in_progress,
            "collectionPaused": self._breaker.is_open,
            "lastError": self._breaker.last_error,
            "pendingRounds": self._pipeline.pending_count,
            "basePriceCount": len(self._pipeline.registry),
            "lastIndexTime": ms_to_iso(self._last_round_ts) if self._last_round_ts else None,
            "collectorEnabled": self._settings.collector_enabled,
        }
