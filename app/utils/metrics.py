"""Prometheus metrics definitions for market-breadth-index."""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Ingestion
ROWS_INSERTED = Counter(
    "price_rows_inserted_total",
    "Price samples written to the store",
    ["source"],  # backfill/live/repair
)

INDEX_POINTS_WRITTEN = Counter(
    "index_points_written_total",
    "Market index points written to the store",
    ["source"],  # backfill/live/flush
)

EXCHANGE_REQUESTS = Counter(
    "exchange_requests_total",
    "Exchange REST calls",
    ["endpoint", "outcome"],  # outcome=ok/error/rate_limited
)

COLLECTION_FAILURES = Counter(
    "collection_failures_total",
    "Live collection rounds that failed and paused collection",
)

BACKFILL_PHASE_DURATION = Histogram(
    "backfill_phase_duration_seconds",
    "Wall time of one backfill phase",
    ["phase"],
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1800],
)

COLLECTION_PAUSED = Gauge(
    "collection_paused",
    "1 when live collection is halted after a failure",
)

BACKFILL_IN_PROGRESS = Gauge(
    "backfill_in_progress",
    "1 while a bulk backfill is running",
)

PENDING_QUEUE_SIZE = Gauge(
    "pending_queue_size",
    "Live samples buffered while backfill runs",
)

BASE_PRICES_TRACKED = Gauge(
    "base_prices_tracked",
    "Symbols with a base price in memory",
)

# Analytics
WAVE_DETECTION_DURATION = Histogram(
    "wave_detection_duration_seconds",
    "Uptrend wave detection over all symbols",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

OPTIMIZER_DURATION = Histogram(
    "optimizer_sweep_duration_seconds",
    "Full parameter sweep wall time",
    ["variant"],  # overall/daily
    buckets=[1, 5, 10, 30, 60, 120, 300],
)

CACHE_LOOKUPS = Counter(
    "cache_lookups_total",
    "Cache lookups by cache and result",
    ["cache", "result"],  # result=hit/miss
)
