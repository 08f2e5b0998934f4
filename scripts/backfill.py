#!/usr/bin/env python3
"""Offline data maintenance against the configured database.

Usage:
    python scripts/backfill.py backfill --days 7
    python scripts/backfill.py prices --days 60
    python scripts/backfill.py dedupe
    python scripts/backfill.py missing --days 3
    python scripts/backfill.py repair --days 7 --symbols BTCUSDT,ETHUSDT
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.config import GlobalConfig
from app.db.price_repo import SqlTimeSeriesStore
from app.db.session import IndexSessionLocal, engine_index
from app.exchange.binance_client import BinanceClient
from app.services.base_price_registry import BasePriceRegistry
from app.services.index_calculator import InvalidParameterError
from app.services.ingestion import IngestionPipeline
from app.services.rate_limiter import GlobalRateLimiter
from app.utils.logging import setup_logging
from app.utils.time_utils import DAY_MS, latest_closed_slot, now_ms


def _build_pipeline(settings: GlobalConfig) -> IngestionPipeline:
    store = SqlTimeSeriesStore(IndexSessionLocal)
    exchange = BinanceClient(
        settings.binance_api_key,
        settings.binance_api_secret,
        futures=settings.is_futures,
        quote_asset=settings.quote_asset,
        rate_limiter=GlobalRateLimiter(max_rate=settings.api_rate_limit),
        request_interval_ms=settings.request_interval_ms,
        rate_limit_cooldown_sec=settings.rate_limit_cooldown_sec,
    )
    return IngestionPipeline(store, exchange, BasePriceRegistry(store), settings=settings)


async def main(args: argparse.Namespace) -> int:
    settings = GlobalConfig()
    setup_logging(settings.log_level)
    pipeline = _build_pipeline(settings)

    try:
        if args.command == "backfill":
            result = await pipeline.backfill(days=args.days, concurrency=args.concurrency)
        elif args.command == "prices":
            result = await pipeline.backfill_prices_only(args.days)
        elif args.command == "dedupe":
            result = await pipeline.cleanup_duplicate_data()
        elif args.command == "missing":
            end = latest_closed_slot(now_ms())
            result = await pipeline.find_missing(end - args.days * DAY_MS, end)
        else:
            symbols = [s.strip().upper() for s in args.symbols.split(",") if s.strip()] if args.symbols else None
            result = await pipeline.repair_missing(days=args.days, symbols=symbols)
    except InvalidParameterError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await engine_index.dispose()

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Market index data maintenance")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("backfill", help="Two-phase history backfill plus index computation")
    p.add_argument("--days", type=int, default=None, help="History window (default: BACKFILL_DAYS)")
    p.add_argument("--concurrency", type=int, default=None, help="Symbols fetched in parallel")

    p = sub.add_parser("prices", help="Price history only, for backtests")
    p.add_argument("--days", type=int, default=30)

    sub.add_parser("dedupe", help="Remove duplicate price and index rows")

    p = sub.add_parser("missing", help="Report missing 5m slots per symbol")
    p.add_argument("--days", type=int, default=1)

    p = sub.add_parser("repair", help="Refetch missing 5m slots")
    p.add_argument("--days", type=int, default=7)
    p.add_argument("--symbols", default=None, help="Comma separated, default all active")

    sys.exit(asyncio.run(main(parser.parse_args())))
