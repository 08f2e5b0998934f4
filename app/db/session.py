import logging
import time

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import GlobalConfig

settings = GlobalConfig()
_slow_query_logger = logging.getLogger("db.slow_query")

engine_index = create_async_engine(
    settings.database_url or "postgresql+asyncpg://localhost/market_index",
    # backfill workers each hold a session while API reads continue
    pool_size=max(10, settings.backfill_concurrency * 2),
    max_overflow=10,
    pool_pre_ping=True,
    echo=settings.debug,
)

IndexSessionLocal = async_sessionmaker(
    engine_index, class_=AsyncSession, expire_on_commit=False
)


# Slow query detection
@event.listens_for(engine_index.sync_engine, "before_cursor_execute")
def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info["query_start_time"] = time.monotonic()


@event.listens_for(engine_index.sync_engine, "after_cursor_execute")
def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    elapsed = time.monotonic() - conn.info.get("query_start_time", 0)
    if elapsed > settings.slow_query_threshold_ms / 1000.0:
        _slow_query_logger.warning(
            "SLOW_QUERY duration_ms=%.1f query=%s",
            elapsed * 1000,
            statement[:200],
        )

