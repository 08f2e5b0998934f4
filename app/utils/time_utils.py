"""Epoch-millisecond helpers for the 5-minute grid and user-supplied times."""
from __future__ import annotations

import time
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

FIVE_MIN_MS = 5 * 60 * 1000
HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

_INPUT_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%d",
)


def now_ms() -> int:
    return int(time.time() * 1000)


def align5(ts_ms: int) -> int:
    """Floor to the 5-minute grid."""
    return ts_ms - ts_ms % FIVE_MIN_MS


def align5_ceil(ts_ms: int) -> int:
    floored = align5(ts_ms)
    return floored if floored == ts_ms else floored + FIVE_MIN_MS


def latest_closed_slot(ts_ms: int) -> int:
    """Open time of the newest fully closed 5m candle at ``ts_ms``."""
    return align5(ts_ms) - FIVE_MIN_MS


def day_floor(ts_ms: int) -> int:
    """Start of the UTC day containing ``ts_ms``."""
    return ts_ms - ts_ms % DAY_MS


def day_ceil(ts_ms: int) -> int:
    """Last millisecond of the UTC day containing ``ts_ms``."""
    return day_floor(ts_ms) + DAY_MS - 1


def grid(start_ms: int, end_ms: int) -> list[int]:
    """Every 5-minute timestamp in [align5_ceil(start), end]."""
    return list(range(align5_ceil(start_ms), end_ms + 1, FIVE_MIN_MS))


def local_to_ms(day: date, hour: int, minute: int, tz: ZoneInfo) -> int:
    return int(datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz).timestamp() * 1000)


def ms_to_iso(ts_ms: int, tz: ZoneInfo | None = None) -> str:
    dt = datetime.fromtimestamp(ts_ms / 1000, tz=UTC)
    if tz is not None:
        dt = dt.astimezone(tz)
    return dt.replace(tzinfo=None).isoformat()


def parse_user_time(value: str, tz_name: str) -> int:
    """Parse a user time string in ``tz_name`` (or an epoch-ms integer) to UTC epoch ms.

    Raises ValueError for unrecognised input.
    """
    raw = value.strip()
    if raw.isdigit():
        return int(raw)
    tz = ZoneInfo(tz_name)
    for fmt in _INPUT_FORMATS:
        try:
            parsed = datetime.strptime(raw, fmt)
        except ValueError:
            continue
        return int(parsed.replace(tzinfo=tz).timestamp() * 1000)
    raise ValueError(f"Unrecognised time format: {value!r}")


def today_in(tz: ZoneInfo, ts_ms: int | None = None) -> date:
    ref = ts_ms if ts_ms is not None else now_ms()
    return datetime.fromtimestamp(ref / 1000, tz=tz).date()


def days_back(end_day: date, days: int) -> list[date]:
    """``days`` consecutive dates ending at ``end_day`` (oldest first)."""
    start = end_day - timedelta(days=days - 1)
    return [start + timedelta(days=i) for i in range(days)]
