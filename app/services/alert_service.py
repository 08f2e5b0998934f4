"""
Operator alerts over the Telegram bot API.

Three events reach the operator: live collection paused after a failed
round (always delivered), Binance rate limiting seen during a backfill,
and plain notifications such as "collection resumed". Everything except
the pause alert shares an hourly quota. The scheduler sends them
fire-and-forget, so a slow Telegram never delays a collection round.
"""
from __future__ import annotations

import logging
import time
import traceback
from collections import deque
from dataclasses import dataclass
from enum import StrEnum
from zoneinfo import ZoneInfo

import httpx

from app.config import GlobalConfig
from app.utils.time_utils import ms_to_iso, now_ms

logger = logging.getLogger(__name__)

_TRACE_FRAMES = 5


class AlertSeverity(StrEnum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    INFO = "INFO"


@dataclass(frozen=True)
class Alert:
    severity: AlertSeverity
    subject: str
    body: str = ""

    def render(self) -> str:
        head = f"[{self.severity.value}] {self.subject}"
        return f"{head}\n{self.body}" if self.body else head


def _exception_tail(exc: BaseException) -> list[str]:
    frames = traceback.extract_tb(exc.__traceback__)[-_TRACE_FRAMES:]
    lines = [f"  at {f.filename}:{f.lineno} in {f.name}" for f in frames]
    cause = exc.__cause__ or exc.__context__
    if cause is not None:
        lines.append(f"Caused by: {type(cause).__name__}: {cause}")
    return lines


class AlertService:
    TELEGRAM_API = "https://api.telegram.org/bot{token}/sendMessage"
    MAX_DELIVERY_FAILURES = 5

    def __init__(self, settings: GlobalConfig | None = None, clock=now_ms):
        self._settings = settings or GlobalConfig()
        self._clock = clock
        self._quota = self._settings.alert_rate_limit_per_hour
        self._sent_at: deque[float] = deque()
        self._delivery_failures = 0

    @property
    def configured(self) -> bool:
        return bool(self._settings.telegram_bot_token and self._settings.telegram_chat_id)

    @property
    def is_enabled(self) -> bool:
        """Configured and Telegram has not failed too often in a row."""
        return self.configured and self._delivery_failures < self.MAX_DELIVERY_FAILURES

    def _local_now(self) -> str:
        return ms_to_iso(self._clock(), ZoneInfo(self._settings.default_timezone))

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def send_collection_failure(self, error: str, exc: BaseException | None = None) -> bool:
        lines = [
            f"Time: {self._local_now()} ({self._settings.default_timezone})",
            f"Error: {error}",
        ]
        if exc is not None:
            lines.append(f"Type: {type(exc).__name__}")
            lines.extend(_exception_tail(exc))
        lines += [
            "",
            "Live collection is PAUSED. After fixing the cause, restart the",
            "service or POST /api/index/rebackfill.",
        ]
        return await self.deliver(Alert(AlertSeverity.CRITICAL, "Market index collection failed", "\n".join(lines)))

    async def send_rate_limited(self, detail: str) -> bool:
        body = "\n".join([
            f"Time: {self._local_now()} ({self._settings.default_timezone})",
            f"Detail: {detail}",
            "The server IP may be temporarily banned by Binance. Lower the request rate.",
        ])
        return await self.deliver(Alert(AlertSeverity.WARNING, "Binance rate limit hit", body))

    async def notify(self, subject: str, body: str = "") -> bool:
        return await self.deliver(Alert(AlertSeverity.INFO, subject, body))

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def deliver(self, alert: Alert) -> bool:
        """True if Telegram accepted the message. HTTP errors are logged, not raised."""
        if not self.is_enabled:
            logger.debug("Alerts disabled, dropping: %s", alert.subject)
            return False
        if alert.severity != AlertSeverity.CRITICAL and not self._within_quota():
            logger.info("Alert quota of %d/h used up, dropping: %s", self._quota, alert.subject)
            return False

        try:
            ok = await self._post(alert.render())
        except httpx.HTTPError as e:
            logger.warning("Alert delivery failed: %s", e)
            ok = False

        if ok:
            self._delivery_failures = 0
            self._sent_at.append(time.monotonic())
        else:
            self._delivery_failures += 1
            if self._delivery_failures == self.MAX_DELIVERY_FAILURES:
                logger.error("Telegram failed %d times in a row, alerts disabled until reset", self._delivery_failures)
        return ok

    async def _post(self, text: str) -> bool:
        url = self.TELEGRAM_API.format(token=self._settings.telegram_bot_token)
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.post(url, json={"chat_id": self._settings.telegram_chat_id, "text": text})
        if response.status_code != 200:
            logger.warning("Telegram API returned %d: %s", response.status_code, response.text[:100])
            return False
        return True

    def _within_quota(self) -> bool:
        cutoff = time.monotonic() - 3600
        while self._sent_at and self._sent_at[0] < cutoff:
            self._sent_at.popleft()
        return len(self._sent_at) < self._quota

    def reset(self) -> None:
        self._delivery_failures = 0
        logger.info("Alert delivery re-enabled")


_alert_service: AlertService | None = None


def get_alert_service() -> AlertService:
    global _alert_service
    if _alert_service is None:
        _alert_service = AlertService()
    return _alert_service
