from __future__ import annotations
import logging
from aiolimiter import AsyncLimiter

logger = logging.getLogger(__name__)


class GlobalRateLimiter:
    """
    Shared Binance request-weight limiter.
    Binance allows 1200 (spot) / 2400 (futures) weight per minute per IP;
    the default 1000 leaves headroom for other clients on the same host.
    """

    def __init__(self, max_rate: int = 1000, time_period: float = 60.0):
        self._limiter = AsyncLimiter(max_rate=max_rate, time_period=time_period)
        self._max_rate = max_rate

    async def acquire(self, weight: int = 1):
        """Reserve ``weight`` units of request capacity, waiting if the bucket is empty."""
        for _ in range(weight):
            await self._limiter.acquire()

    @property
    def max_rate(self) -> int:
        return self._max_rate


class CircuitBreaker:
    """
    Consecutive-failure switch.
    - CLOSED: work proceeds
    - OPEN: max_failures consecutive failures recorded
    - Only an explicit reset() closes it again
    """

    def __init__(self, max_failures: int = 5, name: str = "default"):
        self._max_failures = max_failures
        self._name = name
        self._consecutive_failures = 0
        self.last_error: str | None = None

    def record_success(self):
        self._consecutive_failures = 0

    def record_failure(self, error: str | None = None):
        self._consecutive_failures += 1
        self.last_error = error
        if self._consecutive_failures == self._max_failures:
            logger.warning("Circuit breaker %s opened after %d failure(s)", self._name, self._max_failures)

    @property
    def is_open(self) -> bool:
        return self._consecutive_failures >= self._max_failures

    @property
    def failures(self) -> int:
        return self._consecutive_failures

    def reset(self):
        self._consecutive_failures = 0
        self.last_error = None
