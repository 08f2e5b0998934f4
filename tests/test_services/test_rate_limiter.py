"""CircuitBreaker and GlobalRateLimiter."""
import pytest

from app.services.rate_limiter import CircuitBreaker, GlobalRateLimiter


@pytest.mark.unit
class TestCircuitBreaker:
    def test_opens_after_max_failures(self):
        cb = CircuitBreaker(max_failures=2)
        cb.record_failure("first")
        assert not cb.is_open
        cb.record_failure("second")
        assert cb.is_open
        assert cb.last_error == "second"
        assert cb.failures == 2

    def test_success_resets_streak(self):
        cb = CircuitBreaker(max_failures=2)
        cb.record_failure()
        cb.record_success()
        cb.record_failure()
        assert not cb.is_open

    def test_only_reset_closes(self):
        cb = CircuitBreaker(max_failures=1)
        cb.record_failure("boom")
        assert cb.is_open
        cb.reset()
        assert not cb.is_open
        assert cb.last_error is None


@pytest.mark.unit
class TestGlobalRateLimiter:
    async def test_acquire_within_budget(self):
        limiter = GlobalRateLimiter(max_rate=10, time_period=60)
        await limiter.acquire(5)
        await limiter.acquire()
        assert limiter.max_rate == 10
