"""Tests for the per-username failed-login limiter."""

import pytest

from contactdesk.service.errors import RateLimitedError


class TestLoginRateLimiter:
    async def test_blocks_once_cap_reached(self, rate_limiter):
        for expected in range(1, 5):
            await rate_limiter.check_allowed("admin")
            assert await rate_limiter.record_failure("admin") == expected
        await rate_limiter.check_allowed("admin")
        await rate_limiter.record_failure("admin")

        with pytest.raises(RateLimitedError) as excinfo:
            await rate_limiter.check_allowed("admin")
        assert excinfo.value.status_code == 429
        assert excinfo.value.detail["retry_after_seconds"] == 900

    async def test_check_does_not_increment(self, rate_limiter):
        for _ in range(10):
            await rate_limiter.check_allowed("admin")
        assert await rate_limiter.attempts("admin") == 0

    async def test_counter_is_per_username(self, rate_limiter):
        for _ in range(5):
            await rate_limiter.record_failure("admin")
        await rate_limiter.check_allowed("someone-else")

    async def test_window_elapse_resets_counter(self, rate_limiter, clock):
        for _ in range(5):
            await rate_limiter.record_failure("admin")
        clock.advance(899)
        with pytest.raises(RateLimitedError):
            await rate_limiter.check_allowed("admin")
        clock.advance(1)
        await rate_limiter.check_allowed("admin")
        assert await rate_limiter.attempts("admin") == 0

    async def test_each_failure_postpones_expiry(self, rate_limiter, clock):
        for _ in range(5):
            clock.advance(600)
            await rate_limiter.record_failure("admin")
        # Failures 600s apart never let the 900s window lapse
        assert await rate_limiter.attempts("admin") == 5

    async def test_clear_removes_counter(self, rate_limiter, store):
        await rate_limiter.record_failure("admin")
        await rate_limiter.clear("admin")
        assert await store.get("login_attempts:admin") is None

    async def test_corrupt_counter_counts_as_zero(self, rate_limiter, store):
        await store.set("login_attempts:admin", "not-a-number", 900)
        assert await rate_limiter.attempts("admin") == 0

    async def test_corrupt_counter_is_dropped_so_failures_count_again(
        self, rate_limiter, store
    ):
        await store.set("login_attempts:admin", "not-a-number", 900)
        await rate_limiter.check_allowed("admin")
        assert await store.get("login_attempts:admin") is None
        assert await rate_limiter.record_failure("admin") == 1
