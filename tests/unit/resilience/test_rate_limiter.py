"""Unit tests for ProviderRateLimiter admission control."""

import asyncio

import pytest

from cutlist_intake.core.exceptions import ProviderServerError
from cutlist_intake.services.resilience.rate_limiter import ProviderRateLimiter
from cutlist_intake.services.resilience.retry_policy import RetryPolicy


async def no_sleep(_: float) -> None:
    return None


class TestProviderRateLimiter:
    """Per-provider concurrency limits."""

    @pytest.mark.asyncio
    async def test_at_most_k_calls_in_flight(self):
        limiter = ProviderRateLimiter(max_concurrent=2)
        in_flight = 0
        observed = []

        async def operation():
            nonlocal in_flight
            in_flight += 1
            observed.append(in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return "ok"

        results = await asyncio.gather(*(limiter.run("gemini", operation) for _ in range(10)))

        assert results == ["ok"] * 10
        assert max(observed) == 2
        stats = limiter.stats("gemini")
        assert stats.peak_in_flight == 2
        assert stats.completed == 10
        assert stats.in_flight == 0

    @pytest.mark.asyncio
    async def test_providers_do_not_share_slots(self):
        limiter = ProviderRateLimiter(max_concurrent={"gemini": 1, "openrouter": 1})

        async def operation():
            return "done"

        async with limiter.slot("gemini"):
            result = await asyncio.wait_for(limiter.run("openrouter", operation), timeout=1.0)

        assert result == "done"

    @pytest.mark.asyncio
    async def test_waiting_callers_are_admitted_not_rejected(self):
        limiter = ProviderRateLimiter(max_concurrent=1)
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return "slow"

        async def fast():
            return "fast"

        slow_task = asyncio.create_task(limiter.run("gemini", slow))
        await asyncio.sleep(0)
        fast_task = asyncio.create_task(limiter.run("gemini", fast))
        await asyncio.sleep(0.01)

        assert limiter.stats("gemini").waiting == 1
        release.set()
        assert await slow_task == "slow"
        assert await fast_task == "fast"

    @pytest.mark.asyncio
    async def test_slot_is_released_between_retries(self):
        limiter = ProviderRateLimiter(
            max_concurrent=1, retry_policy=RetryPolicy(max_attempts=3, jitter=0, sleep=no_sleep)
        )
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ProviderServerError("503")
            return "recovered"

        assert await limiter.run("gemini", flaky) == "recovered"
        assert calls == 3
        assert limiter.stats("gemini").in_flight == 0

    def test_limit_falls_back_to_default(self):
        limiter = ProviderRateLimiter(max_concurrent={"gemini": 6})

        assert limiter.limit_for("gemini") == 6
        assert limiter.limit_for("openrouter") == 4
