"""Per-provider admission control shared by every caller in the process."""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Union

from cutlist_intake.core.config import RateLimitSettings
from cutlist_intake.services.resilience.retry_policy import RetryPolicy
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class ProviderStats:
    """Live admission counters for one provider."""
    in_flight: int = 0
    waiting: int = 0
    peak_in_flight: int = 0
    completed: int = 0


class ProviderRateLimiter:
    """Semaphore admission plus retry for external provider calls.

    At most ``max_concurrent`` calls per provider are in flight; further
    callers wait for a slot instead of failing. The slot is held only for the
    duration of one attempt, so backoff sleeps between retries do not starve
    other callers.
    """

    def __init__(
        self,
        max_concurrent: Union[int, Dict[str, int]] = 4,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """Initialize the limiter.

        Args:
            max_concurrent: Slot count for every provider, or a mapping of
                provider name to slot count ("default" applies to the rest)
            retry_policy: Policy applied around each admitted call
        """
        if isinstance(max_concurrent, int):
            self._limits = {"default": max_concurrent}
        else:
            self._limits = dict(max_concurrent)
            self._limits.setdefault("default", 4)
        self.retry_policy = retry_policy or RetryPolicy()
        self._semaphores: Dict[str, asyncio.Semaphore] = {}
        self._stats: Dict[str, ProviderStats] = {}

    @classmethod
    def from_settings(cls, rate_limit: RateLimitSettings) -> "ProviderRateLimiter":
        return cls(
            max_concurrent=rate_limit.max_concurrent_per_provider,
            retry_policy=RetryPolicy.from_settings(rate_limit),
        )

    def limit_for(self, provider: str) -> int:
        return max(1, self._limits.get(provider, self._limits["default"]))

    def stats(self, provider: str) -> ProviderStats:
        return self._stats.setdefault(provider, ProviderStats())

    def _semaphore(self, provider: str) -> asyncio.Semaphore:
        semaphore = self._semaphores.get(provider)
        if semaphore is None:
            semaphore = asyncio.Semaphore(self.limit_for(provider))
            self._semaphores[provider] = semaphore
        return semaphore

    @asynccontextmanager
    async def slot(self, provider: str) -> AsyncIterator[None]:
        """Hold one admission slot for ``provider``."""
        semaphore = self._semaphore(provider)
        stats = self.stats(provider)

        stats.waiting += 1
        if semaphore.locked():
            LOGGER.debug(
                f"Waiting for {provider} slot",
                extra={"provider": provider, "in_flight": stats.in_flight, "waiting": stats.waiting},
            )
        try:
            await semaphore.acquire()
        finally:
            stats.waiting -= 1

        stats.in_flight += 1
        stats.peak_in_flight = max(stats.peak_in_flight, stats.in_flight)
        try:
            yield
        finally:
            stats.in_flight -= 1
            stats.completed += 1
            semaphore.release()

    async def run(
        self,
        provider: str,
        operation: Callable[[], Awaitable[Any]],
        description: Optional[str] = None,
    ) -> Any:
        """Run ``operation`` under admission control with retries.

        Args:
            provider: Provider name used as the admission key
            operation: Zero-argument coroutine factory
            description: Label for log messages

        Returns:
            Result of the operation
        """

        async def admitted() -> Any:
            async with self.slot(provider):
                return await operation()

        return await self.retry_policy.call(admitted, description or f"{provider} call")
