"""Retry with exponential backoff for transient provider failures."""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from cutlist_intake.core.config import RateLimitSettings
from cutlist_intake.core.exceptions import (
    APIClientError,
    RateLimitExceededError,
    TransientAPIError,
)
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class RetryPolicy:
    """Retries a coroutine on transient errors only.

    Deterministic failures (bad request, auth, configuration) are raised on
    the first occurrence. Delays grow as ``base_delay * 2**attempt``, capped at
    ``max_delay``, plus up to ``jitter`` of random extra time. An explicit
    ``retry_after`` from a rate-limit response takes precedence.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: float = 0.3,
        retry_on: Tuple[Type[BaseException], ...] = (TransientAPIError,),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.retry_on = retry_on
        self._sleep = sleep

    @classmethod
    def from_settings(cls, rate_limit: RateLimitSettings) -> "RetryPolicy":
        return cls(
            max_attempts=rate_limit.max_attempts,
            base_delay=rate_limit.base_delay,
            max_delay=rate_limit.max_delay,
            jitter=rate_limit.jitter,
        )

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)

    def delay_for(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """Seconds to wait after the given (0-based) failed attempt."""
        if isinstance(error, RateLimitExceededError) and error.retry_after:
            return min(float(error.retry_after), self.max_delay)
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        return delay + delay * random.uniform(0, self.jitter)

    async def call(
        self,
        operation: Callable[[], Awaitable[Any]],
        description: str = "provider call",
    ) -> Any:
        """Run ``operation`` until it succeeds or retries are exhausted.

        Args:
            operation: Zero-argument coroutine factory, invoked once per attempt
            description: Label used in log messages

        Returns:
            Whatever the operation returns

        Raises:
            APIClientError: The last transient error once retries run out, or
                any non-retryable error immediately
        """
        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except Exception as e:
                if not self.is_retryable(e):
                    raise
                if attempt >= self.max_attempts - 1:
                    LOGGER.error(
                        f"{description} failed after {self.max_attempts} attempts",
                        extra={"error": str(e), "error_type": type(e).__name__},
                    )
                    raise
                wait = self.delay_for(attempt, e)
                LOGGER.warning(
                    f"{description} failed (Attempt {attempt + 1}/{self.max_attempts}), retrying",
                    extra={"error": str(e), "error_type": type(e).__name__, "delay_s": round(wait, 2)},
                )
                await self._sleep(wait)

        raise APIClientError(f"{description} failed after {self.max_attempts} attempts")
