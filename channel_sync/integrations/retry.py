"""
Bounded retry policy applied to every provider network call.

Only retryable failures (TransientPlatformError by default: network errors,
timeouts, 429 and 5xx) are retried. AuthExpiredError, ListingNotFoundError and
PlatformAPIError propagate on the first attempt.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from channel_sync.core.exceptions import TransientPlatformError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    timeout: Optional[float] = None  # per attempt
    retry_on: Tuple[Type[BaseException], ...] = field(default=(TransientPlatformError,))

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.SYNC_RETRY_MAX_ATTEMPTS,
            base_delay=settings.SYNC_RETRY_BASE_DELAY,
            max_delay=settings.SYNC_RETRY_MAX_DELAY,
            timeout=settings.SYNC_REQUEST_TIMEOUT_SECONDS,
        )

    def is_retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, self.retry_on)

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""
        return min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                if self.timeout:
                    return await asyncio.wait_for(func(*args, **kwargs), timeout=self.timeout)
                return await func(*args, **kwargs)
            except asyncio.TimeoutError as e:
                error: BaseException = TransientPlatformError(f"Request timed out after {self.timeout}s")
                error.__cause__ = e
            except Exception as e:
                error = e

            if not self.is_retryable(error) or attempt >= self.max_attempts:
                raise error

            delay = self.delay_for(attempt)
            logger.warning(f"Attempt {attempt}/{self.max_attempts} failed ({error}); retrying in {delay:.1f}s")
            if delay > 0:
                await asyncio.sleep(delay)
