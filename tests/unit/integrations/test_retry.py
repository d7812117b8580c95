# tests/unit/integrations/test_retry.py
import asyncio

import pytest

from channel_sync.core.exceptions import AuthExpiredError, PlatformAPIError, TransientPlatformError
from channel_sync.integrations.retry import RetryPolicy


class Flaky:
    def __init__(self, failures, error_factory=lambda: TransientPlatformError("busy")):
        self.failures = failures
        self.error_factory = error_factory
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error_factory()
        return "ok"


async def test_retries_transient_errors_until_success(no_delay_retry):
    func = Flaky(failures=2)
    assert await no_delay_retry.call(func) == "ok"
    assert func.calls == 3


async def test_gives_up_after_max_attempts(no_delay_retry):
    func = Flaky(failures=5)
    with pytest.raises(TransientPlatformError):
        await no_delay_retry.call(func)
    assert func.calls == 3


@pytest.mark.parametrize("error", [AuthExpiredError("401"), PlatformAPIError("400")])
async def test_non_retryable_errors_propagate_immediately(no_delay_retry, error):
    func = Flaky(failures=1, error_factory=lambda: error)
    with pytest.raises(type(error)):
        await no_delay_retry.call(func)
    assert func.calls == 1


async def test_per_attempt_timeout_is_transient():
    policy = RetryPolicy(max_attempts=2, base_delay=0, timeout=0.01)
    calls = []

    async def slow():
        calls.append(1)
        await asyncio.sleep(1)

    with pytest.raises(TransientPlatformError, match="timed out"):
        await policy.call(slow)
    assert len(calls) == 2


def test_backoff_is_capped():
    policy = RetryPolicy(base_delay=1, max_delay=5, multiplier=2)
    assert [policy.delay_for(n) for n in range(1, 6)] == [1, 2, 4, 5, 5]


def test_from_settings(settings):
    policy = RetryPolicy.from_settings(settings)
    assert policy.max_attempts == settings.SYNC_RETRY_MAX_ATTEMPTS
    assert policy.timeout == settings.SYNC_REQUEST_TIMEOUT_SECONDS
