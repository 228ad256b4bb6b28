"""
Rate-limited requester tests.

Only RATE_LIMIT and NETWORK failures are retried, every attempt is spaced by
the minimum delay, and the original exception surfaces unchanged.
"""

import pytest

from core.errors import ErrorInfo, ErrorType, HTTPFailure, IntegrationError, classify
from core.observability.metrics import MetricsCollector
from core.retry import RateLimitedRequester, RetryPolicy


def rate_limited(retry_after: int = 2) -> IntegrationError:
    return IntegrationError(classify(HTTPFailure(status=429, headers={"Retry-After": str(retry_after)}), "hubspot"))


def network_error() -> IntegrationError:
    return IntegrationError(ErrorInfo(
        type=ErrorType.NETWORK, message="reset", status_code=503, code="HUBSPOT_ECONNRESET",
    ))


class ScriptedCall:
    """Raises the scripted exceptions in order, then returns ``result``."""

    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


class TestRetryPolicy:

    def test_rate_limit_waits_retry_after(self):
        info = classify(HTTPFailure(status=429, headers={"Retry-After": "7"}))
        assert RetryPolicy().get_delay(1, info) == 7

    def test_network_backoff_is_linear_and_capped(self):
        policy = RetryPolicy(base_delay=1.0, max_network_delay=30)
        info = network_error().info
        assert policy.get_delay(1, info) == 1.0
        assert policy.get_delay(3, info) == 3.0
        assert policy.get_delay(100, info) == 30

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 500])
    def test_other_types_are_not_retried(self, status):
        assert RetryPolicy().get_delay(1, classify(HTTPFailure(status=status))) is None


class TestRateLimitedRequester:

    async def test_success_spaces_the_first_attempt(self, recorded_sleep):
        requester = RateLimitedRequester(RetryPolicy(min_delay=0.1), sleep=recorded_sleep)
        call = ScriptedCall([])

        assert await requester.execute(call) == "ok"
        assert call.calls == 1
        assert recorded_sleep.calls == [0.1]

    async def test_rate_limit_then_success(self, recorded_sleep):
        metrics = MetricsCollector()
        requester = RateLimitedRequester(
            RetryPolicy(min_delay=0.1), sleep=recorded_sleep, metrics=metrics, platform="hubspot",
        )
        call = ScriptedCall([rate_limited(2)])

        assert await requester.execute(call) == "ok"
        assert call.calls == 2
        assert recorded_sleep.calls == [0.1, 2.0, 0.1]
        assert metrics.get_summary()["requests"]["retries_by_type"] == {"hubspot.RATE_LIMIT": 1}

    async def test_network_errors_back_off_linearly(self, recorded_sleep):
        requester = RateLimitedRequester(RetryPolicy(min_delay=0, base_delay=1.0), sleep=recorded_sleep)
        call = ScriptedCall([network_error(), network_error()])

        assert await requester.execute(call) == "ok"
        assert [d for d in recorded_sleep.calls if d] == [1.0, 2.0]

    async def test_exhausted_retries_raise_the_same_exception(self, recorded_sleep):
        requester = RateLimitedRequester(RetryPolicy(max_retries=3, min_delay=0), sleep=recorded_sleep)
        failures = [network_error() for _ in range(5)]
        last = failures[3]
        call = ScriptedCall(failures)

        with pytest.raises(IntegrationError) as exc_info:
            await requester.execute(call)
        assert call.calls == 4
        assert exc_info.value is last

    async def test_authentication_is_not_retried(self, recorded_sleep):
        requester = RateLimitedRequester(RetryPolicy(min_delay=0), sleep=recorded_sleep)
        error = IntegrationError(classify(HTTPFailure(status=401), "hubspot"))
        call = ScriptedCall([error])

        with pytest.raises(IntegrationError) as exc_info:
            await requester.execute(call)
        assert exc_info.value is error
        assert call.calls == 1

    async def test_server_error_is_not_retried(self, recorded_sleep):
        requester = RateLimitedRequester(RetryPolicy(min_delay=0), sleep=recorded_sleep)
        call = ScriptedCall([IntegrationError(classify(HTTPFailure(status=503)))])

        with pytest.raises(IntegrationError):
            await requester.execute(call)
        assert call.calls == 1

    async def test_unclassified_exceptions_are_classified(self, recorded_sleep):
        requester = RateLimitedRequester(RetryPolicy(min_delay=0), sleep=recorded_sleep)
        call = ScriptedCall([ConnectionResetError()])

        assert await requester.execute(call) == "ok"
        assert call.calls == 2

    async def test_max_retries_override(self, recorded_sleep):
        requester = RateLimitedRequester(RetryPolicy(max_retries=3, min_delay=0), sleep=recorded_sleep)
        call = ScriptedCall([network_error() for _ in range(5)])

        with pytest.raises(IntegrationError):
            await requester.execute(call, max_retries=1)
        assert call.calls == 2
