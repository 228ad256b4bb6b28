"""Rate-limited, retrying execution of outbound calls.

The retry policy is plain data; RateLimitedRequester applies it to any
zero-argument coroutine factory. Every failure is classified, and only
RATE_LIMIT and NETWORK failures are retried.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, FrozenSet, Optional, TypeVar

from core.errors import ErrorInfo, ErrorType, classify
from core.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""
    max_retries: int = 3
    min_delay: float = 0.1  # seconds, before every attempt
    base_delay: float = 1.0  # seconds, multiplied by attempt for network errors
    max_network_delay: float = 30.0  # seconds
    retriable_types: FrozenSet[ErrorType] = field(
        default_factory=lambda: frozenset({ErrorType.RATE_LIMIT, ErrorType.NETWORK})
    )

    def get_delay(self, attempt: int, info: ErrorInfo) -> Optional[float]:
        """Delay before retrying after ``attempt`` failed, or None if not retriable.

        Rate limits wait exactly what the server asked for. Network errors
        back off linearly, capped at max_network_delay.
        """
        if info.type not in self.retriable_types:
            return None
        if info.type == ErrorType.RATE_LIMIT:
            return float(info.retry_after if info.retry_after is not None else 60)
        if info.type == ErrorType.NETWORK:
            return min(attempt * self.base_delay, self.max_network_delay)
        return self.base_delay


class RateLimitedRequester:
    """Wraps outbound calls with a minimum spacing and bounded retries.

    Usage:
        requester = RateLimitedRequester(RetryPolicy(), platform="hubspot")
        data = await requester.execute(lambda: client.get("/crm/v3/objects/contacts"))
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics=None,
        platform: Optional[str] = None,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._metrics = metrics
        self.platform = platform

    async def execute(
        self,
        request_fn: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
    ) -> T:
        """Run ``request_fn`` until it succeeds or retries are exhausted.

        Args:
            request_fn: Zero-argument callable returning a fresh awaitable per attempt
            max_retries: Override of the policy's retry count

        Returns:
            Whatever ``request_fn`` resolves to

        Raises:
            The last exception raised by ``request_fn``, unchanged
        """
        retries = self.policy.max_retries if max_retries is None else max(0, max_retries)
        attempt = 0

        while True:
            attempt += 1
            await self._sleep(self.policy.min_delay)
            try:
                return await request_fn()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                info = classify(e, self.platform)
                delay = self.policy.get_delay(attempt, info)

                if delay is None or attempt > retries:
                    if delay is not None:
                        logger.warning(
                            f"Giving up after {attempt} attempts",
                            extra_fields={"error_type": info.type.value, "error_code": info.code},
                        )
                    raise

                logger.warning(
                    f"Request failed (attempt {attempt}/{retries + 1}), retrying in {delay:.1f}s",
                    extra_fields={
                        "error_type": info.type.value,
                        "error_code": info.code,
                        "http_status": info.http_status,
                    },
                )
                if self._metrics is not None:
                    self._metrics.record_retry(self.platform or "unknown", info.type.value)
                await self._sleep(delay)
