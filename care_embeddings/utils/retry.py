"""Retry policy for provider calls.

The policy decides which classified errors are retried and how long to wait
before the next attempt; tenacity drives the actual loop.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from care_embeddings.domain.errors import EmbeddingError, RateLimitedError, TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryDecision:
    """What to do after a failed attempt."""

    action: Literal["retry", "give_up"]
    delay: float = 0.0


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff configuration keyed by error class.

    Server errors wait ``base * 2^(n-1)`` plus up to ``server_jitter``
    seconds, rate limits wait ``base * 3^n`` plus up to ``rate_limit_jitter``
    seconds, and network errors wait ``base * 1.5^(n-1)``, where ``n`` is the
    1-based number of the attempt that just failed. Quota, auth, and malformed
    request errors are never retried.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Base delay in seconds
        server_multiplier: Growth factor for server errors
        rate_limit_multiplier: Growth factor for rate limits
        network_multiplier: Growth factor for network errors
        server_jitter: Max random seconds added for server errors
        rate_limit_jitter: Max random seconds added for rate limits
        max_delay: Upper bound for any single wait
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    server_multiplier: float = 2.0
    rate_limit_multiplier: float = 3.0
    network_multiplier: float = 1.5
    server_jitter: float = 1.0
    rate_limit_jitter: float = 2.0
    max_delay: float = 60.0

    def is_retryable(self, exc: BaseException) -> bool:
        """Return True if the error class is worth another attempt."""
        return isinstance(exc, EmbeddingError) and exc.retryable

    def delay_for(
        self,
        exc: BaseException,
        attempt: int,
        rng: Callable[[], float] = random.random,
    ) -> float:
        """Compute the wait after a failed attempt.

        Args:
            exc: The classified error of the failed attempt
            attempt: 1-based number of the attempt that failed
            rng: Random source returning floats in [0, 1)

        Returns:
            Seconds to wait before the next attempt
        """
        if isinstance(exc, RateLimitedError):
            delay = self.base_delay * self.rate_limit_multiplier**attempt
            delay += rng() * self.rate_limit_jitter
        elif isinstance(exc, TransientProviderError) and exc.network:
            delay = self.base_delay * self.network_multiplier ** (attempt - 1)
        else:
            delay = self.base_delay * self.server_multiplier ** (attempt - 1)
            delay += rng() * self.server_jitter
        return min(delay, self.max_delay)

    def next_action(
        self,
        exc: BaseException,
        attempt: int,
        rng: Callable[[], float] = random.random,
    ) -> RetryDecision:
        """Decide between retrying and giving up after a failed attempt."""
        if not self.is_retryable(exc) or attempt >= self.max_attempts:
            return RetryDecision(action="give_up")
        return RetryDecision(action="retry", delay=self.delay_for(exc, attempt, rng))


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        f"Attempt {retry_state.attempt_number} failed ({type(exc).__name__}: {exc}), "
        f"retrying in {wait:.1f}s"
    )


async def call_with_retry(
    policy: RetryPolicy,
    func: Callable[[], Awaitable[T]],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> T:
    """Await ``func`` under the policy, re-raising the last error when attempts run out.

    Args:
        policy: Retry policy to apply
        func: Zero-argument coroutine factory, called once per attempt
        sleep: Awaitable sleep, injectable for tests
        rng: Random source for jitter

    Returns:
        Result of the first successful attempt

    Raises:
        EmbeddingError: The last classified error if no attempt succeeded
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=lambda rs: policy.delay_for(rs.outcome.exception(), rs.attempt_number, rng),
        retry=retry_if_exception(policy.is_retryable),
        sleep=sleep,
        before_sleep=_log_retry,
        reraise=True,
    )
    result: T
    async for attempt in retrying:
        with attempt:
            result = await func()
    return result
