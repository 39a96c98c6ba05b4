"""Retry policy for completion-service calls."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

import httpx

from parley.errors import ClientError, TransportError
from parley.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

BackoffFn = Callable[[int], float]
RetryPredicate = Callable[[BaseException], bool]


def exponential_backoff(base: float = 0.5, maximum: float = 8.0) -> BackoffFn:
    """Delay before retry *attempt* (1-based): base * 2^(attempt-1), capped."""

    def _delay(attempt: int) -> float:
        return min(maximum, base * (2 ** (attempt - 1)))

    return _delay


def is_transient(exc: BaseException) -> bool:
    """Connection resets, timeouts and 5xx are transient; 4xx never are."""
    if isinstance(exc, ClientError):
        return False
    if isinstance(exc, TransportError):
        return exc.transient
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError, httpx.TransportError)):
        return True
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and status >= 500


@dataclass(frozen=True)
class RetryPolicy:
    """How a transport call is retried.

    ``max_attempts`` counts the first call, so ``max_attempts=4`` means up to
    three retries.
    """

    max_attempts: int = 4
    backoff: BackoffFn = field(default_factory=exponential_backoff)
    retry_predicate: RetryPredicate = is_transient

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_attempts=1)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation: str = "completion",
) -> T:
    """Await ``fn()`` until it succeeds, fails permanently or attempts run out.

    Raises:
        ClientError: on a non-retryable 4xx response, immediately.
        TransportError: when retries are exhausted on a transient failure.
    """
    attempts = max(1, policy.max_attempts)
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as e:
            if not policy.retry_predicate(e):
                raise
            if attempt >= attempts:
                logger.error(
                    "transport_retries_exhausted",
                    operation=operation,
                    attempts=attempt,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                if isinstance(e, TransportError):
                    raise
                raise TransportError(
                    f"{operation} failed after {attempt} attempt(s): {e}",
                    status_code=getattr(e, "status_code", None),
                ) from e
            delay = policy.backoff(attempt)
            logger.warning(
                "transport_retry",
                operation=operation,
                attempt=attempt,
                delay_s=delay,
                error_type=type(e).__name__,
            )
            if delay > 0:
                await asyncio.sleep(delay)
