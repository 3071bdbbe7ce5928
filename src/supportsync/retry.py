"""Retry policies for reads and mutations.

Reads retry transient failures (5xx, network) and rate limiting (429).
Mutations are more conservative: any 4xx, 429 included, fails immediately.
Backoff doubles from ``base_delay`` per attempt and is capped at ``max_delay``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from supportsync.errors import NetworkError, RateLimitedError, ServerError
from supportsync.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)

READ_RETRYABLE: tuple[type[BaseException], ...] = (NetworkError, ServerError, RateLimitedError)
MUTATION_RETRYABLE: tuple[type[BaseException], ...] = (NetworkError, ServerError)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling, backoff curve and which failures qualify."""

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 10.0
    retry_on: tuple[type[BaseException], ...] = READ_RETRYABLE
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def should_retry(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)


READ_RETRY = RetryPolicy(max_attempts=3, retry_on=READ_RETRYABLE)
MUTATION_RETRY = RetryPolicy(max_attempts=2, retry_on=MUTATION_RETRYABLE)
NO_RETRY = RetryPolicy(max_attempts=1)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    error = outcome.exception() if outcome is not None else None
    logger.info(
        "retry_scheduled",
        attempt=retry_state.attempt_number,
        delay=retry_state.next_action.sleep if retry_state.next_action else None,
        error=repr(error),
    )


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy = READ_RETRY,
) -> T:
    """Call ``fn`` under ``policy``; the last error is re-raised unchanged."""
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay),
        retry=retry_if_exception(policy.should_retry),
        sleep=policy.sleep,
        before_sleep=_log_before_sleep,
        reraise=True,
    ):
        with attempt:
            return await fn()
    raise AssertionError("unreachable")  # pragma: no cover


__all__ = [
    "MUTATION_RETRY",
    "NO_RETRY",
    "READ_RETRY",
    "RetryPolicy",
    "call_with_retry",
]
