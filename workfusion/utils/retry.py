"""
Bounded retry with exponential backoff for persistence and outbound calls.

A single ``with_retry`` helper replaces per-call retry loops. Callers supply a
predicate that separates transient failures (retried) from terminal ones
(raised immediately).
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry schedule: attempt ``n`` (1-based) is followed by a delay of
    ``min(base_delay * multiplier ** (n - 1), max_delay)`` seconds.
    """

    max_attempts: int = 3
    base_delay: float = 0.2
    max_delay: float = 2.0
    multiplier: float = 2.0

    def delay_after(self, attempt_number: int) -> float:
        return min(self.base_delay * self.multiplier ** (attempt_number - 1), self.max_delay)


def _log_before_sleep(operation_name: str) -> Callable[[RetryCallState], None]:
    def _log(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Transient failure, retrying",
            operation=operation_name,
            attempt=retry_state.attempt_number,
            delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc),
            error_type=type(exc).__name__,
        )

    return _log


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Callable[[BaseException], bool],
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    operation_name: str = "operation",
) -> T:
    """
    Run ``operation`` until it succeeds, raises a non-retryable error, or the
    policy's attempts are exhausted. The last exception is re-raised as-is.

    Args:
        operation: zero-argument coroutine factory, called once per attempt
        policy: attempt bound and backoff schedule
        retry_on: returns True for exceptions worth another attempt
        sleep: awaitable sleep, injectable for tests
        operation_name: label for retry log entries
    """
    retrying = AsyncRetrying(
        sleep=sleep or asyncio.sleep,
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay,
            exp_base=policy.multiplier,
            max=policy.max_delay,
        ),
        retry=retry_if_exception(retry_on),
        before_sleep=_log_before_sleep(operation_name),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await operation()
    raise AssertionError("unreachable")  # pragma: no cover
