"""Retry-with-backoff wrapper for outbound calls.

:func:`with_retry` wraps a single zero-argument coroutine function.  A
failed attempt is retried after ``base_delay_ms * 2 ** (attempt - 1)``
milliseconds until ``max_attempts`` is reached, at which point the last
failure is re-raised unchanged.  Validation failures are never transient,
so they are re-raised on the first attempt.  Call sites talking to billed
providers narrow retries further with :func:`is_transient`.

The policies used by the application are module constants so that callers
and tests refer to the same budgets.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from pixelprompt.core.errors import AppError, ErrorKind, as_app_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and base backoff delay for one call site.

    Attributes:
        max_attempts: Total number of attempts, including the first (>= 1).
        base_delay_ms: Delay before the second attempt, in milliseconds.
            Each further attempt doubles it.
    """

    max_attempts: int
    base_delay_ms: int

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must not be negative")


GENERATION_RETRY = RetryPolicy(max_attempts=2, base_delay_ms=1000)
GALLERY_RETRY = RetryPolicy(max_attempts=2, base_delay_ms=1000)
HEALTH_RETRY = RetryPolicy(max_attempts=1, base_delay_ms=500)

TRANSIENT_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT})


def is_retryable(exc: BaseException) -> bool:
    """Everything except validation failures may be retried."""
    if isinstance(exc, AppError):
        return exc.is_retryable
    return True


def is_transient(exc: BaseException) -> bool:
    """Only network and timeout failures are worth another attempt.

    Used for calls to billed providers, where a definitive rejection would
    fail the same way again.
    """
    return as_app_error(exc).kind in TRANSIENT_KINDS


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        f"Attempt {retry_state.attempt_number} failed ({exc!r}); retrying in {delay:.2f}s"
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = GENERATION_RETRY,
    *,
    retry_on: Callable[[BaseException], bool] = is_retryable,
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """Run ``operation`` under ``policy``.

    Args:
        operation: Zero-argument callable returning an awaitable, such as a
            coroutine function or a ``lambda`` wrapping a coroutine call.
        policy: Attempt budget and backoff.
        retry_on: Predicate deciding whether a failure is retried.
        sleep: Awaitable sleep function receiving seconds.  Tests pass a fake.

    Returns:
        The first successful result.

    Raises:
        Exception: The first failure ``retry_on`` rejects, or the last
            failure once the attempt budget is exhausted.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(multiplier=policy.base_delay_ms / 1000),
        retry=retry_if_exception(retry_on),
        reraise=True,
        sleep=sleep,
        before_sleep=_log_retry,
    )
    async for attempt in retrying:
        with attempt:
            return await operation()
    raise AssertionError("unreachable: tenacity re-raises the last failure")
