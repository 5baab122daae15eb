"""Bounded retry of cluster operations."""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar, Union

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _always(exc: BaseException) -> bool:
    return isinstance(exc, Exception)


@dataclass
class RetryPolicy:
    """Retry policy for one kind of operation."""

    attempts: int = 3
    delay: float = 0.5  # Initial delay in seconds
    max_delay: float = 5.0  # Backoff cap in seconds
    exponential: bool = True
    retryable: Callable[[BaseException], bool] = field(default=_always)
    log_level: int = logging.WARNING

    @classmethod
    def fixed(
        cls,
        delay: float,
        attempts: int,
        retryable: Callable[[BaseException], bool] = _always,
    ) -> "RetryPolicy":
        """Policy polling at a fixed interval."""
        return cls(
            attempts=attempts,
            delay=delay,
            max_delay=delay,
            exponential=False,
            retryable=retryable,
            log_level=logging.DEBUG,
        )

    def wait_strategy(self):
        if self.exponential:
            return wait_exponential(multiplier=self.delay, max=self.max_delay)
        return wait_fixed(self.delay)


async def with_retry(
    fn: Callable[[], Union[T, Awaitable[T]]],
    policy: RetryPolicy,
    description: str = "operation",
) -> T:
    """
    Run an operation under a retry policy.

    Blocking callables run in a worker thread; coroutine functions are
    awaited directly.

    Args:
        fn: Zero-argument callable performing the operation
        policy: Retry policy
        description: Name of the operation for logging

    Returns:
        The operation's result

    Raises:
        Exception: The last error once attempts are exhausted, or the first
            error the policy does not consider retryable
    """

    def retryable(exc: BaseException) -> bool:
        # cancellation is never retried
        return isinstance(exc, Exception) and policy.retryable(exc)

    def log_retry(retry_state: Any) -> None:
        exc = retry_state.outcome.exception()
        logger.log(
            policy.log_level,
            f"Retrying {description} (attempt {retry_state.attempt_number}/"
            f"{policy.attempts}): {exc}",
        )

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=policy.wait_strategy(),
        retry=retry_if_exception(retryable),
        before_sleep=log_retry,
        reraise=True,
    ):
        with attempt:
            if inspect.iscoroutinefunction(fn):
                result = await fn()
            else:
                result = await asyncio.to_thread(fn)
    return result
