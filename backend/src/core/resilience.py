"""Resilience helpers for calls to the upstream product API.

Provides:
- RETRYABLE_EXCEPTIONS: transport errors that are safe to retry
- backoff_delay: bounded exponential delay used by the briefing poll loop
- retry: decorator for a small number of jittered retries on async calls
"""

import asyncio
import functools
import logging
import random
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = ParamSpec("P")


# Default exception types that are safe to retry
RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    ConnectionError,
    TimeoutError,
)


def backoff_delay(
    attempt: int,
    base_delay: float,
    factor: float = 1.0,
    max_delay: float | None = None,
) -> float:
    """Delay before the next attempt.

    ``attempt`` is the number of attempts already made (1 after the first).
    With ``factor == 1.0`` the cadence is fixed at ``base_delay``.

    Args:
        attempt: Completed attempts so far.
        base_delay: Delay after the first attempt (seconds).
        factor: Multiplier applied per additional attempt.
        max_delay: Optional cap on the computed delay.

    Returns:
        Delay in seconds, never below zero.
    """
    exponent = max(attempt - 1, 0)
    delay = base_delay * (factor**exponent)
    if max_delay is not None:
        delay = min(delay, max(max_delay, base_delay))
    return max(delay, 0.0)


def retry(
    max_retries: int = 1,
    backoff_factor: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_EXCEPTIONS,
    max_delay: float = 10.0,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator: retry an async function with exponential backoff + jitter.

    Args:
        max_retries: Maximum number of retry attempts (not counting the initial call).
        backoff_factor: Multiplier for the delay between retries.
        retry_on: Tuple of exception types that trigger a retry.
        max_delay: Cap on the computed delay (seconds).

    Usage::

        @retry(max_retries=1, retry_on=(httpx.ConnectError,))
        async def trigger():
            ...
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except retry_on as exc:
                    if attempt >= max_retries:
                        logger.error(
                            "All %d retries exhausted for %s: %s",
                            max_retries,
                            func.__qualname__,
                            exc,
                        )
                        raise
                    attempt += 1
                    ceiling = backoff_delay(attempt, 1.0, backoff_factor, max_delay)
                    jitter = random.uniform(0, ceiling)  # noqa: S311
                    logger.warning(
                        "Retry %d/%d for %s after %s (waiting %.2fs)",
                        attempt,
                        max_retries,
                        func.__qualname__,
                        type(exc).__name__,
                        jitter,
                    )
                    await asyncio.sleep(jitter)

        return wrapper

    return decorator
