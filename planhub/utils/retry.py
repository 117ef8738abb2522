"""
Bounded exponential backoff for async calls.

The cache client wraps every Redis command in retry_with_backoff so a
dropped connection or a slow reply costs a few short retries before the
cache fails open.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Tuple, Type

logger = logging.getLogger(__name__)


class RetryExhausted(Exception):
    """Every attempt failed with a retryable error."""


def backoff_delay(attempt: int, base_delay: float, max_delay: float, jitter: bool = True) -> float:
    """Delay before retry number ``attempt + 1``: base * 2^attempt, capped, +/-50% jitter."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    if jitter:
        delay *= 0.5 + random.random()
    return delay


async def retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    *args,
    max_retries: int = 3,
    base_delay: float = 0.05,
    max_delay: float = 1.0,
    jitter: bool = True,
    retry_on: Tuple[Type[Exception], ...] = (Exception,),
) -> Any:
    """
    Await ``func(*args)``, retrying errors listed in ``retry_on``.

    Args:
        func: Coroutine function, e.g. a bound Redis command
        max_retries: Retries after the first attempt (0 means one attempt)
        base_delay: Delay before the first retry, in seconds
        max_delay: Ceiling for any single delay
        retry_on: Exception types worth retrying; anything else propagates

    Raises:
        RetryExhausted: the last attempt failed too (chained to its error)
    """
    name = getattr(func, "__name__", repr(func))

    for attempt in range(max_retries + 1):
        try:
            return await func(*args)
        except retry_on as e:
            if attempt == max_retries:
                logger.error(f"{name} failed after {max_retries + 1} attempts: {type(e).__name__}: {e}")
                raise RetryExhausted(f"{name} failed after {max_retries + 1} attempts") from e

            delay = backoff_delay(attempt, base_delay, max_delay, jitter)
            logger.warning(f"{name} attempt {attempt + 1} failed ({type(e).__name__}), retrying in {delay:.2f}s")
            await asyncio.sleep(delay)
