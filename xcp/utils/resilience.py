"""Retry and timeout helpers for blocking remote calls.

Network fetches and statistics queries use a small fixed number of retries
with a fixed delay between attempts; once retries are exhausted the last
error propagates to the caller.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Any, Awaitable, Callable, TypeVar, Union, cast

T = TypeVar("T")
AsyncFunc = Callable[..., Awaitable[T]]
SyncFunc = Callable[..., T]
Func = Union[AsyncFunc[T], SyncFunc[T]]

logger = logging.getLogger(__name__)


def with_retry(
    retries: int = 3,
    delay: float = 5.0,
    backoff: float = 1.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    max_delay: float = 60.0,
) -> Callable[[Func[T]], Func[T]]:
    """Decorator for retry logic.

    Args:
        retries: Total number of attempts (at least one attempt is made)
        delay: Delay before the second attempt, in seconds
        backoff: Delay multiplier between attempts (1.0 keeps it fixed)
        exceptions: Exception types to retry on
        max_delay: Maximum delay between attempts

    Returns:
        Decorated function with retry logic

    """
    attempts = max(1, retries)

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> T:
            wait = delay
            for attempt in range(1, attempts + 1):
                try:
                    return await cast("Awaitable[T]", func(*args, **kwargs))
                except exceptions as e:
                    if attempt == attempts:
                        raise
                    logger.warning(
                        "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                        func.__name__,
                        attempt,
                        attempts,
                        e,
                        min(wait, max_delay),
                    )
                    await asyncio.sleep(min(wait, max_delay))
                    wait *= backoff
            msg = "All retries failed"  # pragma: no cover
            raise RuntimeError(msg)  # pragma: no cover

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            wait = delay
            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == attempts:
                        raise
                    logger.warning(
                        "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                        func.__name__,
                        attempt,
                        attempts,
                        e,
                        min(wait, max_delay),
                    )
                    time.sleep(min(wait, max_delay))
                    wait *= backoff
            msg = "All retries failed"  # pragma: no cover
            raise RuntimeError(msg)  # pragma: no cover

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
