"""
Retry with exponential backoff for operations against the call store.
"""

import asyncio
import functools
import inspect
import logging
import time
from typing import Callable, Tuple, Type

from calltracker.errors import TransientStoreError

logger = logging.getLogger(__name__)


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (TransientStoreError,),
) -> Callable:
    """
    Decorator retrying a sync or async callable on transient failures.

    Attempt n (0-based) that fails with one of retry_on waits
    base_delay * 2**n seconds before the next one. The last failure is
    re-raised unchanged; anything not in retry_on propagates immediately.

    Args:
        max_attempts: Total number of attempts, at least 1
        base_delay: Delay before the second attempt, in seconds
        retry_on: Exception types worth retrying
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def backoff(attempt: int) -> float:
        return base_delay * (2 ** attempt)

    def log_retry(func: Callable, attempt: int, error: BaseException, delay: float) -> None:
        logger.warning(
            f"{func.__qualname__} failed (attempt {attempt + 1}/{max_attempts}): {error}; "
            f"retrying in {delay:.2f}s"
        )

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                for attempt in range(max_attempts):
                    try:
                        return await func(*args, **kwargs)
                    except retry_on as e:
                        if attempt == max_attempts - 1:
                            logger.error(f"{func.__qualname__} failed after {max_attempts} attempts: {e}")
                            raise
                        delay = backoff(attempt)
                        log_retry(func, attempt, e, delay)
                        await asyncio.sleep(delay)
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if attempt == max_attempts - 1:
                        logger.error(f"{func.__qualname__} failed after {max_attempts} attempts: {e}")
                        raise
                    delay = backoff(attempt)
                    log_retry(func, attempt, e, delay)
                    time.sleep(delay)
        return wrapper

    return decorator
