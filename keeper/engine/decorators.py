"""
Retry decorator for read-only RPC calls.
"""

import asyncio
import functools
import logging
from typing import Any, Callable

import aiohttp

# Network-level failures of the RPC transport. Contract reverts are not retried.
TRANSIENT_READ_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)


def retry_read(logger: logging.Logger, max_retries: int = 3, delay: float = 2) -> Callable:
    """
    Decorator to retry an async read on transport errors.

    Args:
        logger: Logger instance for retry logging.
        max_retries: Maximum number of attempts.
        delay: Delay between attempts in seconds.

    Returns:
        Decorated coroutine function. The last error is re-raised once every
        attempt has failed.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except TRANSIENT_READ_ERRORS as e:
                    if attempt == max_retries:
                        logger.error("%s failed after %s attempts: %s", func.__name__, max_retries, e)
                        raise

                    logger.warning(
                        "Error in %s, waiting %s seconds before retrying. Attempt %s/%s: %s",
                        func.__name__, delay, attempt, max_retries, e,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
