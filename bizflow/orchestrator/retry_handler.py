"""Retry logic with exponential backoff for hosted backend calls"""

import asyncio
from typing import Any, Awaitable, Callable, Tuple, Type

from bizflow.utils.errors import RemoteAuthorizationError, RetryExhaustedError
from bizflow.utils.logging import get_logger

logger = get_logger(__name__)


async def retry_with_exponential_backoff(
    func: Callable[..., Awaitable[Any]],
    *args,
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    non_retryable: Tuple[Type[BaseException], ...] = (RemoteAuthorizationError,),
    **kwargs
) -> Any:
    """
    Await func, retrying failures with exponential backoff

    Args:
        func: Coroutine function to retry
        *args, **kwargs: Arguments to pass to func
        max_retries: Maximum attempts (1 means no retry)
        base_delay: Base delay in seconds
        max_delay: Max delay cap in seconds
        non_retryable: Exceptions re-raised immediately without retrying

    Returns:
        Function result

    Raises:
        RetryExhaustedError: If all attempts failed (original error chained)
    """
    attempts = max(1, max_retries)

    for attempt in range(attempts):
        try:
            return await func(*args, **kwargs)

        except non_retryable:
            raise

        except Exception as e:
            if attempt == attempts - 1:
                logger.error(f"All {attempts} retry attempts exhausted")
                raise RetryExhaustedError(f"Failed after {attempts} attempts: {e}") from e

            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.warning(f"Attempt {attempt + 1} failed, retrying in {delay}s: {e}")
            await asyncio.sleep(delay)
