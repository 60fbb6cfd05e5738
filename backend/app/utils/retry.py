"""Retry helpers for scan execution."""
import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


async def retry_with_backoff(
    func: Callable[[int], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 5.0,
    is_retryable: Callable[[Exception], bool] = lambda e: True,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``func(attempt)`` until it succeeds, with polynomially growing delays.

    Delay before attempt n+1 is ``base_delay * n ** 2``. Errors that are not
    retryable, and the error from the final attempt, are re-raised.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return await func(attempt)
        except Exception as e:
            if attempt >= max_attempts or not is_retryable(e):
                raise
            delay = base_delay * attempt ** 2
            logger.warning(f"Attempt {attempt}/{max_attempts} failed ({e}), retrying in {delay}s")
            await sleep(delay)
    raise RuntimeError("max_attempts must be at least 1")
