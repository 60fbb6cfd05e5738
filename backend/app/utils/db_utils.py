"""Database utility functions."""
import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import OperationalError, InterfaceError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Substrings of driver errors that go away on their own
TRANSIENT_DB_MESSAGES = (
    "database is locked",  # SQLite writer contention between scan workers
    "connection refused",
    "connection reset",
    "connection closed",
    "server closed",
    "timeout",
    "too many clients",
)


def is_transient_db_error(error: Exception) -> bool:
    """True for lock and connection errors worth retrying."""
    if not isinstance(error, (OperationalError, InterfaceError)):
        return False
    message = str(error).lower()
    return any(fragment in message for fragment in TRANSIENT_DB_MESSAGES)


async def retry_on_lock(
    coro_func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 0.1,
) -> T:
    """Retry a database operation on transient errors with exponential backoff.

    Used around commits, where concurrent scan workers may find SQLite locked
    or a pooled PostgreSQL connection dropped.

    Args:
        coro_func: callable returning a coroutine, e.g. ``session.commit``
        max_retries: total number of tries
        base_delay: seconds before the second try, doubling afterwards
    """
    for attempt in range(max_retries):
        try:
            return await coro_func()
        except (OperationalError, InterfaceError) as e:
            if attempt + 1 >= max_retries or not is_transient_db_error(e):
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(
                f"Database transient error, retrying in {delay}s (attempt {attempt + 1}/{max_retries})"
            )
            await asyncio.sleep(delay)
    raise RuntimeError("max_retries must be at least 1")
