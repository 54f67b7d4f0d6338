"""Retry and deadline helpers for store and model calls.

Summarization runs in the background while the reply path reads and
writes the same database, so short lock contention is normal and is
retried. Schema problems mean the database was never initialized and
fail on the first attempt.
"""

import asyncio
import random
import sqlite3
from typing import Awaitable, Callable, Optional, TypeVar

from config import logger
from errors import ContextRecallError

T = TypeVar('T')

_CONTENTION_MARKERS = ("locked", "busy", "disk i/o error")
_SCHEMA_MARKERS = ("no such table", "no such column")


def is_transient_db_error(e: sqlite3.OperationalError) -> bool:
    """True for lock contention and I/O hiccups that a retry can clear."""
    msg = str(e).lower()
    return any(marker in msg for marker in _CONTENTION_MARKERS)


def _describe_permanent(e: sqlite3.OperationalError) -> str:
    msg = str(e).lower()
    if any(marker in msg for marker in _SCHEMA_MARKERS):
        return f"{e} (run 'context-recall init' to create the schema)"
    return str(e)


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args,
    max_delay: float = 5.0,
    initial_delay: float = 0.1,
    max_attempts: int = 20,
    operation: Optional[str] = None,
    **kwargs
) -> T:
    """Run a database call, backing off while the database is contended.

    Delays double from ``initial_delay`` up to ``max_delay`` with jitter.

    Args:
        func: Async callable doing one unit of database work
        max_attempts: Attempts before the contention error is raised
        operation: Label for log lines (defaults to the callable's name)

    Raises:
        sqlite3.OperationalError: Non-contention errors at once, contention
            errors after ``max_attempts``
    """
    label = operation or getattr(func, "__qualname__", "db call")
    delay = initial_delay

    for attempt in range(1, max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except sqlite3.OperationalError as e:
            if not is_transient_db_error(e):
                logger.error(f"{label} failed: {_describe_permanent(e)}")
                raise
            if attempt == max_attempts:
                logger.error(f"{label} still contended after {attempt} attempts: {e}")
                raise
            pause = delay * (0.5 + random.random())
            logger.debug(f"{label} contended ({e}), attempt {attempt}, waiting {pause:.2f}s")
            await asyncio.sleep(pause)
            delay = min(delay * 2, max_delay)

    raise AssertionError("unreachable")


async def with_timeout(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """Await with a deadline, converting expiry into ContextRecallError.

    Raises:
        ContextRecallError: With error_code "timeout" when the deadline passes
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        logger.warning(f"{operation} timed out after {timeout}s")
        raise ContextRecallError(
            f"{operation} timed out after {timeout}s",
            "timeout",
            {"operation": operation, "timeout": timeout}
        ) from e
