# Hey future me - this is THE FIX for "database is locked" errors!
#
# SQLite locks are TEMPORARY - waiting and retrying almost always works. IMPORTANT: decorate a
# function that opens its OWN session_scope, never a method that only flushes on a session it was
# handed. After a failed flush the session's transaction is dead, so retrying inside it just raises
# "transaction has been rolled back". Retrying the whole unit of work is what actually works.
#
# USAGE:
#   @with_db_retry(max_attempts=3)
#   async def _commit_reorder(self, playlist_id, order) -> Playlist:
#       async with self._session_scope() as session:
#           ...
"""Database retry utilities for handling SQLite lock errors."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

_LOCK_MARKERS = ("database is locked", "database table is locked", "busy")


def is_lock_error(error: BaseException) -> bool:
    """Check if an exception is a transient SQLite lock error."""
    if not isinstance(error, OperationalError):
        return False
    text = str(error).lower()
    return any(marker in text for marker in _LOCK_MARKERS)


def with_db_retry(
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 5.0,
    backoff_factor: float = 2.0,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for retrying a unit of work on lock errors.

    The backoff is exponential: 0.5s -> 1s -> 2s (capped at max_delay).
    Only lock errors are retried; every other exception propagates
    immediately.

    Args:
        max_attempts: Maximum attempts including the first (default: 3)
        initial_delay: Initial delay in seconds (default: 0.5)
        max_delay: Maximum delay cap in seconds (default: 5.0)
        backoff_factor: Multiply delay by this each retry (default: 2.0)

    Returns:
        Decorated coroutine function with automatic retry logic
    """

    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            delay = initial_delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except OperationalError as e:
                    if not is_lock_error(e) or attempt >= max_attempts:
                        raise
                    logger.warning(
                        "Database locked in %s (attempt %d/%d), retrying in %.1fs",
                        func.__qualname__,
                        attempt,
                        max_attempts,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * backoff_factor, max_delay)
            raise AssertionError("unreachable")  # pragma: no cover

        return wrapper

    return decorator
