"""
Retry of transient store reads.

Page scans and reference lookups are retried with a linearly growing
delay (``delay``, ``2 * delay``, ...) before the failure is reported.
Writes are never retried here: a failed commit is queued on the engine
and replayed only on operator request.

Example:
    >>> policy = LinearBackoffRetryPolicy(max_retries=2, delay=1.0)
    >>> document = await retry_read(
    ...     lambda: store.get_by_id("iboard_users", "u1"),
    ...     policy,
    ...     "lookup iboard_users/u1",
    ... )
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar, runtime_checkable

from tenantfill.exceptions import BatchWriteError, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class RetryPolicy(Protocol):
    """
    Decides whether and when a failed read is attempted again.

    ``attempt`` is 0-based: after the first failure, attempt=0.
    """

    @property
    def max_retries(self) -> int:
        """Retries after the initial attempt."""
        ...

    def get_backoff(self, attempt: int) -> float:
        """Seconds to wait before the next attempt."""
        ...

    def should_retry(self, attempt: int, error: Exception) -> bool: ...


class LinearBackoffRetryPolicy:
    """
    Retries store read errors with a delay of ``delay * (attempt + 1)``.

    Only StoreError is retried. BatchWriteError is a StoreError too but
    never retried.
    """

    def __init__(self, max_retries: int = 2, delay: float = 1.0) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        self._max_retries = max_retries
        self._delay = delay

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def get_backoff(self, attempt: int) -> float:
        return self._delay * (attempt + 1)

    def should_retry(self, attempt: int, error: Exception) -> bool:
        if not isinstance(error, StoreError) or isinstance(error, BatchWriteError):
            return False
        return attempt < self._max_retries

    def __repr__(self) -> str:
        return f"LinearBackoffRetryPolicy(max_retries={self._max_retries}, delay={self._delay})"


class NoRetryPolicy:
    """Reports the first failure."""

    @property
    def max_retries(self) -> int:
        return 0

    def get_backoff(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: Exception) -> bool:
        return False

    def __repr__(self) -> str:
        return "NoRetryPolicy()"


async def retry_read(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str,
) -> T:
    """
    Run a read, retrying it as the policy allows.

    Raises:
        The last error once the policy gives up.
    """
    attempt = 0
    while True:
        try:
            result = await operation()
        except Exception as e:
            if not policy.should_retry(attempt, e):
                if attempt:
                    logger.error("%s failed after %d attempts: %s", description, attempt + 1, e)
                raise
            delay = policy.get_backoff(attempt)
            logger.warning(
                "%s failed on attempt %d, retrying in %.2fs: %s",
                description,
                attempt + 1,
                delay,
                e,
            )
            attempt += 1
            await asyncio.sleep(delay)
            continue

        if attempt:
            logger.info("%s succeeded on attempt %d", description, attempt + 1)
        return result


__all__ = [
    "LinearBackoffRetryPolicy",
    "NoRetryPolicy",
    "RetryPolicy",
    "retry_read",
]
