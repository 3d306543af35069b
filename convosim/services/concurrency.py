"""Bounded-parallelism gate for conversation tasks.

Wraps asyncio.Semaphore, which wakes waiters in FIFO order, so queued
tasks are admitted in submission order as running ones finish.
"""

import asyncio
import logging
import os
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENCY = 5


def resolve_concurrency(raw: str | int | None = None) -> int:
    """Resolve the concurrency ceiling with a safe fallback.

    Args:
        raw: Explicit value. Falls back to MAX_CONCURRENCY env, then 5.

    Returns:
        A ceiling of at least 1.
    """
    if raw is None:
        raw = os.environ.get("MAX_CONCURRENCY", str(DEFAULT_MAX_CONCURRENCY))
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning(
            "Invalid MAX_CONCURRENCY=%r, defaulting to %d", raw, DEFAULT_MAX_CONCURRENCY
        )
        return DEFAULT_MAX_CONCURRENCY
    return max(1, value)


class ConcurrencyLimiter:
    """Admit at most ``max_concurrency`` tasks at once; queue the rest.

    A task that raises only affects its own caller: the slot is released
    and the next queued task is admitted.

    Attributes:
        max_concurrency: Fixed ceiling on concurrently running tasks.
    """

    def __init__(self, max_concurrency: int = DEFAULT_MAX_CONCURRENCY) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._active = 0
        self._waiting = 0

    @property
    def active(self) -> int:
        """Number of tasks currently running."""
        return self._active

    @property
    def waiting(self) -> int:
        """Number of tasks queued for a slot."""
        return self._waiting

    async def schedule(self, task: Callable[[], Awaitable[T]]) -> T:
        """Run ``task()`` once a slot is free and return its result.

        Args:
            task: Zero-argument callable producing the awaitable to run.
                It is not invoked until the task is admitted.

        Returns:
            Whatever the awaitable returns. Exceptions propagate unchanged.
        """
        self._waiting += 1
        admitted = False
        try:
            async with self._semaphore:
                self._waiting -= 1
                admitted = True
                self._active += 1
                try:
                    return await task()
                finally:
                    self._active -= 1
        finally:
            if not admitted:
                self._waiting -= 1
