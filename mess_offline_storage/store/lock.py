"""
Cooperative connection lock.

One physical connection means one caller at a time. The lock is
re-entrant for the task that holds it, so a store call made from inside
``transaction()`` does not wait on itself. A waiter that has waited
longer than ``timeout`` seconds force-releases the holder and takes the
lock, logging a warning, instead of deadlocking.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class CooperativeLock:
    """Task re-entrant asyncio lock with a bounded wait."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._owner: asyncio.Task | None = None
        self._depth = 0
        self._acquired_at = 0.0
        self._released = asyncio.Event()
        self._released.set()
        self.force_releases = 0

    @property
    def locked(self) -> bool:
        return self._owner is not None

    @property
    def owner(self) -> asyncio.Task | None:
        return self._owner

    async def acquire(self, operation: str = "") -> None:
        task = asyncio.current_task()
        if self._owner is task and task is not None:
            self._depth += 1
            return

        deadline = time.monotonic() + self.timeout
        while self._owner is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                held_for = time.monotonic() - self._acquired_at
                logger.warning(
                    f"Lock wait exceeded {self.timeout}s for {operation or 'operation'}, "
                    f"force-releasing holder after {held_for:.2f}s"
                )
                self.force_releases += 1
                self._reset()
                break
            self._released.clear()
            try:
                await asyncio.wait_for(self._released.wait(), remaining)
            except TimeoutError:
                continue

        self._owner = task
        self._depth = 1
        self._acquired_at = time.monotonic()
        self._released.clear()

    def release(self) -> None:
        # A holder that was force-released no longer owns the lock
        if self._owner is not asyncio.current_task():
            return
        self._depth -= 1
        if self._depth <= 0:
            self._reset()

    def force_release(self) -> None:
        """Drop the lock regardless of owner. Used by store resets."""
        if self._owner is not None:
            logger.warning("Force-releasing store lock")
        self._reset()

    def _reset(self) -> None:
        self._owner = None
        self._depth = 0
        self._released.set()

    @asynccontextmanager
    async def hold(self, operation: str = "") -> AsyncIterator[None]:
        await self.acquire(operation)
        try:
            yield
        finally:
            self.release()
