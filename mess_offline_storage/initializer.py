"""
First-boot initialization.

An initialization attempt opens the store, verifies it, starts the health
monitor and runs a write/read/delete self-test. Attempts are retried with
exponential backoff; a streak of failures triggers an emergency reset
before the next attempt.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from .config import InitializationConfig
from .exceptions import InitializationError, OfflineStorageError
from .health import HealthMonitor
from .id_utils import now_ms
from .resilience import RetryConfig
from .store import StoreEngine, Table

logger = logging.getLogger(__name__)

SELF_TEST_ID = "test_initialization"


@dataclass
class InitializationState:
    is_initializing: bool = False
    is_initialized: bool = False
    consecutive_failures: int = 0
    total_attempts: int = 0
    last_initialization_time: float | None = None  # time.monotonic()
    last_error: str | None = None


class Initializer:
    """Sequences store boot with retries, a cooldown and a shared in-flight attempt."""

    def __init__(
        self,
        store: StoreEngine,
        monitor: HealthMonitor | None = None,
        config: InitializationConfig | None = None,
    ):
        self.store = store
        self.monitor = monitor
        self.config = config or InitializationConfig()
        self.state = InitializationState()
        self._task: asyncio.Task[None] | None = None
        self._backoff = RetryConfig(
            max_attempts=self.config.max_retries,
            backoff_base=self.config.retry_delay,
            exponential=True,
        )

    async def initialize(self) -> None:
        """Bring the store up.

        Concurrent callers await the same attempt. A success within the
        cooldown window returns immediately.

        Raises:
            InitializationError: If every attempt failed
        """
        task = self._task
        if task is None:
            if self._within_cooldown():
                logger.debug("Initialized within cooldown, skipping")
                return
            task = self._task = asyncio.ensure_future(self._run())
        try:
            await asyncio.shield(task)
        finally:
            if self._task is task and task.done():
                self._task = None

    def _within_cooldown(self) -> bool:
        last = self.state.last_initialization_time
        return (
            self.state.is_initialized
            and self.store.is_initialized
            and last is not None
            and time.monotonic() - last < self.config.cooldown
        )

    async def _run(self) -> None:
        state = self.state
        state.is_initializing = True
        last_error: Exception | None = None
        try:
            for attempt in range(1, self.config.max_retries + 1):
                state.total_attempts += 1
                try:
                    async with asyncio.timeout(self.config.initialization_timeout):
                        await self._attempt()
                except Exception as e:
                    last_error = e
                    state.consecutive_failures += 1
                    state.last_error = str(e) or type(e).__name__
                    logger.error(
                        f"Initialization attempt {attempt}/{self.config.max_retries} failed: "
                        f"{state.last_error}"
                    )
                    if attempt >= self.config.max_retries:
                        break
                    if state.consecutive_failures % self.config.emergency_reset_after == 0:
                        await self._emergency_reset()
                    await asyncio.sleep(self._backoff.compute_delay(attempt))
                    continue

                state.consecutive_failures = 0
                state.is_initialized = True
                state.last_error = None
                state.last_initialization_time = time.monotonic()
                logger.info(f"Offline storage initialized (attempt {attempt})")
                return
        finally:
            state.is_initializing = False

        state.is_initialized = False
        raise InitializationError(self.config.max_retries, last_error)

    async def _attempt(self) -> None:
        await self.store.init()
        if not await self.store.health_check():
            raise OfflineStorageError("Store health check failed after init")
        if self.monitor is not None and self.config.enable_health_monitoring:
            self.monitor.start()
        await self._self_test()

    async def _self_test(self) -> None:
        """Write, read back and delete a sentinel row."""
        await self.store.save_data(
            Table.DASHBOARD_DATA,
            {"id": SELF_TEST_ID, "data": {"test": True}, "timestamp": now_ms()},
        )
        row = await self.store.get_by_id(Table.DASHBOARD_DATA, SELF_TEST_ID)
        if row is None or row.get("data") != {"test": True}:
            raise OfflineStorageError("Store self-test read-back failed")
        await self.store.delete_data(Table.DASHBOARD_DATA, SELF_TEST_ID)

    async def _emergency_reset(self) -> None:
        logger.warning(
            f"{self.state.consecutive_failures} consecutive initialization failures, "
            "running emergency reset"
        )
        try:
            await self.store.emergency_reset()
        except Exception as e:
            logger.error(f"Emergency reset during initialization failed: {e}")

    async def force_reinitialize(self) -> None:
        """Reinitialize now, ignoring the cooldown.

        A soft reset is tried first; only if that leaves the store unusable
        is the database deleted and initialization rerun from scratch.
        """
        logger.warning("Forcing store reinitialization")
        try:
            await self.store.soft_reset()
            if await self.store.health_check():
                await self._self_test()
                self.state.is_initialized = True
                self.state.consecutive_failures = 0
                self.state.last_initialization_time = time.monotonic()
                logger.info("Store reinitialized with soft reset")
                return
            logger.warning("Store unhealthy after soft reset")
        except Exception as e:
            logger.warning(f"Graceful reinitialization failed: {e}")

        self.state.is_initialized = False
        self.state.last_initialization_time = None
        try:
            await self.store.hard_reset()
        except Exception as e:
            logger.error(f"Hard reset failed, trying emergency reset: {e}")
            await self.store.emergency_reset()
        await self.initialize()
