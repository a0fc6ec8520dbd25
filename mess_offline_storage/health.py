"""
Store health monitor.

Probes the store on a timer, keeps rolling statistics and runs the
recovery ladder after repeated failures. Logging follows state changes
rather than ticks: a flip between healthy and unhealthy is logged, as are
the first couple of failures in a row, and nothing else.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime

from .config import HealthCheckConfig
from .store import RecoveryOutcome, StoreEngine

logger = logging.getLogger(__name__)

# Consecutive failures that are logged individually before going quiet.
_LOGGED_FAILURES = 2


@dataclass
class HealthStatus:
    """Snapshot of store health.

    ``is_healthy`` is None until the first probe completes.
    """

    is_healthy: bool | None = None
    last_check: datetime | None = None
    consecutive_failures: int = 0
    total_checks: int = 0
    average_response_time: float = 0.0  # milliseconds
    last_error: str | None = None
    recoveries: int = 0


class HealthMonitor:
    """Periodic liveness probe of a StoreEngine."""

    def __init__(self, store: StoreEngine, config: HealthCheckConfig | None = None):
        self.store = store
        self.config = config or HealthCheckConfig()
        self._status = HealthStatus()
        self._response_times: deque[float] = deque(maxlen=self.config.response_window)
        self._task: asyncio.Task[None] | None = None
        self._recovering = False
        self.last_recovery: RecoveryOutcome | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_status(self) -> HealthStatus:
        return dataclasses.replace(self._status)

    def start(self) -> None:
        """Start the probe timer. No-op if already running."""
        if self.is_running:
            return

        async def monitor_loop() -> None:
            while True:
                try:
                    await self.check()
                except Exception as e:
                    logger.error(f"Health check cycle failed: {e}")
                await asyncio.sleep(self.config.check_interval)

        self._task = asyncio.create_task(monitor_loop())
        logger.info(f"Health monitoring started (every {self.config.check_interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        if task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Health monitoring stopped")

    async def force_health_check(self) -> HealthStatus:
        """Probe now, outside the timer, and return the resulting status."""
        await self.check()
        return self.get_status()

    async def check(self) -> bool:
        """Run one probe, update statistics and recover if the threshold is reached."""
        start = time.monotonic()
        error: str | None = None
        try:
            async with asyncio.timeout(self.config.timeout):
                healthy = await self.store.health_check()
            if not healthy:
                error = "store health check returned false"
        except TimeoutError:
            error = f"health check timed out after {self.config.timeout}s"
        except Exception as e:
            error = str(e) or type(e).__name__

        elapsed_ms = (time.monotonic() - start) * 1000
        if error is None:
            self._record_success(elapsed_ms)
            return True

        self._record_failure(error)
        if (
            self.config.enable_auto_recovery
            and self._status.consecutive_failures >= self.config.max_consecutive_failures
        ):
            await self._recover()
        return False

    def _record_success(self, elapsed_ms: float) -> None:
        status = self._status
        was = status.is_healthy
        self._response_times.append(elapsed_ms)
        status.is_healthy = True
        status.last_check = datetime.now(UTC)
        status.total_checks += 1
        status.consecutive_failures = 0
        status.last_error = None
        status.average_response_time = sum(self._response_times) / len(self._response_times)

        if was is not True:
            logger.info(f"Store healthy (response {elapsed_ms:.1f}ms)")

    def _record_failure(self, error: str) -> None:
        status = self._status
        was = status.is_healthy
        status.is_healthy = False
        status.last_check = datetime.now(UTC)
        status.total_checks += 1
        status.consecutive_failures += 1
        status.last_error = error

        if was is not False or status.consecutive_failures <= _LOGGED_FAILURES:
            logger.warning(
                f"Store health check failed ({status.consecutive_failures} in a row): {error}"
            )

    async def _recover(self) -> None:
        """Pause the timer, run the recovery ladder, resume the timer whatever the result."""
        if self._recovering:
            return
        self._recovering = True
        was_running = self.is_running
        # Inside the timer task the loop is already paused until this returns
        paused_from_loop = self._task is asyncio.current_task()
        if not paused_from_loop:
            await self.stop()

        logger.warning(
            f"{self._status.consecutive_failures} consecutive health failures, running store recovery"
        )
        try:
            self.last_recovery = await self.store.recover()
            self._status.recoveries += 1
            if self.last_recovery.success:
                logger.info(f"Store recovered via {self.last_recovery.strategy}")
            else:
                logger.error("Store recovery failed, monitoring continues")
        except Exception as e:
            logger.error(f"Store recovery raised: {e}")
        finally:
            self._status.consecutive_failures = 0
            self._recovering = False
            if was_running and not paused_from_loop:
                self.start()
