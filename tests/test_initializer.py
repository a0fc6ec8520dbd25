"""
Tests for first-boot initialization.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from mess_offline_storage.config import HealthCheckConfig, InitializationConfig
from mess_offline_storage.exceptions import InitializationError
from mess_offline_storage.health import HealthMonitor
from mess_offline_storage.initializer import SELF_TEST_ID, Initializer
from mess_offline_storage.store import StoreEngine, Table


def fast_config(**overrides) -> InitializationConfig:
    values = {"max_retries": 5, "retry_delay": 0, "initialization_timeout": 2.0}
    values.update(overrides)
    return InitializationConfig(**values)


def make_store() -> MagicMock:
    """Store double whose every step succeeds."""
    store = MagicMock()
    store.is_initialized = True
    store.init = AsyncMock()
    store.health_check = AsyncMock(return_value=True)
    store.save_data = AsyncMock(return_value=SELF_TEST_ID)
    store.get_by_id = AsyncMock(return_value={"id": SELF_TEST_ID, "data": {"test": True}})
    store.delete_data = AsyncMock(return_value=True)
    store.soft_reset = AsyncMock()
    store.hard_reset = AsyncMock()
    store.emergency_reset = AsyncMock()
    return store


@pytest.fixture
async def fresh_store(store_config):
    """Store engine that has not been initialized yet."""
    engine = StoreEngine(store_config)
    yield engine
    await engine.close()


class TestInitialize:
    """Tests for Initializer.initialize."""

    @pytest.mark.asyncio
    async def test_initializes_real_store(self, fresh_store):
        """A clean boot opens the store and removes the self-test row."""
        initializer = Initializer(fresh_store, config=fast_config())

        await initializer.initialize()

        assert initializer.state.is_initialized
        assert initializer.state.total_attempts == 1
        assert initializer.state.consecutive_failures == 0
        assert fresh_store.is_initialized
        assert await fresh_store.get_by_id(Table.DASHBOARD_DATA, SELF_TEST_ID) is None

    @pytest.mark.asyncio
    async def test_starts_health_monitor(self, fresh_store):
        """The health monitor is started as part of initialization."""
        monitor = HealthMonitor(fresh_store, HealthCheckConfig(check_interval=3600))
        initializer = Initializer(fresh_store, monitor, fast_config())

        await initializer.initialize()

        assert monitor.is_running
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_cooldown_skips_repeat(self, fresh_store):
        """A second call within the cooldown does no work."""
        initializer = Initializer(fresh_store, config=fast_config(cooldown=60))

        await initializer.initialize()
        await initializer.initialize()

        assert initializer.state.total_attempts == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_attempt(self):
        """Concurrent callers await the same attempt."""
        store = make_store()
        gate = asyncio.Event()

        async def slow_init():
            await gate.wait()

        store.init.side_effect = slow_init
        initializer = Initializer(store, config=fast_config())

        callers = [asyncio.create_task(initializer.initialize()) for _ in range(3)]
        while not store.init.await_count:
            await asyncio.sleep(0)
        assert initializer.state.is_initializing
        gate.set()
        await asyncio.gather(*callers)

        assert store.init.await_count == 1
        assert initializer.state.total_attempts == 1

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        """Failed attempts are retried."""
        store = make_store()
        store.init.side_effect = [RuntimeError("locked"), RuntimeError("locked"), None]
        initializer = Initializer(store, config=fast_config())

        await initializer.initialize()

        assert initializer.state.total_attempts == 3
        assert initializer.state.consecutive_failures == 0
        assert initializer.state.last_error is None

    @pytest.mark.asyncio
    async def test_unhealthy_store_is_a_failure(self):
        """An attempt fails when the store does not pass its health check."""
        store = make_store()
        store.health_check.side_effect = [False, True]
        initializer = Initializer(store, config=fast_config())

        await initializer.initialize()

        assert initializer.state.total_attempts == 2

    @pytest.mark.asyncio
    async def test_self_test_mismatch_is_a_failure(self):
        """An attempt fails when the sentinel row does not read back."""
        store = make_store()
        store.get_by_id.side_effect = [None, {"data": {"test": True}}]
        initializer = Initializer(store, config=fast_config())

        await initializer.initialize()

        assert initializer.state.total_attempts == 2

    @pytest.mark.asyncio
    async def test_emergency_reset_after_streak(self):
        """Every third consecutive failure runs an emergency reset."""
        store = make_store()
        store.init.side_effect = RuntimeError("file is not a database")
        initializer = Initializer(store, config=fast_config(max_retries=7))

        with pytest.raises(InitializationError) as exc_info:
            await initializer.initialize()

        assert exc_info.value.attempts == 7
        assert store.emergency_reset.await_count == 2
        assert initializer.state.total_attempts == 7
        assert not initializer.state.is_initialized
        assert not initializer.state.is_initializing
        assert "file is not a database" in initializer.state.last_error

    @pytest.mark.asyncio
    async def test_attempt_timeout(self):
        """An attempt that hangs is abandoned after the timeout."""
        store = make_store()

        async def hang():
            await asyncio.sleep(5)

        store.init.side_effect = hang
        initializer = Initializer(
            store, config=fast_config(max_retries=1, initialization_timeout=0.05)
        )

        with pytest.raises(InitializationError) as exc_info:
            await initializer.initialize()
        assert isinstance(exc_info.value.cause, TimeoutError)


class TestForceReinitialize:
    """Tests for Initializer.force_reinitialize."""

    @pytest.mark.asyncio
    async def test_soft_path_keeps_data(self, fresh_store):
        """A healthy store is reinitialized without losing rows."""
        initializer = Initializer(fresh_store, config=fast_config(cooldown=60))
        await initializer.initialize()
        await fresh_store.save_user_data({"id": "u1"})

        await initializer.force_reinitialize()

        assert initializer.state.is_initialized
        assert await fresh_store.get_user_data("u1") is not None

    @pytest.mark.asyncio
    async def test_destructive_path(self):
        """When the soft reset fails the store is hard reset and booted again."""
        store = make_store()
        store.soft_reset.side_effect = RuntimeError("malformed")
        initializer = Initializer(store, config=fast_config())

        await initializer.force_reinitialize()

        store.hard_reset.assert_awaited_once()
        store.emergency_reset.assert_not_awaited()
        store.init.assert_awaited_once()
        assert initializer.state.is_initialized

    @pytest.mark.asyncio
    async def test_emergency_when_hard_reset_fails(self):
        """A failing hard reset falls back to an emergency reset."""
        store = make_store()
        store.soft_reset.side_effect = RuntimeError("malformed")
        store.hard_reset.side_effect = OSError("file busy")
        initializer = Initializer(store, config=fast_config())

        await initializer.force_reinitialize()

        store.emergency_reset.assert_awaited_once()
        assert initializer.state.is_initialized
