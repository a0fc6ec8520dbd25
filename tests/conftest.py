"""
Shared test configuration and fixtures.

Store tests run against real SQLite files under tmp_path with all reset and
retry pauses set to zero. The remote API is an AsyncMock of RemoteApiClient
that answers every request successfully unless a test says otherwise.
"""

import logging
from unittest.mock import AsyncMock

import pytest

from mess_offline_storage.config import (
    ApiConfig,
    HealthCheckConfig,
    InitializationConfig,
    OfflineConfig,
    StoreConfig,
    SyncConfig,
)
from mess_offline_storage.connectivity import ConnectivityObserver
from mess_offline_storage.store import StoreEngine
from mess_offline_storage.sync import ApiResponse, RemoteApiClient, SyncEngine, SyncQueue

logger = logging.getLogger(__name__)


def ok(data=None, status: int = 200) -> ApiResponse:
    """Successful API response."""
    return ApiResponse(success=True, data=data, status=status)


def failed(error: str = "server error", status: int = 500) -> ApiResponse:
    """Failed API response."""
    return ApiResponse(success=False, status=status, error=error)


@pytest.fixture
def store_config(tmp_path):
    """Store config on a temp file with no pauses."""
    return StoreConfig(
        db_path=tmp_path / "mess_manager.db",
        lock_timeout=1.0,
        retry_delay=0,
        reset_delay=0,
        emergency_reset_delay=0,
    )


@pytest.fixture
async def store(store_config):
    """Initialized store engine."""
    engine = await StoreEngine.create(store_config)
    yield engine
    await engine.close()


@pytest.fixture
def api():
    """Remote API mock that accepts everything."""
    client = AsyncMock(spec=RemoteApiClient)
    client.request.return_value = ok()
    return client


@pytest.fixture
async def connectivity():
    """Connectivity observer that starts online."""
    observer = ConnectivityObserver(initial_online=True)
    yield observer
    await observer.close()


@pytest.fixture
def sync_config():
    """Sync config whose timers never fire during a test."""
    return SyncConfig(sync_interval=3600, item_timeout=1.0, cache_sweep_interval=3600)


@pytest.fixture
def queue(store):
    return SyncQueue(store)


@pytest.fixture
async def sync_engine(queue, api, connectivity, sync_config):
    engine = SyncEngine(queue, api, connectivity, sync_config)
    yield engine
    await engine.stop_auto_sync()


@pytest.fixture
def offline_config(store_config, sync_config):
    """Aggregate config with fast retries and idle timers."""
    return OfflineConfig(
        store=store_config,
        sync=sync_config,
        health=HealthCheckConfig(check_interval=3600, timeout=1.0),
        init=InitializationConfig(max_retries=3, retry_delay=0, initialization_timeout=5.0),
        api=ApiConfig(base_url="http://api.test/api", timeout=1.0),
    )
