"""
Mess Offline Storage

Offline-first persistence and sync layer for meal and bazar data entry.

Provides:
- Embedded SQLite store with serialized access, retry and a recovery ladder
- Durable sync queue replayed FIFO against the remote API
- Health monitoring with automatic recovery
- Cache-aside reads with network, cache and offline-copy fallback

Usage:

    >>> from mess_offline_storage import OfflineConfig, OfflineOrchestrator
    >>> config = OfflineConfig.from_yaml("~/.mess/settings.yaml")
    >>> async with OfflineOrchestrator(config) as offline:
    ...     # Persisted locally, sent now or queued for the next sync pass
    ...     result = await offline.submit_meal_form({"breakfast": True, "date": "2024-05-01"})
    ...
    ...     # Network first, then cache, then the offline copy
    ...     stats = await offline.get_data_with_offline_fallback(
    ...         "meal_stats", lambda: offline.api.get("/meals/stats")
    ...     )

Lower-level components:

    from mess_offline_storage.store import StoreEngine, Table, RecoveryPolicy
    from mess_offline_storage.sync import SyncQueue, SyncEngine, AiohttpApiClient
"""

# Configuration
from .config import (
    ApiConfig,
    HealthCheckConfig,
    InitializationConfig,
    OfflineConfig,
    StoreConfig,
    SyncConfig,
)

# Connectivity
from .connectivity import ConnectivityEvent, ConnectivityObserver

# Exceptions
from .exceptions import (
    InitializationError,
    OfflineStorageError,
    RecoveryError,
    StorageConnectionError,
    StorageIOError,
    StoreCorruptionError,
    StoreNotInitializedError,
    SyncError,
    UnknownTableError,
    ValidationError,
    is_corruption_error,
    is_transient_error,
)

# Health and initialization
from .health import HealthMonitor, HealthStatus
from .initializer import InitializationState, Initializer

# Logging
from .logging_utils import bind_logger, configure_structured_logging

# Façade
from .orchestrator import OfflineOrchestrator

# Store
from .store import RecoveryPolicy, StoreEngine, Table

# Sync
from .sync import (
    AiohttpApiClient,
    ApiResponse,
    DataSource,
    FetchResult,
    FormSubmissionResult,
    RemoteApiClient,
    SyncAction,
    SyncEngine,
    SyncQueue,
    SyncQueueItem,
    SyncResult,
    SyncState,
)

__all__ = [
    # Configuration
    "ApiConfig",
    "HealthCheckConfig",
    "InitializationConfig",
    "OfflineConfig",
    "StoreConfig",
    "SyncConfig",
    # Connectivity
    "ConnectivityEvent",
    "ConnectivityObserver",
    # Health and initialization
    "HealthMonitor",
    "HealthStatus",
    "InitializationState",
    "Initializer",
    # Logging
    "bind_logger",
    "configure_structured_logging",
    # Façade
    "OfflineOrchestrator",
    # Store
    "RecoveryPolicy",
    "StoreEngine",
    "Table",
    # Sync
    "AiohttpApiClient",
    "ApiResponse",
    "DataSource",
    "FetchResult",
    "FormSubmissionResult",
    "RemoteApiClient",
    "SyncAction",
    "SyncEngine",
    "SyncQueue",
    "SyncQueueItem",
    "SyncResult",
    "SyncState",
    # Exceptions
    "OfflineStorageError",
    "StoreNotInitializedError",
    "UnknownTableError",
    "StoreCorruptionError",
    "StorageIOError",
    "StorageConnectionError",
    "RecoveryError",
    "InitializationError",
    "SyncError",
    "ValidationError",
    "is_corruption_error",
    "is_transient_error",
]

__version__ = "0.1.0"
