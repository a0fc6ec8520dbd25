"""
Sync queue, replay rules, remote API client and the drain-pass engine.
"""

from .client import AiohttpApiClient, ApiResponse, RemoteApiClient
from .engine import SyncEngine
from .queue import SyncQueue
from .replay import ReplayRequest, build_replay_request, is_get_only, table_for_endpoint
from .types import (
    DataSource,
    FetchResult,
    FormSubmissionResult,
    QueueStatus,
    SyncAction,
    SyncQueueItem,
    SyncResult,
    SyncState,
)

__all__ = [
    "AiohttpApiClient",
    "ApiResponse",
    "DataSource",
    "FetchResult",
    "FormSubmissionResult",
    "QueueStatus",
    "RemoteApiClient",
    "ReplayRequest",
    "SyncAction",
    "SyncEngine",
    "SyncQueue",
    "SyncQueueItem",
    "SyncResult",
    "SyncState",
    "build_replay_request",
    "is_get_only",
    "table_for_endpoint",
]
