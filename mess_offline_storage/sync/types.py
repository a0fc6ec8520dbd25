"""
Types shared by the sync queue, the sync engine and the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..exceptions import ValidationError
from ..id_utils import now_ms, sync_item_id


class SyncAction(str, Enum):
    """Kind of mutation a queued item replays."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, value: SyncAction | str) -> SyncAction:
        if isinstance(value, SyncAction):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValidationError("action", "must be CREATE, UPDATE or DELETE", str(value)) from None


class QueueStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"


@dataclass
class SyncQueueItem:
    """One durable outbox entry.

    Attributes:
        id: Unique item id
        action: Mutation kind
        endpoint: Remote resource path
        data: Payload; may carry ``_method``/``_headers`` for replay
        timestamp: Enqueue time in epoch millis (FIFO order key)
        retry_count: Failed replay attempts so far
        max_retries: Attempts after which the item is reported as exhausted
        status: pending until the remote side confirms
        last_error: Message of the last failed attempt
    """

    action: SyncAction
    endpoint: str
    data: Any = None
    id: str = field(default_factory=sync_item_id)
    timestamp: int = field(default_factory=now_ms)
    retry_count: int = 0
    max_retries: int = 3
    status: QueueStatus = QueueStatus.PENDING
    last_error: str | None = None

    @property
    def is_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def to_record(self) -> dict[str, Any]:
        """Convert to a store record."""
        return {
            "id": self.id,
            "action": self.action.value,
            "endpoint": self.endpoint,
            "data": self.data,
            "timestamp": self.timestamp,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "status": self.status.value,
            "last_error": self.last_error,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> SyncQueueItem:
        """Create from a store record."""
        return cls(
            id=record["id"],
            action=SyncAction.parse(record["action"]),
            endpoint=record["endpoint"],
            data=record.get("data"),
            timestamp=int(record.get("timestamp") or 0),
            retry_count=int(record.get("retry_count") or 0),
            max_retries=int(record.get("max_retries") or 3),
            status=QueueStatus(record.get("status") or QueueStatus.PENDING.value),
            last_error=record.get("last_error"),
        )


class SyncState(Enum):
    """Current state of the sync engine."""

    IDLE = "idle"
    SYNCING = "syncing"
    OFFLINE = "offline"
    ERROR = "error"


@dataclass
class SyncResult:
    """Result of one drain pass."""

    success: bool
    synced: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: int = 0
    cleared_all: bool = False
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0


class DataSource(str, Enum):
    """Where a cache-aside read got its data."""

    NETWORK = "network"
    CACHE = "cache"
    OFFLINE = "offline"


@dataclass
class FetchResult:
    data: Any
    source: DataSource
    error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class FormSubmissionResult:
    """Outcome of a form submission. ``success`` is True whether sent or queued."""

    success: bool
    offline: bool
    message: str
    data: Any = None
    queued_id: str | None = None
    error: str | None = None
