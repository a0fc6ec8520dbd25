"""ID and timestamp utilities for the offline store.

Centralizes the ID format so callers never build record IDs themselves.

Record IDs: {prefix}_{epoch_millis}_{random hex} (prefix optional)
Sync queue IDs: sync_{epoch_millis}_{random hex}

All timestamps in stored rows are integer epoch milliseconds.
"""

from __future__ import annotations

import time
import uuid


def now_ms() -> int:
    """Current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def new_record_id(prefix: str | None = None) -> str:
    """Generate a record ID that sorts roughly by creation time."""
    suffix = f"{now_ms()}_{uuid.uuid4().hex[:12]}"
    return f"{prefix}_{suffix}" if prefix else suffix


def sync_item_id() -> str:
    """Generate a sync queue item ID."""
    return new_record_id("sync")
