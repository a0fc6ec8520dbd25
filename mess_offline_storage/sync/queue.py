"""
Durable sync queue.

The outbox of mutations waiting for the remote API. Items are stored in
the ``sync_queue`` table through the store engine and move from
``pending`` to ``synced`` only after the remote side confirms them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from ..exceptions import ValidationError
from ..store import Filter, StoreEngine, Table
from .types import QueueStatus, SyncAction, SyncQueueItem

logger = logging.getLogger(__name__)


class SyncQueue:
    """Outbox of pending mutations, replayed in enqueue order.

    ``enqueue_guard`` serializes enqueues against the drain pass's final
    "is the queue empty, then clear everything" step, so an item added
    while that step runs cannot be cleared with it.
    """

    def __init__(self, store: StoreEngine, max_retries: int = 3):
        """Initialize the queue.

        Args:
            store: Store engine holding the sync_queue table
            max_retries: Replay attempts before an item is reported as exhausted
        """
        self.store = store
        self.max_retries = max_retries
        self.enqueue_guard = asyncio.Lock()

    async def add_to_sync_queue(
        self,
        action: SyncAction | str,
        endpoint: str,
        data: Any = None,
    ) -> SyncQueueItem:
        """Enqueue a mutation. Always succeeds locally unless the store is unusable.

        Args:
            action: CREATE, UPDATE or DELETE
            endpoint: Remote resource path
            data: Payload to replay

        Returns:
            The stored item
        """
        if not endpoint or not endpoint.strip():
            raise ValidationError("endpoint", "must not be empty")

        item = SyncQueueItem(
            action=SyncAction.parse(action),
            endpoint=endpoint.strip(),
            data=data,
            max_retries=self.max_retries,
        )
        async with self.enqueue_guard:
            await self.store.save_data(Table.SYNC_QUEUE, item.to_record())

        logger.info(f"Queued {item.action.value} {item.endpoint} ({item.id})")
        return item

    async def get_pending_sync(self) -> list[SyncQueueItem]:
        """Pending items, oldest first."""
        records = await self.store.get_data(
            Table.SYNC_QUEUE, {"status": QueueStatus.PENDING.value}, order_by="timestamp"
        )
        items = [SyncQueueItem.from_record(r) for r in records]
        for item in items:
            if item.is_exhausted:
                logger.warning(
                    f"Sync item {item.id} has failed {item.retry_count} times "
                    f"(max {item.max_retries}), keeping it pending: {item.last_error}"
                )
        return items

    async def get(self, item_id: str) -> SyncQueueItem | None:
        record = await self.store.get_by_id(Table.SYNC_QUEUE, item_id)
        return SyncQueueItem.from_record(record) if record else None

    async def mark_synced(self, item_id: str) -> bool:
        """Record a confirmed remote acknowledgment."""
        updated = await self.store.update_data(
            Table.SYNC_QUEUE, item_id, {"status": QueueStatus.SYNCED.value, "last_error": None}
        )
        if not updated:
            logger.warning(f"Cannot mark missing sync item {item_id} as synced")
        return updated

    async def mark_failed(self, item_id: str, error: str | None = None) -> int:
        """Record a failed replay. Returns the new retry count."""
        item = await self.get(item_id)
        if item is None:
            logger.warning(f"Cannot mark missing sync item {item_id} as failed")
            return 0
        retry_count = item.retry_count + 1
        await self.store.update_data(
            Table.SYNC_QUEUE, item_id, {"retry_count": retry_count, "last_error": error}
        )
        return retry_count

    async def get_pending_count(self) -> int:
        return await self.store.count(Table.SYNC_QUEUE, {"status": QueueStatus.PENDING.value})

    async def get_failed(self, min_retries: int = 1) -> list[SyncQueueItem]:
        """Pending items that have failed at least ``min_retries`` times."""
        records = await self.store.get_data(
            Table.SYNC_QUEUE,
            [
                Filter("status", "=", QueueStatus.PENDING.value),
                Filter("retry_count", ">=", min_retries),
            ],
            order_by="timestamp",
        )
        return [SyncQueueItem.from_record(r) for r in records]

    async def remove(self, item_id: str) -> bool:
        return await self.store.delete_data(Table.SYNC_QUEUE, item_id)

    async def remove_many(self, item_ids: Sequence[str]) -> int:
        return await self.store.delete_many(Table.SYNC_QUEUE, item_ids)

    async def remove_by_endpoint(self, endpoint: str) -> int:
        """Drop every queued item for one endpoint. Returns the number removed."""
        removed = await self.store.delete_where(Table.SYNC_QUEUE, {"endpoint": endpoint})
        logger.info(f"Removed {removed} queued items for {endpoint}")
        return removed

    async def clear(self) -> int:
        return await self.store.clear_table(Table.SYNC_QUEUE)
