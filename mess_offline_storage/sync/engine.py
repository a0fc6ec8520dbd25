"""
Sync engine.

Drains the sync queue against the remote API:
- One pass at a time (a second trigger while a pass runs is a no-op)
- FIFO replay, stopping as soon as connectivity drops
- Per-item timeout; failures stay pending with an incremented retry count
- Confirmed items are cleaned up; everything is cleared only when the
  pass confirmed every item and nothing new arrived meanwhile
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime

from ..config import SyncConfig
from ..connectivity import ConnectivityEvent, ConnectivityObserver
from ..exceptions import SyncError
from ..logging_utils import bind_logger
from ..store import BUSINESS_TABLES, StoreEngine, Table
from .client import RemoteApiClient
from .queue import SyncQueue
from .replay import build_replay_request, record_id_of, table_for_endpoint
from .types import SyncQueueItem, SyncResult, SyncState

logger = logging.getLogger(__name__)


class SyncEngine:
    """Replays queued mutations against the remote API.

    Handles:
    - Drain passes triggered by a timer or by an online edge
    - GET replay for read-only endpoints
    - Business-row cleanup after confirmation
    """

    def __init__(
        self,
        queue: SyncQueue,
        api: RemoteApiClient,
        connectivity: ConnectivityObserver,
        config: SyncConfig | None = None,
    ):
        """Initialize the sync engine.

        Args:
            queue: Sync queue to drain
            api: Remote API client
            connectivity: Source of the online flag and online edges
            config: Sync configuration
        """
        self.queue = queue
        self.store: StoreEngine = queue.store
        self.api = api
        self.connectivity = connectivity
        self.config = config or SyncConfig()

        self._state = SyncState.IDLE
        self._in_flight = False
        self._last_sync: datetime | None = None
        self._last_result: SyncResult | None = None
        self._sync_task: asyncio.Task[None] | None = None
        self._edge_task: asyncio.Task[SyncResult] | None = None
        self._unsubscribe = None

    @property
    def state(self) -> SyncState:
        """Get current sync state."""
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._in_flight

    @property
    def last_sync(self) -> datetime | None:
        return self._last_sync

    @property
    def last_result(self) -> SyncResult | None:
        return self._last_result

    async def sync_pending_data(self) -> SyncResult:
        """Run one drain pass.

        Returns:
            SyncResult for this pass; a no-op result if a pass is already
            running or the device is offline
        """
        if self._in_flight:
            logger.debug("Sync already in progress, skipping trigger")
            return SyncResult(success=False, errors=["sync already in progress"])

        if not self.connectivity.is_online:
            self._state = SyncState.OFFLINE
            logger.debug("Offline, skipping sync")
            return SyncResult(success=False, errors=["offline"])

        self._in_flight = True
        self._state = SyncState.SYNCING
        start = time.monotonic()
        try:
            result = await self._drain()
            self._state = SyncState.IDLE if self.connectivity.is_online else SyncState.OFFLINE
        except Exception as e:
            logger.error(f"Sync pass failed: {e}")
            self._state = SyncState.ERROR
            result = SyncResult(success=False, errors=[str(e)])
        finally:
            self._in_flight = False

        result.duration_ms = int((time.monotonic() - start) * 1000)
        self._last_sync = datetime.now(UTC)
        self._last_result = result
        if result.synced or result.failed:
            logger.info(
                f"Sync pass: {len(result.synced)} synced, {len(result.failed)} failed, "
                f"{result.skipped} skipped in {result.duration_ms}ms"
            )
        return result

    async def _drain(self) -> SyncResult:
        items = await self.queue.get_pending_sync()
        result = SyncResult(success=True)
        if not items:
            return result

        logger.info(f"Syncing {len(items)} pending items")
        for index, item in enumerate(items):
            if not self.connectivity.is_online:
                result.skipped = len(items) - index
                logger.warning(f"Went offline mid-sync, leaving {result.skipped} items pending")
                break

            log = bind_logger(logger, item_id=item.id, endpoint=item.endpoint)
            failure = await self._replay(item)
            if failure is None:
                await self.queue.mark_synced(item.id)
                result.synced.append(item.id)
                await self._remove_business_row(item)
            else:
                retry_count = await self.queue.mark_failed(item.id, failure.message)
                result.failed.append(item.id)
                result.errors.append(f"{item.id}: {failure.message}")
                log.warning(
                    f"Sync failed for {item.id} (attempt {retry_count}): {failure.message}",
                    extra={"retry_count": retry_count},
                )

        await self._cleanup(result)
        result.success = not result.failed and not result.skipped
        return result

    async def _replay(self, item: SyncQueueItem) -> SyncError | None:
        """Send one item. Returns None on success, else the failure."""
        request = build_replay_request(item, self.config.get_only_endpoints)
        bind_logger(logger, item_id=item.id, endpoint=item.endpoint).debug(
            f"Replaying {item.id} as {request.method} {request.endpoint}"
        )
        try:
            async with asyncio.timeout(self.config.item_timeout):
                response = await self.api.request(
                    request.method,
                    request.endpoint,
                    request.body,
                    headers=request.headers,
                    timeout=self.config.item_timeout,
                )
        except TimeoutError as e:
            return SyncError(f"timed out after {self.config.item_timeout}s", item.id, e)
        except Exception as e:
            return SyncError(str(e) or type(e).__name__, item.id, e)

        if response.success:
            return None
        return SyncError(response.error or f"HTTP {response.status}", item.id)

    async def _remove_business_row(self, item: SyncQueueItem) -> None:
        table = table_for_endpoint(item.endpoint)
        record_id = record_id_of(item.data)
        if table is None or record_id is None:
            return
        try:
            await self.store.delete_data(table, record_id)
        except Exception as e:
            # Already confirmed remotely
            bind_logger(logger, table=table.value, item_id=item.id).warning(
                f"Could not remove {table.value}/{record_id} after sync: {e}"
            )

    async def _cleanup(self, result: SyncResult) -> None:
        if not result.synced:
            return

        async with self.queue.enqueue_guard:
            if (
                not result.failed
                and not result.skipped
                and await self.queue.get_pending_count() == 0
            ):
                await self.store.clear_tables([*BUSINESS_TABLES, Table.SYNC_QUEUE])
                result.cleared_all = True
                logger.info("All pending items synced, cleared local business tables and queue")
            else:
                result.cleared_all = False

        if result.cleared_all:
            await self.store.reclaim_space()
        else:
            await self.queue.remove_many(result.synced)

    # =========================================================================
    # Triggers
    # =========================================================================

    def _on_connectivity(self, event: ConnectivityEvent) -> None:
        if not event.became_online:
            if not event.is_online:
                self._state = SyncState.OFFLINE
            return
        logger.info("Back online, triggering sync")
        if self._edge_task is None or self._edge_task.done():
            self._edge_task = asyncio.create_task(self.sync_pending_data())

    async def start_auto_sync(self) -> None:
        """Start the periodic timer and sync on every online edge."""
        if self._unsubscribe is None:
            self._unsubscribe = self.connectivity.subscribe(self._on_connectivity)

        if self._sync_task is not None:
            return

        async def sync_loop() -> None:
            while True:
                await asyncio.sleep(self.config.sync_interval)
                try:
                    await self.sync_pending_data()
                except Exception as e:
                    logger.error(f"Auto-sync pass failed: {e}")

        self._sync_task = asyncio.create_task(sync_loop())
        logger.info(f"Auto-sync started (every {self.config.sync_interval}s)")

    async def stop_auto_sync(self) -> None:
        """Stop the timer, the online-edge trigger and any pass it started."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        for task in (self._sync_task, self._edge_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._sync_task = None
        self._edge_task = None
