"""
Offline orchestrator.

The façade callers use. It builds the store, queue, sync engine, health
monitor and initializer once, wires them together and owns their
lifecycle. Reads are cache-aside with a network, cache, offline-copy
fallback chain; writes are persisted locally first, then sent, and queued
for the next sync pass when sending fails.

Example:
    >>> async with OfflineOrchestrator(OfflineConfig.from_env()) as offline:
    ...     result = await offline.submit_meal_form({"breakfast": True})
    ...     print(result.offline, result.message)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .config import OfflineConfig
from .connectivity import ConnectivityObserver
from .exceptions import InitializationError, OfflineStorageError
from .health import HealthMonitor, HealthStatus
from .id_utils import new_record_id, now_ms
from .initializer import Initializer
from .store import StoreEngine, Table
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
)
from .sync.replay import (
    BODY_KEY,
    HEADERS_KEY,
    METHOD_KEY,
    build_replay_request,
    table_for_endpoint,
)

logger = logging.getLogger(__name__)

BAZAR_SUBMIT_ENDPOINT = "/bazar/submit"
MEAL_SUBMIT_ENDPOINT = "/meals/submit"
PAYMENT_SUBMIT_ENDPOINT = "/payments"

FetchFn = Callable[[], Awaitable[Any]]


class OfflineOrchestrator:
    """Composition root and caller-facing API of the offline layer.

    Construct once at process start, call start() (or use ``async with``),
    and destroy() on shutdown. Nothing here is module-global.
    """

    def __init__(
        self,
        config: OfflineConfig | None = None,
        api: RemoteApiClient | None = None,
        connectivity: ConnectivityObserver | None = None,
        store: StoreEngine | None = None,
    ):
        """Wire the components. No I/O happens until start().

        Args:
            config: Aggregate configuration
            api: Remote API client (default: aiohttp client from config.api)
            connectivity: Connectivity observer (default: a new one, assumed online)
            store: Store engine (default: one from config.store)
        """
        self.config = config or OfflineConfig()
        self._owns_api = api is None
        self._owns_connectivity = connectivity is None

        self.store = store or StoreEngine(self.config.store)
        self.api = api or AiohttpApiClient(self.config.api)
        self.connectivity = connectivity or ConnectivityObserver()
        self.queue = SyncQueue(self.store, self.config.sync.max_retries)
        self.sync_engine = SyncEngine(self.queue, self.api, self.connectivity, self.config.sync)
        self.health_monitor = HealthMonitor(self.store, self.config.health)
        self.initializer = Initializer(self.store, self.health_monitor, self.config.init)

        self._started = False
        self._degraded = False
        self._sweep_task: asyncio.Task[None] | None = None

    @classmethod
    async def create(cls, config: OfflineConfig | None = None, **kwargs: Any) -> OfflineOrchestrator:
        """Create and start an orchestrator."""
        orchestrator = cls(config, **kwargs)
        await orchestrator.start()
        return orchestrator

    async def __aenter__(self) -> OfflineOrchestrator:
        if not self._started:
            await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.destroy()

    @property
    def is_degraded(self) -> bool:
        """True when initialization failed: reads are cache-only, writes queue-only."""
        return self._degraded

    def is_network_available(self) -> bool:
        return self.connectivity.is_online

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Initialize the store and start the sync and cache-sweep timers.

        An initialization failure does not raise: the orchestrator keeps
        running in degraded mode.
        """
        if self._started:
            return

        try:
            await self.initializer.initialize()
            self._degraded = False
        except InitializationError as e:
            self._degraded = True
            logger.error(f"Offline storage running in degraded mode: {e}")

        await self.sync_engine.start_auto_sync()
        self._start_cache_sweep()
        self._started = True

    def _start_cache_sweep(self) -> None:
        if self._sweep_task is not None:
            return

        async def sweep_loop() -> None:
            while True:
                await asyncio.sleep(self.config.sync.cache_sweep_interval)
                try:
                    await self.store.clear_expired_cache()
                except Exception as e:
                    logger.warning(f"Expired cache sweep failed: {e}")

        self._sweep_task = asyncio.create_task(sweep_loop())

    async def destroy(self) -> None:
        """Stop timers, unsubscribe from connectivity, stop monitoring, close the store."""
        await self.sync_engine.stop_auto_sync()

        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        await self.health_monitor.stop()

        if self._owns_connectivity:
            await self.connectivity.close()
        if self._owns_api:
            await self.api.close()

        try:
            await self.store.close()
        except Exception as e:
            logger.error(f"Failed to close store: {e}")

        self._started = False
        logger.info("Offline storage destroyed")

    # =========================================================================
    # Cache and offline copies
    # =========================================================================

    async def set_cache_data(self, key: str, data: Any, ttl: float | None = None) -> None:
        """Cache data under key (default lifetime: sync.cache_expiry)."""
        ttl = self.config.sync.cache_expiry if ttl is None else ttl
        await self.store.save_cache_data(key, data, ttl)
        logger.debug(f"Cached data for key: {key}")

    async def get_cache_data(self, key: str) -> Any:
        """Unexpired cached data for key, or None."""
        return await self.store.get_cache_data(key)

    async def clear_cache(self) -> int:
        return await self.store.clear_table(Table.API_CACHE)

    async def set_offline_data(self, key: str, data: Any) -> None:
        """Keep a raw offline copy of data, used when neither network nor cache answers."""
        await self.store.save_data(
            Table.DASHBOARD_DATA,
            {
                "id": key,
                "table_name": Table.DASHBOARD_DATA.value,
                "data": data,
                "timestamp": now_ms(),
                "version": "1.0",
            },
        )

    async def get_offline_data(self, key: str) -> Any:
        row = await self.store.get_by_id(Table.DASHBOARD_DATA, key)
        return row.get("data") if row else None

    async def get_data_with_offline_fallback(
        self,
        key: str,
        fetch_fn: FetchFn,
        use_cache: bool = True,
        cache_only: bool = False,
    ) -> FetchResult:
        """
        Cache-aside read.

        Order: network (when online), then unexpired cache, then the raw
        offline copy. A network answer of "no data" is returned as is.

        Args:
            key: Cache key
            fetch_fn: Coroutine function fetching fresh data; may return an
                ApiResponse, which counts as a failure when not successful
            use_cache: Consult the cache on network failure
            cache_only: Skip the network

        Returns:
            FetchResult with the data and where it came from
        """
        network_error: str | None = None
        if self.is_network_available() and not cache_only and not self._degraded:
            try:
                data = await fetch_fn()
                if isinstance(data, ApiResponse):
                    if not data.success:
                        raise OfflineStorageError(data.error or f"HTTP {data.status}")
                    data = data.data
            except Exception as e:
                network_error = str(e) or type(e).__name__
                logger.info(f"Network fetch failed for {key}, trying cache: {network_error}")
            else:
                if data is not None:
                    await self._safe(self.set_cache_data(key, data), f"cache {key}")
                return FetchResult(data=data, source=DataSource.NETWORK)

        if use_cache:
            cached = await self._safe(self.get_cache_data(key), f"read cache {key}")
            if cached is not None:
                return FetchResult(data=cached, source=DataSource.CACHE, error=network_error)

        offline = await self._safe(self.get_offline_data(key), f"read offline copy {key}")
        if offline is not None:
            return FetchResult(data=offline, source=DataSource.OFFLINE, error=network_error)

        logger.info(f"No data available for {key}")
        return FetchResult(
            data=None, source=DataSource.OFFLINE, error=network_error or "no data available offline"
        )

    async def _safe(self, coro: Awaitable[Any], what: str) -> Any:
        try:
            return await coro
        except Exception as e:
            logger.warning(f"Could not {what}: {e}")
            return None

    # =========================================================================
    # Writes
    # =========================================================================

    async def submit_form(
        self,
        endpoint: str,
        data: dict[str, Any],
        action: SyncAction | str = SyncAction.CREATE,
    ) -> FormSubmissionResult:
        """
        Persist locally, try to send, queue on failure.

        Never raises for store or network errors: the caller is told whether
        the write was sent or queued.
        """
        action = SyncAction.parse(action)
        record = dict(data)
        if not record.get("id"):
            record["id"] = new_record_id()
        table = table_for_endpoint(endpoint)

        if not self._degraded:
            await self._persist_local(table, record, action)

        send_error: str | None = None
        if self.is_network_available() and not self._degraded:
            response = await self._send(endpoint, record, action)
            if response.success:
                if table is not None and action != SyncAction.DELETE:
                    await self._safe(self.store.delete_data(table, record["id"]), f"clean up {table.value}")
                logger.info(f"Submitted {action.value} {endpoint}")
                return FormSubmissionResult(
                    success=True, offline=False, message="Submitted successfully", data=response.data
                )
            send_error = response.error or f"HTTP {response.status}"
            logger.warning(f"Submit to {endpoint} failed, queueing for sync: {send_error}")

        try:
            item = await self.queue.add_to_sync_queue(action, endpoint, record)
        except Exception as e:
            logger.error(f"Could not queue {action.value} {endpoint}: {e}")
            return FormSubmissionResult(
                success=False, offline=True, message="Could not save offline", error=str(e)
            )

        return FormSubmissionResult(
            success=True,
            offline=True,
            message="Saved offline, will sync when online",
            data=record,
            queued_id=item.id,
            error=send_error,
        )

    async def _persist_local(self, table: Table | None, record: dict[str, Any], action: SyncAction) -> None:
        if table is None:
            return
        if action == SyncAction.DELETE:
            await self._safe(self.store.delete_data(table, record["id"]), f"delete from {table.value}")
        else:
            await self._safe(self.store.save_data(table, record), f"save to {table.value}")

    async def _send(self, endpoint: str, record: dict[str, Any], action: SyncAction) -> ApiResponse:
        request = build_replay_request(
            SyncQueueItem(action=action, endpoint=endpoint, data=record),
            self.config.sync.get_only_endpoints,
        )
        try:
            async with asyncio.timeout(self.config.api.timeout):
                return await self.api.request(
                    request.method, request.endpoint, request.body, headers=request.headers
                )
        except TimeoutError:
            return ApiResponse(success=False, error=f"timed out after {self.config.api.timeout}s")
        except Exception as e:
            return ApiResponse(success=False, error=str(e) or type(e).__name__)

    async def submit_bazar_form(self, data: dict[str, Any]) -> FormSubmissionResult:
        return await self.submit_form(BAZAR_SUBMIT_ENDPOINT, data, SyncAction.CREATE)

    async def submit_meal_form(self, data: dict[str, Any]) -> FormSubmissionResult:
        return await self.submit_form(MEAL_SUBMIT_ENDPOINT, data, SyncAction.CREATE)

    async def submit_payment_form(self, data: dict[str, Any]) -> FormSubmissionResult:
        return await self.submit_form(PAYMENT_SUBMIT_ENDPOINT, data, SyncAction.CREATE)

    # =========================================================================
    # Queue management
    # =========================================================================

    async def store_request(
        self,
        endpoint: str,
        data: Any = None,
        method: str = "POST",
        headers: dict[str, str] | None = None,
    ) -> str:
        """Queue a raw request for replay with its original method and headers."""
        if isinstance(data, dict):
            payload = dict(data)
        else:
            payload = {BODY_KEY: data}
        payload[METHOD_KEY] = method.upper()
        if headers:
            payload[HEADERS_KEY] = headers
        item = await self.queue.add_to_sync_queue(SyncAction.CREATE, endpoint, payload)
        return item.id

    async def get_pending_requests(self) -> list[SyncQueueItem]:
        return await self.queue.get_pending_sync()

    async def get_pending_count(self) -> int:
        return await self.queue.get_pending_count()

    async def remove_request(self, request_id: str) -> bool:
        return await self.queue.remove(request_id)

    async def remove_pending_requests_by_endpoint(self, endpoint: str) -> int:
        return await self.queue.remove_by_endpoint(endpoint)

    async def clear_sync_queue(self) -> int:
        return await self.queue.clear()

    async def sync_now(self) -> SyncResult:
        """Run a drain pass immediately."""
        return await self.sync_engine.sync_pending_data()

    # =========================================================================
    # Database management
    # =========================================================================

    async def get_database_info(self) -> dict[str, Any]:
        return {
            "path": self.store.db_path,
            "bypass": self.store.is_bypassed,
            "degraded": self._degraded,
            "tables": await self.store.get_table_counts(),
        }

    def get_health_status(self) -> HealthStatus:
        return self.health_monitor.get_status()

    async def reset_database(self) -> None:
        """Soft reset, falling back to a hard reset (local data is lost)."""
        logger.warning("Resetting local database")
        try:
            await self.store.soft_reset()
            if await self.store.health_check():
                return
        except Exception as e:
            logger.error(f"Soft reset failed, trying hard reset: {e}")
        await self.store.hard_reset()
        self._degraded = False
