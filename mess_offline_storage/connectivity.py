"""
Connectivity observer.

Turns a platform network signal (or an active HTTP probe) into an online
flag plus edge events. Listeners subscribe and get back an unsubscribe
callable; ``close()`` drops every listener so none leak past teardown.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import aiohttp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectivityEvent:
    """A change of connectivity."""

    is_online: bool
    previous: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def became_online(self) -> bool:
        return self.is_online and not self.previous


ConnectivityCallback = Callable[[ConnectivityEvent], None | Awaitable[None]]


class ConnectivityObserver:
    """Online/offline flag with subscribe/unsubscribe edge notifications.

    Example:
        >>> observer = ConnectivityObserver()
        >>> unsubscribe = observer.subscribe(lambda e: print(e.is_online))
        >>> observer.update(False)
        >>> unsubscribe()
    """

    def __init__(
        self,
        initial_online: bool = True,
        probe_url: str | None = None,
        probe_timeout: float = 5.0,
    ):
        """Initialize the observer.

        Args:
            initial_online: Assumed state before the first signal
            probe_url: URL probed by start_polling()
            probe_timeout: Seconds before a probe counts as offline
        """
        self._online = initial_online
        self.probe_url = probe_url
        self.probe_timeout = probe_timeout
        self._subscribers: list[ConnectivityCallback] = []
        self._callback_tasks: set[asyncio.Task] = set()
        self._poll_task: asyncio.Task[None] | None = None

    @property
    def is_online(self) -> bool:
        return self._online

    def update(self, is_connected: bool) -> ConnectivityEvent | None:
        """Feed a platform signal. Returns the event if the state changed."""
        previous = self._online
        self._online = bool(is_connected)
        if previous == self._online:
            return None

        event = ConnectivityEvent(is_online=self._online, previous=previous)
        logger.info(f"Connectivity changed: {'online' if event.is_online else 'offline'}")
        for callback in list(self._subscribers):
            self._dispatch(callback, event)
        return event

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """Register a listener. Async listeners run as background tasks."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _dispatch(self, callback: ConnectivityCallback, event: ConnectivityEvent) -> None:
        try:
            result = callback(event)
        except Exception:
            logger.exception("Connectivity listener failed")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Task) -> None:
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Connectivity listener failed: {task.exception()}")

    async def probe(self) -> bool:
        """Check reachability of probe_url. Any HTTP answer below 500 counts as online."""
        if not self.probe_url:
            return self._online
        timeout = aiohttp.ClientTimeout(total=self.probe_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.probe_url) as response:
                    return response.status < 500
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Connectivity probe failed: {e!r}")
            return False

    async def start_polling(self, interval: float = 30.0) -> None:
        """Probe periodically and feed results into update()."""
        if self._poll_task is not None:
            return

        async def poll_loop() -> None:
            while True:
                self.update(await self.probe())
                await asyncio.sleep(interval)

        self._poll_task = asyncio.create_task(poll_loop())

    async def stop_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

    async def close(self) -> None:
        """Stop polling and drop all listeners."""
        await self.stop_polling()
        self._subscribers.clear()
        for task in list(self._callback_tasks):
            task.cancel()
        self._callback_tasks.clear()
