"""
Riffle Offline — Background Sync Trigger
==========================================

What:  Runs the sync batch outside any UI interaction: when connectivity
       returns, on an optional periodic wake-up, or when the app asks for it.
How:   `register_background_sync()` is the one startup call. It registers
       the "sync-journal" task with a BackgroundHost and returns a
       BackgroundSyncHandle used to request wake-ups or sync manually.

Run cycle (BackgroundSyncHandle.run):
    host wakes "sync-journal"
        │
        ├── offline?  → skip, nothing published
        │
        └── online    → await SyncEngine.sync_pending_entries()
                        → publish {type: "SYNC_COMPLETE", count}
        │
        └── always    → re-register the task for the next wake-up

A host registration is consumed when it fires. Re-arming after every
attempt, successful or not, keeps exactly one registration alive.

Hosts:
    BackgroundHost is the platform seam (a service worker, an OS job
    scheduler, ...). AsyncioBackgroundHost implements it on the running
    event loop for the Python client and the tests.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Protocol, Set

from riffle.config import settings
from riffle.exceptions import StorageFailure
from riffle.offline.connectivity import ConnectivityObserver
from riffle.offline.notifier import BroadcastChannel
from riffle.offline.sync_engine import SyncEngine
from riffle.schemas.offline import SyncCompleteMessage, SyncResult

logger = logging.getLogger(__name__)

SyncCallback = Callable[[], Awaitable[object]]


class BackgroundHost(Protocol):
    """Platform scheduler that wakes registered tasks."""

    def register(self, tag: str, callback: SyncCallback) -> None:
        """Arm `tag`; the host calls `callback` once on its next wake-up."""
        ...

    def request(self, tag: str) -> None:
        """Ask the host to wake `tag` as soon as it can."""
        ...

    def unregister(self, tag: str) -> None:
        ...


class AsyncioBackgroundHost:
    """
    BackgroundHost backed by the current asyncio event loop.

    - request() on an armed tag schedules its callback as a task
    - requests that arrive while the tag is disarmed (its run is still in
      progress) collapse into a single follow-up run once it is re-armed
    - periodic_interval > 0 wakes every registered tag on that period
    """

    def __init__(self, periodic_interval: Optional[float] = None):
        self.periodic_interval = (
            settings.sync_periodic_interval
            if periodic_interval is None else periodic_interval
        )
        self._armed: Dict[str, SyncCallback] = {}
        self._requested: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._periodic: Dict[str, asyncio.Task] = {}

    def is_armed(self, tag: str) -> bool:
        return tag in self._armed

    def register(self, tag: str, callback: SyncCallback) -> None:
        loop = asyncio.get_running_loop()
        self._armed[tag] = callback
        if self.periodic_interval > 0 and tag not in self._periodic:
            self._periodic[tag] = loop.create_task(self._tick(tag))
        if tag in self._requested:
            self._requested.discard(tag)
            self.request(tag)

    def request(self, tag: str) -> None:
        callback = self._armed.pop(tag, None)
        if callback is None:
            self._requested.add(tag)
            return
        task = asyncio.get_running_loop().create_task(callback())
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def unregister(self, tag: str) -> None:
        self._armed.pop(tag, None)
        self._requested.discard(tag)
        periodic = self._periodic.pop(tag, None)
        if periodic is not None:
            periodic.cancel()

    async def _tick(self, tag: str) -> None:
        while True:
            await asyncio.sleep(self.periodic_interval)
            logger.debug("Periodic wake-up for %s", tag)
            self.request(tag)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task failed: %s", str(task.exception()))

    async def wait_idle(self) -> None:
        """Wait until no scheduled run (including follow-ups) is left."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in [*self._periodic.values(), *self._tasks]:
            task.cancel()
        await asyncio.gather(
            *self._periodic.values(), *self._tasks, return_exceptions=True
        )
        self._periodic.clear()
        self._tasks.clear()
        self._armed.clear()
        self._requested.clear()


class BackgroundSyncHandle:
    """
    Capability returned by register_background_sync().

    registered is False when the host refused the registration; the
    background path is then off, and sync_now() still works.
    """

    def __init__(
        self,
        engine: SyncEngine,
        channel: BroadcastChannel,
        connectivity: ConnectivityObserver,
        host: BackgroundHost,
        tag: str,
    ):
        self.engine = engine
        self.channel = channel
        self.connectivity = connectivity
        self.host = host
        self.tag = tag
        self.registered = False
        self._closed = False
        self._unsubscribe_online: Optional[Callable[[], None]] = None

    def arm(self) -> bool:
        if self._closed:
            return False
        try:
            self.host.register(self.tag, self.run)
        except Exception as e:
            logger.warning("Background sync registration for %s failed: %s", self.tag, str(e))
            self.registered = False
            return False
        self.registered = True
        return True

    def request_sync(self) -> bool:
        """
        Ask the host for a background run.

        Returns:
            False when background sync is unavailable.
        """
        if not self.registered:
            logger.info("Background sync unavailable for %s; manual sync only", self.tag)
            return False
        try:
            self.host.request(self.tag)
        except Exception as e:
            logger.warning("Background sync request for %s failed: %s", self.tag, str(e))
            return False
        return True

    async def run(self) -> Optional[SyncResult]:
        """
        One background attempt. Called by the host.

        Returns:
            The batch result, or None when skipped (offline) or when the
            pending list could not be read.
        """
        try:
            if not self.connectivity.is_online():
                logger.info("Background sync skipped: offline")
                return None
            return await self._sync_and_publish()
        except StorageFailure as e:
            logger.warning("Background sync aborted: %s", e.message)
            return None
        finally:
            self.arm()

    async def sync_now(self) -> SyncResult:
        """
        Manual "sync now": run a batch and broadcast its completion.

        Raises:
            StorageFailure: the pending list could not be read
        """
        return await self._sync_and_publish()

    async def _sync_and_publish(self) -> SyncResult:
        result = await self.engine.sync_pending_entries()
        await self.channel.publish(SyncCompleteMessage(count=result.count))
        return result

    def close(self) -> None:
        self._closed = True
        if self._unsubscribe_online is not None:
            self._unsubscribe_online()
            self._unsubscribe_online = None
        if self.registered:
            self.host.unregister(self.tag)
            self.registered = False


def register_background_sync(
    engine: SyncEngine,
    channel: BroadcastChannel,
    connectivity: ConnectivityObserver,
    host: Optional[BackgroundHost] = None,
    tag: Optional[str] = None,
) -> BackgroundSyncHandle:
    """
    Register the background sync task and hook it to connectivity changes.

    Never raises for an unsupported host: the failure is logged and the
    returned handle has registered=False.
    """
    handle = BackgroundSyncHandle(
        engine=engine,
        channel=channel,
        connectivity=connectivity,
        host=host if host is not None else AsyncioBackgroundHost(),
        tag=tag or settings.sync_tag,
    )
    if handle.arm():
        logger.info("Background sync registered as %s", handle.tag)
    handle._unsubscribe_online = connectivity.on_online(handle.request_sync)
    return handle
