"""
Riffle Offline — Connectivity Observer
========================================

What:  Single source of truth for "are outbound calls expected to work?".
How:   Holds one boolean, seeded from the platform's reachability signal at
       startup and updated through `set_online()` (platform notifications)
       or `probe()` (an active GET against the API's /health route).
       Subscribers are told about transitions only: `on_online` handlers
       fire once when the state flips offline → online, `on_offline` once
       for online → offline. Repeating the current state fires nothing.

is_online() is a heuristic. A True answer does not promise the next call
succeeds; callers still handle NetworkFailure.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

import httpx

from riffle.config import settings

logger = logging.getLogger(__name__)

TransitionHandler = Callable[[], Union[None, Awaitable[None]]]


class ConnectivityObserver:
    """
    Tracks online/offline state and notifies subscribers on transitions.

    Handlers may be plain functions or coroutine functions. Coroutine
    handlers are scheduled on the running event loop; a failing handler is
    logged and does not affect the others.
    """

    def __init__(self, initial_online: bool = True):
        self._online = bool(initial_online)
        self._online_handlers: List[TransitionHandler] = []
        self._offline_handlers: List[TransitionHandler] = []
        self._tasks: Set[asyncio.Task] = set()

    # ── Queries ───────────────────────────────────────────────────────────

    def is_online(self) -> bool:
        return self._online

    # ── Subscriptions ─────────────────────────────────────────────────────

    def on_online(self, handler: TransitionHandler) -> Callable[[], None]:
        """Subscribe to offline → online transitions. Returns an unsubscribe callable."""
        return self._subscribe(self._online_handlers, handler)

    def on_offline(self, handler: TransitionHandler) -> Callable[[], None]:
        """Subscribe to online → offline transitions. Returns an unsubscribe callable."""
        return self._subscribe(self._offline_handlers, handler)

    @staticmethod
    def _subscribe(handlers: List[TransitionHandler], handler: TransitionHandler) -> Callable[[], None]:
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    # ── State updates ─────────────────────────────────────────────────────

    def set_online(self, online: bool) -> bool:
        """
        Feed a reachability signal from the host platform.

        Returns:
            True if this call changed the state (and fired handlers).
        """
        online = bool(online)
        if online == self._online:
            return False
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        handlers = self._online_handlers if online else self._offline_handlers
        for handler in list(handlers):
            self._dispatch(handler)
        return True

    async def probe(
        self,
        client: Optional[httpx.AsyncClient] = None,
        url: Optional[str] = None,
    ) -> bool:
        """
        Actively check reachability of the journal API and record the result.

        A 2xx answer from /health counts as online; any other status or a
        transport error counts as offline.

        Returns:
            The new is_online() value.
        """
        url = url or f"{settings.api_base_url}/health"
        owns_client = client is None
        client = client or httpx.AsyncClient(timeout=settings.connectivity_probe_timeout)
        try:
            response = await client.get(url, timeout=settings.connectivity_probe_timeout)
            reachable = response.is_success
        except httpx.HTTPError as e:
            logger.debug("Connectivity probe to %s failed: %s", url, str(e))
            reachable = False
        finally:
            if owns_client:
                await client.aclose()
        self.set_online(reachable)
        return reachable

    # ── Internal ──────────────────────────────────────────────────────────

    def _dispatch(self, handler: TransitionHandler) -> None:
        try:
            result: Any = handler()
        except Exception as e:
            logger.warning("Connectivity handler %r failed: %s", handler, str(e), exc_info=True)
            return
        if inspect.isawaitable(result):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("No running event loop for connectivity handler %r", handler)
                if inspect.iscoroutine(result):
                    result.close()
                return
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Connectivity handler failed: %s", str(task.exception()))

    async def drain(self) -> None:
        """Wait for coroutine handlers scheduled by earlier transitions."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
