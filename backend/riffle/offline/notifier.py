"""
Riffle Offline — Cross-Context Notifier
=========================================

What:  A broadcast channel that tells every open UI surface a sync batch
       finished, so it can refetch its list and pending-count badge.
How:   publish(message) hands the message to every handler subscribed at
       that moment; subscribe(handler) returns a token whose
       `unsubscribe()` detaches the handler.

Delivery rules:
    - at most once per message per subscriber
    - best effort: a handler that raises is logged and skipped; the other
      subscribers still receive the message and publish() does not raise
    - no replay: a surface that subscribes later never sees earlier
      messages and must read pending/cached state itself on startup
"""

import inspect
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, Union

from riffle.schemas.offline import SyncCompleteMessage

logger = logging.getLogger(__name__)

MessageHandler = Callable[[SyncCompleteMessage], Union[None, Awaitable[None]]]


class Subscription:
    """Token returned by BroadcastChannel.subscribe()."""

    def __init__(self, channel: "BroadcastChannel", token: int):
        self._channel = channel
        self.token = token

    @property
    def active(self) -> bool:
        return self.token in self._channel._handlers

    def unsubscribe(self) -> None:
        """Detach the handler. Calling it again is harmless."""
        self._channel._handlers.pop(self.token, None)


class BroadcastChannel:
    """
    In-process pub/sub for sync notifications.

    One channel is shared by the background trigger (publisher) and every
    UI surface (subscribers). Handlers may be sync or async; async handlers
    are awaited in subscription order.
    """

    def __init__(self, name: str = "riffle-sync"):
        self.name = name
        self._handlers: Dict[int, MessageHandler] = {}
        self._ids = itertools.count(1)

    def subscribe(self, handler: MessageHandler) -> Subscription:
        token = next(self._ids)
        self._handlers[token] = handler
        return Subscription(self, token)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    async def publish(self, message: Union[SyncCompleteMessage, Dict[str, Any]]) -> int:
        """
        Deliver `message` to the current subscribers.

        Returns:
            Number of subscribers whose handler completed without error.
        """
        if not isinstance(message, SyncCompleteMessage):
            message = SyncCompleteMessage.model_validate(message)

        delivered = 0
        # Snapshot: handlers added or removed during delivery do not
        # affect this message
        for token, handler in list(self._handlers.items()):
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.warning(
                    "Channel %s: subscriber %d failed on %s: %s",
                    self.name, token, message.type, str(e),
                )
        logger.debug(
            "Channel %s published %s(count=%d) to %d subscribers",
            self.name, message.type, message.count, delivered,
        )
        return delivered
