"""
Transport contract shared by the in-process and WebSocket implementations.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Set

LOG = logging.getLogger(__name__)

MessageHandler = Callable[[str, str], None]


class Transport:
    """
    Ordered-per-topic, at-least-once publish/subscribe channel.

    ``subscribe``, ``unsubscribe`` and ``publish`` never block: they either
    hand the request to the underlying client or raise
    :class:`~rtclink.errors.TransportError`.  Inbound messages are passed to
    ``on_message`` on the event loop thread.
    """

    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        self.on_message: Optional[MessageHandler] = None
        self._connected = False
        self._subscriptions: Set[str] = set()
        self.logger = LOG.getChild(type(self).__name__)

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def subscriptions(self) -> Set[str]:
        return set(self._subscriptions)

    async def connect(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    def subscribe(self, topic: str, qos: int = 1) -> None:
        raise NotImplementedError

    def unsubscribe(self, topic: str) -> None:
        raise NotImplementedError

    def publish(self, topic: str, payload: str, qos: int = 1) -> None:
        raise NotImplementedError

    def _dispatch(self, topic: str, payload: str) -> None:
        handler = self.on_message
        if handler is None:
            self.logger.debug("No handler attached; dropping message on %s", topic)
            return
        try:
            handler(topic, payload)
        except Exception:  # pragma: no cover - handlers log their own failures
            self.logger.exception("Message handler failed for topic %s", topic)
