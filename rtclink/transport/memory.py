"""
In-process broker and transport.

Used by the test-suite, the loopback demo and the development service, which
bridges WebSocket clients onto the same broker.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional, Tuple

from ..errors import TransportError
from ..signaling.topics import topic_matches
from .base import Transport

LOG = logging.getLogger(__name__)

Deliver = Callable[[str, str], None]


@dataclass
class _Subscription:
    topic_filter: str
    callback: Deliver
    loop: Optional[asyncio.AbstractEventLoop]


class InMemoryBroker:
    """
    Topic fan-out with MQTT-style filters.

    Deliveries are scheduled on the subscriber's event loop with
    ``call_soon_threadsafe`` so a publish never re-enters the publisher and
    per-topic order is kept.
    """

    def __init__(self, *, history_size: int = 1024) -> None:
        self._lock = threading.Lock()
        self._subscriptions: Dict[int, _Subscription] = {}
        self._tokens = itertools.count(1)
        self.history: Deque[Tuple[str, str]] = deque(maxlen=history_size)

    def subscribe(self, topic_filter: str, callback: Deliver) -> int:
        try:
            loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        with self._lock:
            token = next(self._tokens)
            self._subscriptions[token] = _Subscription(topic_filter, callback, loop)
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._subscriptions.pop(token, None)

    def publish(self, topic: str, payload: str) -> int:
        with self._lock:
            targets = [sub for sub in self._subscriptions.values() if topic_matches(sub.topic_filter, topic)]
            self.history.append((topic, payload))
        for sub in targets:
            if sub.loop is None:
                sub.callback(topic, payload)
                continue
            try:
                sub.loop.call_soon_threadsafe(sub.callback, topic, payload)
            except RuntimeError:
                LOG.debug("Subscriber loop closed; dropping delivery on %s", topic)
        return len(targets)

    def published_on(self, topic: str) -> list[str]:
        with self._lock:
            return [payload for item_topic, payload in self.history if item_topic == topic]


class LocalTransport(Transport):
    """Transport bound to an :class:`InMemoryBroker` in the same process."""

    def __init__(self, broker: InMemoryBroker, client_id: str) -> None:
        super().__init__(client_id)
        self.broker = broker
        self._tokens: Dict[str, int] = {}

    async def connect(self) -> None:
        self._connected = True
        self.logger.info("%s attached to in-process broker", self.client_id)

    async def close(self) -> None:
        for token in self._tokens.values():
            self.broker.unsubscribe(token)
        self._tokens.clear()
        self._subscriptions.clear()
        self._connected = False

    def subscribe(self, topic: str, qos: int = 1) -> None:
        if not self._connected:
            raise TransportError(f"cannot subscribe to {topic}: not connected")
        if topic in self._tokens:
            return
        self._tokens[topic] = self.broker.subscribe(topic, self._dispatch)
        self._subscriptions.add(topic)

    def unsubscribe(self, topic: str) -> None:
        token = self._tokens.pop(topic, None)
        if token is not None:
            self.broker.unsubscribe(token)
        self._subscriptions.discard(topic)

    def publish(self, topic: str, payload: str, qos: int = 1) -> None:
        if not self._connected:
            raise TransportError(f"cannot publish to {topic}: not connected")
        self.broker.publish(topic, payload)
