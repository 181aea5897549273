"""
Publish/subscribe transports used by the endpoints.
"""

from __future__ import annotations

from .base import MessageHandler, Transport
from .memory import InMemoryBroker, LocalTransport
from .websocket import WebSocketTransport

__all__ = ["InMemoryBroker", "LocalTransport", "MessageHandler", "Transport", "WebSocketTransport"]
