"""
Topic addressing for the signaling and data channels.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .session import Role

_FORBIDDEN = ("/", "+", "#")


def _segment(name: str, value: Optional[str]) -> str:
    text = str(value or "")
    if not text.strip():
        raise ValueError(f"{name} must not be empty")
    if text != text.strip():
        raise ValueError(f"{name} must not have leading or trailing whitespace: {text!r}")
    if any(char in text for char in _FORBIDDEN):
        raise ValueError(f"{name} must not contain '/', '+' or '#': {text!r}")
    return text


def is_addressable(session_id: Optional[str]) -> bool:
    """True when ``session_id`` can be used as a topic segment."""

    try:
        _segment("session_id", session_id)
    except ValueError:
        return False
    return True


@dataclass(frozen=True, slots=True)
class TopicScheme:
    """
    Canonical topic strings for one product/device pair.

    ``namespace`` is an optional leading segment (deployments use ``dl``).
    """

    product_key: str
    device_id: str
    namespace: Optional[str] = None

    def __post_init__(self) -> None:
        _segment("product_key", self.product_key)
        _segment("device_id", self.device_id)
        if self.namespace:
            _segment("namespace", self.namespace)

    def _join(self, *parts: str) -> str:
        head = [self.namespace] if self.namespace else []
        return "/".join([*head, self.product_key, self.device_id, *parts])

    def device_service(self) -> str:
        return self._join("device", "service", "sub")

    def app_to_device(self, session_id: str) -> str:
        return self._join("device", _segment("session_id", session_id), "p2p", "signal", "sub")

    def device_to_app(self, session_id: str) -> str:
        return self._join("app", _segment("session_id", session_id), "p2p", "signal", "sub")

    def data(self, session_id: str) -> str:
        return self._join("p2p", _segment("session_id", session_id), "data")

    def inbound_signal(self, role: Role, session_id: str) -> str:
        """Topic the endpoint playing ``role`` subscribes to for signaling."""

        if role is Role.INITIATOR:
            return self.device_to_app(session_id)
        return self.app_to_device(session_id)

    def outbound_signal(self, role: Role, session_id: str) -> str:
        """Topic the endpoint playing ``role`` publishes signaling to."""

        if role is Role.INITIATOR:
            return self.app_to_device(session_id)
        return self.device_to_app(session_id)

    def inbound_signal_filter(self, role: Role) -> str:
        """Wildcard over every session's inbound signaling topic for ``role``."""

        side = "app" if role is Role.INITIATOR else "device"
        return self._join(side, "+", "p2p", "signal", "sub")

    def session_topics(self, role: Role, session_id: str) -> tuple[str, str]:
        return (self.inbound_signal(role, session_id), self.data(session_id))


def topic_matches(topic_filter: str, topic: str) -> bool:
    """
    MQTT-style filter matching: ``+`` matches one level, ``#`` the remainder.
    """

    filter_parts = topic_filter.split("/")
    topic_parts = topic.split("/")
    for index, part in enumerate(filter_parts):
        if part == "#":
            return index == len(filter_parts) - 1
        if index >= len(topic_parts):
            return False
        if part != "+" and part != topic_parts[index]:
            return False
    return len(filter_parts) == len(topic_parts)


__all__ = ["TopicScheme", "is_addressable", "topic_matches"]
