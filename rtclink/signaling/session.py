"""
Session and configuration records owned by an endpoint.

Sessions are immutable snapshots: the state machine returns a replacement
instead of mutating in place, which keeps every transition inspectable.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

LOG = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_INTERVAL_MS = 10_000


class Role(str, Enum):
    INITIATOR = "app"
    RESPONDER = "device"


class Readiness(str, Enum):
    UNKNOWN = "unknown"
    WAITING_FOR_PEER = "waiting_for_peer"
    PEER_READY = "peer_ready"


class Connectivity(str, Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class Session:
    """
    One negotiation attempt between an initiator and a responder.

    Timestamps are epoch milliseconds and stay ``None`` until observed.
    """

    session_id: str
    role: Role
    local_identity: str
    peer_identity: Optional[str] = None
    readiness: Readiness = Readiness.UNKNOWN
    connectivity: Connectivity = Connectivity.IDLE
    created_at: Optional[int] = None
    ready_at: Optional[int] = None
    offer_sent_at: Optional[int] = None
    offer_received_at: Optional[int] = None
    candidate_sent_at: Optional[int] = None
    connected_at: Optional[int] = None
    auto_flow: bool = False
    close_reason: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.connectivity is not Connectivity.CLOSED

    @property
    def is_connected(self) -> bool:
        return self.connectivity is Connectivity.CONNECTED

    def evolve(self, **changes: Any) -> "Session":
        return replace(self, **changes)

    def closed(self, reason: Optional[str] = None) -> "Session":
        return replace(self, connectivity=Connectivity.CLOSED, close_reason=reason)

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "role": self.role.value,
            "localIdentity": self.local_identity,
            "peerIdentity": self.peer_identity,
            "readiness": self.readiness.value,
            "connectivity": self.connectivity.value,
            "autoFlow": bool(self.auto_flow),
            "closeReason": self.close_reason,
        }


def _text_list(value: Any) -> Optional[Tuple[str, ...]]:
    if not isinstance(value, (list, tuple)):
        return None
    if not all(isinstance(item, str) and item.strip() for item in value):
        return None
    return tuple(item.strip() for item in value)


def _blob(value: Any) -> Optional[str]:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return None


@dataclass(frozen=True, slots=True)
class Configuration:
    """ICE server lists plus the opaque RTC and extra option blobs."""

    stun_servers: Tuple[str, ...] = ()
    turn_servers: Tuple[str, ...] = ()
    rtc_configuration: str = ""
    extra_config: str = ""
    is_fallback: bool = field(default=False, compare=False)

    @classmethod
    def from_payload(cls, payload: Any) -> "Configuration":
        """
        Build a configuration from an API or push payload.

        Raises ``ValueError`` when the payload does not have the expected shape.
        """

        if not isinstance(payload, Mapping):
            raise ValueError("configuration payload must be an object")
        stun = _text_list(payload.get("stunServers", []))
        turn = _text_list(payload.get("turnServers", []))
        if stun is None or turn is None:
            raise ValueError("stunServers/turnServers must be lists of strings")
        if not stun and not turn:
            raise ValueError("configuration carries no ICE servers")
        rtc = _blob(payload.get("rtcConfiguration"))
        extra = _blob(payload.get("extraConfig"))
        if rtc is None or extra is None:
            raise ValueError("rtcConfiguration/extraConfig must be text")
        return cls(stun_servers=stun, turn_servers=turn, rtc_configuration=rtc, extra_config=extra)

    @property
    def keepalive_interval_ms(self) -> int:
        """``keepAliveInterval`` from the extra blob, 10 s when absent or invalid."""

        if not self.extra_config:
            return DEFAULT_KEEPALIVE_INTERVAL_MS
        try:
            extra = json.loads(self.extra_config)
            raw = extra["keepAliveInterval"]
            if isinstance(raw, bool):
                raise TypeError("keepAliveInterval must be a number")
            interval = int(raw)
        except (ValueError, TypeError, KeyError, OverflowError):
            LOG.warning("Unusable keepAliveInterval in extra config; using %sms", DEFAULT_KEEPALIVE_INTERVAL_MS)
            return DEFAULT_KEEPALIVE_INTERVAL_MS
        if interval <= 0:
            return DEFAULT_KEEPALIVE_INTERVAL_MS
        return interval

    def ice_servers(self) -> Tuple[str, ...]:
        return self.stun_servers + self.turn_servers

    def to_payload(self) -> Dict[str, Any]:
        return {
            "stunServers": list(self.stun_servers),
            "turnServers": list(self.turn_servers),
            "rtcConfiguration": self.rtc_configuration,
            "extraConfig": self.extra_config,
        }


FALLBACK_CONFIGURATION = Configuration(
    stun_servers=("stun:223.254.128.13:3478",),
    turn_servers=("turn:223.254.128.13:3479",),
    rtc_configuration=json.dumps(
        {
            "iceServers": [
                {"urls": "stun:223.254.128.13:3478"},
                {"urls": "turn:223.254.128.13:3479"},
            ],
            "iceCandidatePoolSize": 10,
            "bundlePolicy": "max-bundle",
            "rtcpMuxPolicy": "require",
        }
    ),
    extra_config=json.dumps(
        {
            "video": True,
            "audio": True,
            "timeout": 30000,
            "retryAttempts": 3,
            "keepAliveInterval": DEFAULT_KEEPALIVE_INTERVAL_MS,
        }
    ),
    is_fallback=True,
)


__all__ = [
    "Configuration",
    "Connectivity",
    "DEFAULT_KEEPALIVE_INTERVAL_MS",
    "FALLBACK_CONFIGURATION",
    "Readiness",
    "Role",
    "Session",
]
