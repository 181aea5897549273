"""
Signaling core: topics, envelope codec, session records, state machine and
keepalive scheduling.
"""

from __future__ import annotations

from .envelope import Channel, Command, Envelope, MessageType, Payload, decode, encode
from .keepalive import KeepaliveScheduler
from .machine import (
    Effect,
    EffectKind,
    InitiatorMachine,
    LatencySample,
    Outbound,
    ResponderMachine,
    Transition,
)
from .session import (
    FALLBACK_CONFIGURATION,
    Configuration,
    Connectivity,
    Readiness,
    Role,
    Session,
)
from .topics import TopicScheme, topic_matches

__all__ = [
    "Channel",
    "Command",
    "Configuration",
    "Connectivity",
    "Effect",
    "EffectKind",
    "Envelope",
    "FALLBACK_CONFIGURATION",
    "InitiatorMachine",
    "KeepaliveScheduler",
    "LatencySample",
    "MessageType",
    "Outbound",
    "Payload",
    "Readiness",
    "ResponderMachine",
    "Role",
    "Session",
    "TopicScheme",
    "Transition",
    "decode",
    "encode",
    "topic_matches",
]
