"""
Error taxonomy shared by the signaling core, transports and HTTP client.
"""

from __future__ import annotations

from typing import Optional


class RtcLinkError(RuntimeError):
    """Base class for rtclink errors."""


class TransportError(RtcLinkError):
    """Raised when connecting, subscribing or publishing fails."""


class SessionApiError(RtcLinkError):
    """Raised when the session management API call fails."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigFetchError(SessionApiError):
    """Raised when the session configuration cannot be fetched or parsed."""


class ProtocolViolation(RtcLinkError):
    """Raised when an inbound payload cannot be decoded into an envelope."""


class PreconditionError(RtcLinkError):
    """Raised when an operation is requested without the required session state."""


__all__ = [
    "ConfigFetchError",
    "PreconditionError",
    "ProtocolViolation",
    "RtcLinkError",
    "SessionApiError",
    "TransportError",
]
