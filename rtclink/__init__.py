"""
rtclink peer-session signaling package.

The package coordinates a WebRTC-style handshake between an "app" endpoint and
a "device" endpoint over a publish/subscribe transport.  The signaling state
machine in :mod:`rtclink.signaling` is pure; the endpoints in
:mod:`rtclink.endpoint` own the session and execute its intents.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
