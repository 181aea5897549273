"""
Logging helpers for rtclink.

Endpoints log through ``rtclink.*`` loggers; the console drivers and the
development service share one stdout handler installed here.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .settings import EndpointSettings

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
PACKAGE_LOGGER = "rtclink"

# websockets logs every handshake at INFO; keep the console readable.
NOISY_LOGGERS = ("websockets.client", "websockets.server", "httpx", "httpcore")


def parse_level(value: Optional[str], default: int = logging.INFO) -> int:
    """Translate a level name such as ``"debug"`` into a logging constant."""

    if not value:
        return default
    candidate = logging.getLevelName(str(value).strip().upper())
    return candidate if isinstance(candidate, int) else default


def configure_logging(settings: "EndpointSettings", format: Optional[str] = None) -> int:
    """
    Apply ``settings.log_level`` to the rtclink loggers and return the level.

    A stdout handler is attached to the root logger only when nothing else
    configured one; the package level is applied either way so ``--log-level``
    still takes effect under uvicorn or pytest.
    """

    level = parse_level(settings.log_level)
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(format or DEFAULT_FORMAT))
        root.addHandler(handler)
        root.setLevel(level)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return level
