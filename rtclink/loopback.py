"""
In-process demo: development service, app and device on one event loop.

The app and device talk through an :class:`InMemoryBroker` shared with the
FastAPI service, which the app reaches through ``httpx.ASGITransport``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from typing import Any, Dict, Optional

import httpx

from .cloud.client import SessionApiClient
from .cloud.server import API_PREFIX, CloudState, create_app
from .endpoint.app import AppEndpoint
from .endpoint.base import Sleep
from .endpoint.device import DeviceEndpoint
from .signaling.session import FALLBACK_CONFIGURATION, Configuration
from .transport.memory import InMemoryBroker, LocalTransport
from .utils.settings import EndpointSettings

LOG = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.01


def demo_configuration(keepalive_interval_ms: int) -> Configuration:
    extra = json.loads(FALLBACK_CONFIGURATION.extra_config)
    extra["keepAliveInterval"] = int(keepalive_interval_ms)
    return replace(FALLBACK_CONFIGURATION, extra_config=json.dumps(extra), is_fallback=False)


async def _settle(app: AppEndpoint, device: DeviceEndpoint) -> None:
    while app.flow_result is None:
        await asyncio.sleep(POLL_INTERVAL_S)
    await asyncio.gather(app.wait_idle(), device.wait_idle())


async def run_loopback(
    settings: EndpointSettings,
    *,
    keepalive_interval_ms: int = 500,
    timeout: float = 60.0,
    sleep: Optional[Sleep] = None,
) -> Dict[str, Any]:
    """
    Run one automated session end to end and return both endpoint snapshots.
    """

    broker = InMemoryBroker()
    cloud = CloudState(settings=settings, broker=broker, config=demo_configuration(keepalive_interval_ms))
    api = SessionApiClient(
        f"http://rtclink.local{API_PREFIX}",
        user_id=settings.app_id,
        timeout=settings.api_timeout,
        transport=httpx.ASGITransport(app=create_app(state=cloud)),
    )
    device = DeviceEndpoint(settings, LocalTransport(broker, f"device-{settings.device_id}"), sleep=sleep)
    app = AppEndpoint(settings, LocalTransport(broker, f"app-{settings.app_id}"), api, sleep=sleep)

    async with api:
        await device.start()
        await app.start()
        try:
            session = await app.run_auto()
            LOG.info("Loopback session %s started", session.session_id)
            await asyncio.wait_for(_settle(app, device), timeout)
            app.end_session("demo finished")
            await asyncio.sleep(0)
            result = {"app": app.status(), "device": device.status(), "flowSucceeded": app.flow_result}
        finally:
            await app.stop()
            await device.stop()
    return result


__all__ = ["demo_configuration", "run_loopback"]
