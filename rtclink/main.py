"""
Command line entrypoint.

``rtclink cloud`` serves the development signaling service, ``rtclink app``
and ``rtclink device`` run an endpoint against it, and ``rtclink demo`` runs
both endpoints and the service in one process.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from .cloud.client import SessionApiClient
from .cloud.server import CloudState, create_app
from .endpoint.app import AppEndpoint
from .endpoint.console import run_app_console, run_device_console
from .endpoint.device import DeviceEndpoint
from .loopback import run_loopback
from .transport.websocket import WebSocketTransport
from .utils.logging import configure_logging
from .utils.settings import EndpointSettings, load_settings

LOG = logging.getLogger(__name__)


async def serve(settings: EndpointSettings, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the development service inside an asyncio loop."""

    import uvicorn

    state = CloudState(settings=settings)

    @asynccontextmanager
    async def app_lifespan(_app) -> AsyncIterator[None]:
        LOG.info("Signaling service starting")
        try:
            yield
        finally:
            LOG.info("Signaling service shutting down (%s session(s) created)", len(state.sessions))

    app = create_app(state=state, lifespan=app_lifespan)
    server_config = uvicorn.Config(
        app=app,
        host=host or settings.cloud_host,
        port=port or settings.cloud_port,
        log_config=None,
        log_level=settings.log_level,
        reload=False,
    )
    server = uvicorn.Server(config=server_config)

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, shutting down server...", signum)
        server.should_exit = True

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    await server.serve()


async def run_app(settings: EndpointSettings, *, auto: bool = False) -> None:
    transport = WebSocketTransport(settings.broker_url, f"app-{settings.app_id}")
    async with SessionApiClient(
        settings.api_base_url,
        user_id=settings.app_id,
        token=settings.api_token,
        timeout=settings.api_timeout,
    ) as api:
        endpoint = AppEndpoint(settings, transport, api)
        await endpoint.start()
        try:
            if auto:
                await endpoint.run_auto()
                while endpoint.flow_result is None and endpoint.active_session is not None:
                    await asyncio.sleep(0.1)
                await endpoint.wait_idle()
                print(json.dumps(endpoint.status(), indent=2, default=str))
            else:
                await run_app_console(endpoint)
        finally:
            await endpoint.stop()


async def run_device(settings: EndpointSettings, *, headless: bool = False) -> None:
    transport = WebSocketTransport(settings.broker_url, f"device-{settings.device_id}")
    endpoint = DeviceEndpoint(settings, transport)
    await endpoint.start()
    try:
        if headless:
            await asyncio.Event().wait()
        else:
            await run_device_console(endpoint)
    finally:
        await endpoint.stop()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="rtclink peer-session signaling")
    parser.add_argument("--profile", default="default", help="settings profile to load")
    parser.add_argument("--device-id", dest="device_id", default=None, help="override the device id")
    parser.add_argument("--product-key", dest="product_key", default=None, help="override the product key")
    parser.add_argument("--app-id", dest="app_id", default=None, help="override the app identity")
    parser.add_argument("--log-level", dest="log_level", default=None, help="debug, info, warning or error")
    commands = parser.add_subparsers(dest="command", required=True)

    cloud = commands.add_parser("cloud", help="serve the development signaling service")
    cloud.add_argument("--host", default=None, help="bind host for the API server")
    cloud.add_argument("--port", type=int, default=None, help="bind port for the API server")

    app = commands.add_parser("app", help="run the app (initiator) endpoint")
    app.add_argument("--auto", action="store_true", help="run the automated flow once and exit")

    device = commands.add_parser("device", help="run the device (responder) endpoint")
    device.add_argument("--headless", action="store_true", help="respond to sessions without a console")

    demo = commands.add_parser("demo", help="run service, app and device in one process")
    demo.add_argument("--interval-ms", type=int, default=500, help="keepalive interval pushed to both endpoints")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    settings = load_settings(
        args.profile,
        overrides={
            "device_id": args.device_id,
            "product_key": args.product_key,
            "app_id": args.app_id,
            "log_level": args.log_level,
        },
    )
    configure_logging(settings)

    try:
        if args.command == "cloud":
            asyncio.run(serve(settings, host=args.host, port=args.port))
        elif args.command == "app":
            asyncio.run(run_app(settings, auto=args.auto))
        elif args.command == "device":
            asyncio.run(run_device(settings, headless=args.headless))
        else:
            result = asyncio.run(run_loopback(settings, keepalive_interval_ms=args.interval_ms))
            print(json.dumps(result, indent=2, default=str))
    except KeyboardInterrupt:
        LOG.info("Interrupted by user.")


if __name__ == "__main__":
    run()
