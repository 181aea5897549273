"""Quick demo of a full app/device session over the in-process broker.

The development service, the app and the device share one event loop: the app
creates a session through the HTTP API, the service pushes the configuration
to the device, and the automated flow runs the offer, candidate and keepalive
exchange.

Examples
--------
Run the shortened demo profile::

    python scripts/demo_loopback.py

Use the full keepalive budget with a one second interval::

    python scripts/demo_loopback.py --profile default --interval-ms 1000
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Iterable

from rtclink.loopback import run_loopback
from rtclink.utils.logging import configure_logging
from rtclink.utils.settings import load_settings


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="rtclink loopback demo")
    parser.add_argument("--profile", default="demo", help="settings profile to load")
    parser.add_argument("--interval-ms", type=int, default=250, help="keepalive interval in milliseconds")
    parser.add_argument("--timeout", type=float, default=60.0, help="give up after this many seconds")
    return parser.parse_args(argv)


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    settings = load_settings(args.profile)
    configure_logging(settings)
    try:
        result = asyncio.run(
            run_loopback(settings, keepalive_interval_ms=args.interval_ms, timeout=args.timeout)
        )
    except asyncio.TimeoutError:
        print("Session did not settle in time", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2, default=str))
    return 0 if result["flowSucceeded"] else 1


if __name__ == "__main__":
    sys.exit(main())
