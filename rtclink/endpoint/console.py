"""
Interactive console drivers for the app and device endpoints.

Input is read on a worker thread so the endpoint keeps handling messages
while the prompt is waiting.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from ..errors import PreconditionError, SessionApiError, TransportError
from .app import AppEndpoint
from .device import DeviceEndpoint

LOG = logging.getLogger(__name__)

Prompt = Callable[[str], Awaitable[str]]

APP_MENU = """
Choose an action:
1. Create P2P session
2. Query session status
3. Send offer
4. Send ICE candidate
5. Send heartbeat
6. End session
7. Automatic mode (create session, offer, candidate, keepalive)
0. Quit
"""

DEVICE_HELP = """
Commands:
  status               show the current session
  manual               list manual signaling commands
  ready [sessionId]    adopt a session and announce ready
  answer               send an SDP answer
  candidate            send an ICE candidate
  connected            mark the session connected
  bye                  end the session
  quit                 exit
"""


async def read_line(text: str) -> str:
    return await asyncio.to_thread(input, text)


def show(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


async def run_app_console(endpoint: AppEndpoint, prompt: Optional[Prompt] = None) -> None:
    ask = prompt or read_line
    while True:
        print(APP_MENU)
        try:
            choice = (await ask("> ")).strip()
        except EOFError:
            break
        if choice == "0":
            break
        try:
            if choice == "1":
                session = await endpoint.create_session()
                print(f"Session created: {session.session_id}")
            elif choice == "2":
                show({"local": endpoint.status(), "remote": await endpoint.query_status()})
            elif choice == "3":
                endpoint.send_offer()
            elif choice == "4":
                endpoint.send_candidate()
            elif choice == "5":
                print(f"Heartbeat #{endpoint.send_heartbeat()} sent")
            elif choice == "6":
                endpoint.end_session()
            elif choice == "7":
                session = await endpoint.run_auto()
                print(f"Automatic mode started for session {session.session_id}")
            else:
                print(f"Unknown choice: {choice}")
        except PreconditionError as exc:
            print(f"Cannot do that now: {exc}")
        except (SessionApiError, TransportError) as exc:
            LOG.error("Request failed: %s", exc)


async def run_device_console(endpoint: DeviceEndpoint, prompt: Optional[Prompt] = None) -> None:
    ask = prompt or read_line
    print(DEVICE_HELP)
    while True:
        try:
            line = (await ask("device> ")).strip()
        except EOFError:
            break
        if not line:
            continue
        command, _, argument = line.partition(" ")
        command = command.lower()
        if command in {"quit", "exit"}:
            break
        try:
            if command == "status":
                show(endpoint.status())
            elif command in {"manual", "help"}:
                print(DEVICE_HELP)
            elif command == "ready":
                session = endpoint.announce_ready(argument.strip() or None)
                print(f"Ready announced for session {session.session_id}")
            elif command == "answer":
                endpoint.send_answer()
            elif command == "candidate":
                endpoint.send_candidate()
            elif command == "connected":
                endpoint.send_connected()
            elif command == "bye":
                endpoint.end_session()
            else:
                print(f"Unknown command: {command}")
        except PreconditionError as exc:
            print(f"Cannot do that now: {exc}")


__all__ = ["APP_MENU", "DEVICE_HELP", "run_app_console", "run_device_console"]
