"""
WebSocket client for the broker hosted by the development cloud service.

Frames are JSON objects::

    client -> server  {"op": "subscribe", "topic": "...", "qos": 1}
                      {"op": "unsubscribe", "topic": "..."}
                      {"op": "publish", "topic": "...", "payload": "...", "qos": 1}
    server -> client  {"op": "message", "topic": "...", "payload": "..."}
                      {"op": "error", "message": "..."}
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any, Dict, Optional

import websockets

from ..errors import TransportError
from .base import Transport


class WebSocketTransport(Transport):
    def __init__(
        self,
        url: str,
        client_id: str,
        *,
        queue_size: int = 256,
        open_timeout: float = 10.0,
        ping_interval: Optional[float] = 20.0,
    ) -> None:
        super().__init__(client_id)
        self.url = url
        self.open_timeout = open_timeout
        self.ping_interval = ping_interval
        self._queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=max(1, int(queue_size)))
        self._ws: Any = None
        self._tasks: list[asyncio.Task] = []

    async def connect(self) -> None:
        if self._connected:
            return
        try:
            self._ws = await websockets.connect(
                self.url,
                open_timeout=self.open_timeout,
                ping_interval=self.ping_interval,
            )
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
            raise TransportError(f"cannot connect to broker {self.url}: {exc}") from exc
        self._connected = True
        self.logger.info("%s connected to broker %s", self.client_id, self.url)
        await self._ws.send(json.dumps({"op": "hello", "clientId": self.client_id}))
        for topic in sorted(self._subscriptions):
            self._enqueue({"op": "subscribe", "topic": topic, "qos": 1})
        self._tasks = [
            asyncio.create_task(self._send_loop(), name=f"ws-send-{self.client_id}"),
            asyncio.create_task(self._recv_loop(), name=f"ws-recv-{self.client_id}"),
        ]

    async def close(self) -> None:
        self._connected = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        if self._ws is not None:
            with contextlib.suppress(websockets.exceptions.WebSocketException, OSError):
                await self._ws.close()
            self._ws = None

    def subscribe(self, topic: str, qos: int = 1) -> None:
        self._enqueue({"op": "subscribe", "topic": topic, "qos": qos})
        self._subscriptions.add(topic)

    def unsubscribe(self, topic: str) -> None:
        if topic not in self._subscriptions:
            return
        self._subscriptions.discard(topic)
        self._enqueue({"op": "unsubscribe", "topic": topic})

    def publish(self, topic: str, payload: str, qos: int = 1) -> None:
        self._enqueue({"op": "publish", "topic": topic, "payload": payload, "qos": qos})

    def _enqueue(self, frame: Dict[str, Any]) -> None:
        if not self._connected:
            raise TransportError(f"cannot {frame['op']} {frame.get('topic')}: not connected")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull as exc:
            raise TransportError(f"send queue full; dropping {frame['op']} on {frame.get('topic')}") from exc

    async def _send_loop(self) -> None:
        try:
            while True:
                frame = await self._queue.get()
                try:
                    await self._ws.send(json.dumps(frame))
                except websockets.exceptions.ConnectionClosed as exc:
                    self.logger.error("Broker connection closed while sending: %s", exc)
                    self._connected = False
                    break
                finally:
                    self._queue.task_done()
        except asyncio.CancelledError:
            pass

    async def _recv_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    self.logger.warning("Invalid broker frame: %s", str(raw)[:100])
                    continue
                if not isinstance(frame, dict):
                    continue
                op = frame.get("op")
                if op == "message":
                    self._dispatch(str(frame.get("topic") or ""), str(frame.get("payload") or ""))
                elif op == "error":
                    self.logger.warning("Broker error: %s", frame.get("message"))
        except asyncio.CancelledError:
            pass
        except websockets.exceptions.ConnectionClosed as exc:
            self.logger.error("Broker connection lost: %s", exc)
        finally:
            self._connected = False


__all__ = ["WebSocketTransport"]
