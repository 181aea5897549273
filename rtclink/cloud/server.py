"""
FastAPI development service standing in for the session management backend.

It implements the three session routes, pushes the P2P configuration to the
device service topic when a session is created, and hosts a WebSocket topic
broker so endpoints in separate processes can reach each other.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect

from ..signaling.envelope import Command, build, encode, now_ms
from ..signaling.session import FALLBACK_CONFIGURATION, Configuration
from ..signaling.topics import TopicScheme
from ..transport.memory import InMemoryBroker
from ..utils.settings import EndpointSettings
from . import schemas

LOG = logging.getLogger(__name__)

API_PREFIX = "/api/v1/signal"


@dataclass
class CloudState:
    """In-memory session registry plus the broker shared with WebSocket clients."""

    settings: EndpointSettings
    broker: InMemoryBroker = field(default_factory=InMemoryBroker)
    config: Configuration = FALLBACK_CONFIGURATION
    sessions: Dict[str, schemas.SessionStatusModel] = field(default_factory=dict)
    clock: Callable[[], int] = now_ms

    def topics_for(self, device_id: str) -> TopicScheme:
        return TopicScheme(self.settings.product_key, device_id, self.settings.namespace or None)

    def create_session(self, device_id: str, member_id: Optional[str]) -> schemas.SessionStatusModel:
        session_id = uuid.uuid4().hex
        record = schemas.SessionStatusModel(
            session_id=session_id,
            device_id=device_id,
            member_id=member_id,
            created_at=self.clock(),
        )
        self.sessions[session_id] = record
        record.config_pushed = self.push_config(record) > 0
        record.status = "config_pushed" if record.config_pushed else "device_offline"
        return record

    def push_config(self, record: schemas.SessionStatusModel) -> int:
        envelope = build(
            Command.CONFIG_SERVICE,
            self.clock(),
            session_id=record.session_id,
            sender=record.member_id,
            recipient=record.device_id,
            stun_servers=list(self.config.stun_servers),
            turn_servers=list(self.config.turn_servers),
            rtc_configuration=self.config.rtc_configuration,
            extra_config=self.config.extra_config,
        )
        topic = self.topics_for(record.device_id).device_service()
        delivered = self.broker.publish(topic, encode(envelope))
        LOG.info("Configuration for session %s pushed to %s (%s subscriber(s))", record.session_id, topic, delivered)
        return delivered


class BrokerConnection:
    """Bridge one WebSocket client onto the in-memory broker."""

    def __init__(self, broker: InMemoryBroker, websocket: WebSocket, *, queue_size: int = 256) -> None:
        self.broker = broker
        self.websocket = websocket
        self.client_id = uuid.uuid4().hex[:8]
        self.send_queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self._tokens: Dict[str, int] = {}
        self._stop_event = asyncio.Event()
        self.logger = LOG.getChild(f"broker.{self.client_id}")

    @property
    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    async def run(self) -> None:
        await self.websocket.accept()
        try:
            async with asyncio.TaskGroup() as task_group:
                task_group.create_task(self._recv_loop())
                task_group.create_task(self._send_loop())
        finally:
            for token in self._tokens.values():
                self.broker.unsubscribe(token)
            self._tokens.clear()
            self.logger.info("Broker client %s detached", self.client_id)

    def _deliver(self, topic: str, payload: str) -> None:
        if self.is_stopped:
            return
        try:
            self.send_queue.put_nowait({"op": "message", "topic": topic, "payload": payload})
        except asyncio.QueueFull:
            self.logger.warning("Dropping message on %s due to backpressure", topic)

    def _error(self, message: str) -> None:
        with contextlib.suppress(asyncio.QueueFull):
            self.send_queue.put_nowait({"op": "error", "message": message})

    def handle_frame(self, frame: Dict[str, Any]) -> None:
        op = str(frame.get("op") or "").lower()
        topic = str(frame.get("topic") or "")
        if op == "hello":
            self.client_id = str(frame.get("clientId") or self.client_id)
            self.logger = LOG.getChild(f"broker.{self.client_id}")
            self.logger.info("Broker client %s attached", self.client_id)
            return
        if op in {"subscribe", "unsubscribe", "publish"} and not topic:
            self._error(f"{op} requires a topic")
            return
        if op == "subscribe":
            if topic not in self._tokens:
                self._tokens[topic] = self.broker.subscribe(topic, self._deliver)
                self.logger.info("Subscribed %s", topic)
        elif op == "unsubscribe":
            token = self._tokens.pop(topic, None)
            if token is not None:
                self.broker.unsubscribe(token)
        elif op == "publish":
            self.broker.publish(topic, str(frame.get("payload") or ""))
        else:
            self._error(f"Unknown op: {op}")

    async def _recv_loop(self) -> None:
        try:
            while not self.is_stopped:
                try:
                    raw = await self.websocket.receive_text()
                except WebSocketDisconnect:
                    break
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    self.logger.warning("Invalid JSON received. Preview: %s...", raw[:100])
                    self._error("Invalid JSON payload")
                    continue
                if isinstance(frame, dict):
                    self.handle_frame(frame)
        finally:
            self._stop_event.set()

    async def _send_loop(self) -> None:
        try:
            while not self.is_stopped:
                try:
                    frame = await asyncio.wait_for(self.send_queue.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue
                try:
                    await self.websocket.send_json(frame)
                except (WebSocketDisconnect, RuntimeError):
                    break
        finally:
            self._stop_event.set()


def create_app(
    *,
    settings: Optional[EndpointSettings] = None,
    state: Optional[CloudState] = None,
    prefix: str = API_PREFIX,
    lifespan: Optional[Any] = None,
) -> FastAPI:
    cloud = state or CloudState(settings=settings or EndpointSettings())

    app = FastAPI(title="rtclink development signaling service", lifespan=lifespan)
    app.state.cloud = cloud

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"status": "ok", "sessions": len(cloud.sessions)}

    @app.post(f"{prefix}/session")
    async def create_session(
        payload: schemas.CreateSessionRequest,
        x_user_id: Optional[str] = Header(default=None),
    ) -> dict:
        record = cloud.create_session(payload.device_id, x_user_id)
        return schemas.wrap(schemas.CreateSessionResponse(session_id=record.session_id))

    @app.get(f"{prefix}/session/{{session_id}}/status")
    async def session_status(session_id: str) -> dict:
        record = cloud.sessions.get(session_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Unknown session")
        return schemas.wrap(record)

    @app.get(f"{prefix}/session/{{session_id}}/config")
    async def session_config(session_id: str) -> dict:
        if session_id not in cloud.sessions:
            raise HTTPException(status_code=404, detail="Unknown session")
        return schemas.wrap(schemas.SessionConfigModel(**cloud.config.to_payload()))

    @app.websocket("/broker")
    async def broker_endpoint(websocket: WebSocket) -> None:
        await BrokerConnection(cloud.broker, websocket).run()

    return app


__all__ = ["API_PREFIX", "BrokerConnection", "CloudState", "create_app"]
