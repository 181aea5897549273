"""
Shared endpoint actor: owns the session and configuration and executes the
transitions returned by the signaling machine.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Coroutine, Deque, Dict, List, Optional, Set, Tuple

from ..cloud.client import describe
from ..errors import PreconditionError, ProtocolViolation, TransportError
from ..signaling.envelope import Channel, decode, encode, now_ms
from ..signaling.keepalive import KeepaliveScheduler
from ..signaling.machine import Effect, EffectKind, Outbound, SignalingMachine, Transition
from ..signaling.session import FALLBACK_CONFIGURATION, Configuration, Session
from ..signaling.topics import TopicScheme
from ..transport.base import Transport
from ..utils.settings import EndpointSettings

LOG = logging.getLogger(__name__)

Clock = Callable[[], int]
Sleep = Callable[[float], Awaitable[None]]

# Routine on a shared data topic, where every endpoint hears itself.
QUIET_DROPS = ("self echo",)


class Endpoint:
    """
    Single owner of one endpoint's session.

    Inbound messages are handled synchronously on the event loop: decode,
    run the machine, then apply the transition (state, configuration,
    metrics, effects, outbound publishes).  Background work for a session
    (keepalive, automated flow) is tracked per session id and cancelled as a
    group when the session is released.
    """

    def __init__(
        self,
        settings: EndpointSettings,
        transport: Transport,
        machine: SignalingMachine,
        *,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.settings = settings
        self.transport = transport
        self.machine = machine
        self.topics = TopicScheme(settings.product_key, settings.device_id, settings.namespace or None)
        self.clock: Clock = clock or now_ms
        self.sleep: Sleep = sleep or asyncio.sleep
        self.session: Optional[Session] = None
        self.config: Optional[Configuration] = None
        self.metrics: Dict[str, int] = {}
        self.drops: Deque[str] = deque(maxlen=32)
        self._keepalive: Optional[KeepaliveScheduler] = None
        self._tasks: Dict[str, Set[asyncio.Task]] = {}
        self._held: Optional[List[Tuple[str, str]]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.logger = LOG.getChild(machine.role.value)
        transport.on_message = self.handle_message

    # ------------------------------------------------------------------ lifecycle

    @property
    def active_session(self) -> Optional[Session]:
        """The current session, or ``None`` when there is none or it is closed."""

        if self.session is None or not self.session.is_open:
            return None
        return self.session

    @property
    def keepalive_ticks(self) -> int:
        return self._keepalive.ticks if self._keepalive is not None else 0

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        await self.transport.connect()
        self.logger.info("%s endpoint %s started", self.machine.role.value, self.machine.identity)

    async def stop(self) -> None:
        if self.active_session is not None:
            try:
                self.end_session("endpoint shutting down")
            except TransportError as exc:
                self.logger.error("Could not send bye while stopping: %s", exc)
        tasks = [task for group in self._tasks.values() for task in group]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        await self.transport.close()
        self.logger.info("%s endpoint stopped", self.machine.role.value)

    def end_session(self, reason: str = "user requested") -> Session:
        session = self.require_session()
        self.apply(self.machine.close(session, self.clock(), reason))
        self.logger.info("Session %s ended: %s", session.session_id, reason)
        return session

    def require_session(self) -> Session:
        session = self.active_session
        if session is None:
            raise PreconditionError("no active session")
        return session

    async def wait_idle(self) -> None:
        """Wait until every background task of the current session has finished."""

        while True:
            pending = [task for group in self._tasks.values() for task in group if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------ inbound

    def deliver_threadsafe(self, topic: str, payload: str) -> None:
        """Entry point for transports that deliver from a foreign thread."""

        if self._loop is None:
            raise TransportError("endpoint is not started")
        self._loop.call_soon_threadsafe(self.handle_message, topic, payload)

    def hold_inbound(self) -> None:
        """Buffer inbound messages until :meth:`release_inbound` replays them."""

        if self._held is None:
            self._held = []

    def release_inbound(self) -> None:
        held, self._held = self._held or [], None
        for topic, payload in held:
            self.handle_message(topic, payload)

    def handle_message(self, topic: str, payload: str) -> Optional[Transition]:
        if self._held is not None and self.active_session is None:
            self._held.append((topic, payload))
            return None
        try:
            envelope = decode(payload)
        except ProtocolViolation as exc:
            self.logger.warning("Dropping undecodable message on %s: %s", topic, exc)
            self.drops.append(str(exc))
            return None
        self.logger.debug("[RECV] %s %s", topic, payload)
        transition = self.machine.on_envelope(self.session, envelope, self.clock())
        self.apply(transition)
        return transition

    # ------------------------------------------------------------------ transitions

    def apply(self, transition: Transition) -> None:
        if not transition.accepted:
            self.drops.append(transition.dropped or "")
            if transition.dropped in QUIET_DROPS:
                self.logger.debug("Dropped message: %s", transition.dropped)
            else:
                self.logger.warning("Dropped message: %s", transition.dropped)
            return

        previous = self.session
        self.session = transition.session
        if previous is not None and self.session is not None and previous.connectivity != self.session.connectivity:
            self.logger.info(
                "Session %s: %s -> %s",
                self.session.session_id,
                previous.connectivity.value,
                self.session.connectivity.value,
            )
        if transition.config is not None:
            self.config = transition.config
            self.logger.info(
                "Installed %sconfiguration: %s",
                "fallback " if transition.config.is_fallback else "",
                ", ".join(transition.config.ice_servers()),
            )
        for sample in transition.samples:
            self.metrics[sample.name] = sample.value_ms
            self.logger.info("[LATENCY] %s = %sms", sample.name, sample.value_ms)
        for effect in transition.effects:
            try:
                self._run_effect(effect)
            except (ValueError, TransportError) as exc:
                self.logger.error("Effect %s for session %s failed: %s", effect.kind.value, effect.session_id, exc)
        for outbound in transition.outbound:
            self.publish(outbound)

    def _run_effect(self, effect: Effect) -> None:
        if effect.kind is EffectKind.SUBSCRIBE:
            self.metrics = {}
            for topic in self.topics.session_topics(self.machine.role, effect.session_id):
                try:
                    self.transport.subscribe(topic, self.settings.qos)
                except TransportError as exc:
                    self.logger.error("Subscribe to %s failed: %s", topic, exc)
                else:
                    self.logger.info("Subscribed %s", topic)
        elif effect.kind is EffectKind.RELEASE:
            for topic in self.topics.session_topics(self.machine.role, effect.session_id):
                self.transport.unsubscribe(topic)
            self._cancel_tasks(effect.session_id)
        elif effect.kind is EffectKind.START_KEEPALIVE:
            self._start_keepalive(effect.session_id)
        elif effect.kind is EffectKind.STOP_KEEPALIVE:
            if self._keepalive is not None and self._keepalive.session_id == effect.session_id:
                self._keepalive.cancel()
        elif effect.kind is EffectKind.RUN_AUTO_FLOW:
            self.run_auto_flow(effect.session_id)

    def run_auto_flow(self, session_id: str) -> None:
        self.logger.warning("No automated flow for the %s role", self.machine.role.value)

    def publish(self, outbound: Outbound) -> None:
        session_id = outbound.session_id
        if not session_id:
            self.logger.error("Outbound %s has no session id; not sent", outbound.envelope.cmd)
            return
        if outbound.channel is Channel.DATA:
            topic = self.topics.data(session_id)
        else:
            topic = self.topics.outbound_signal(self.machine.role, session_id)
        payload = encode(outbound.envelope)
        try:
            self.transport.publish(topic, payload, self.settings.qos)
        except TransportError as exc:
            self.logger.error("Publish to %s failed: %s", topic, exc)
            return
        kind = outbound.envelope.kind
        self.logger.info("[SEND] %s %s", kind.value if kind is not None else outbound.envelope.cmd, topic)

    # ------------------------------------------------------------------ session tasks

    def is_current(self, session_id: str) -> bool:
        session = self.active_session
        return session is not None and session.session_id == session_id

    def spawn(self, session_id: str, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        return self.track(session_id, asyncio.get_running_loop().create_task(coro, name=name))

    def track(self, session_id: str, task: asyncio.Task) -> asyncio.Task:
        group = self._tasks.setdefault(session_id, set())
        group.add(task)

        def _done(finished: asyncio.Task) -> None:
            group.discard(finished)
            if not group and self._tasks.get(session_id) is group:
                del self._tasks[session_id]
            if not finished.cancelled() and finished.exception() is not None:
                self.logger.error("Task %s failed", finished.get_name(), exc_info=finished.exception())

        task.add_done_callback(_done)
        return task

    def _cancel_tasks(self, session_id: str) -> None:
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in list(self._tasks.get(session_id, ())):
            if task is not current and not task.done():
                task.cancel()

    def _start_keepalive(self, session_id: str) -> None:
        if self._keepalive is not None and self._keepalive.session_id == session_id and self._keepalive.running:
            return
        config = self.config or FALLBACK_CONFIGURATION

        def probe() -> bool:
            session = self.active_session
            return session is not None and session.session_id == session_id and session.is_connected

        def emit(sequence: int) -> None:
            session = self.require_session()
            for outbound in self.machine.keepalive_tick(session, sequence, self.clock()):
                self.publish(outbound)

        self._keepalive = KeepaliveScheduler(
            session_id,
            probe,
            emit,
            interval_ms=config.keepalive_interval_ms,
            max_ticks=self.settings.keepalive_max_ticks,
            sleep=self.sleep,
        )
        self.track(session_id, self._keepalive.start())

    # ------------------------------------------------------------------ reporting

    def status(self) -> Dict[str, Any]:
        session = self.session
        return {
            "role": self.machine.role.value,
            "identity": self.machine.identity,
            "session": session.to_dict() if session is not None else None,
            "config": describe(self.config) if self.config is not None else None,
            "metrics": dict(self.metrics),
            "keepaliveTicks": self.keepalive_ticks,
        }


__all__ = ["Endpoint"]
