"""
Initiator endpoint ("app").
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from ..cloud.client import SessionApiClient
from ..errors import PreconditionError, SessionApiError
from ..signaling.machine import InitiatorMachine
from ..signaling.session import Readiness, Session
from ..transport.base import Transport
from ..utils.settings import EndpointSettings
from .base import Clock, Endpoint, Sleep

SIMULATED_OFFER_SDP = (
    "v=0\r\no=- 123456789 2 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\n"
    "m=video 9 UDP/TLS/RTP/SAVPF 96\r\nc=IN IP4 0.0.0.0\r\na=rtpmap:96 H264/90000\r\n"
)
SIMULATED_CANDIDATE = "candidate:1 1 UDP 2113667326 192.168.1.100 54400 typ host"


class AppEndpoint(Endpoint):
    def __init__(
        self,
        settings: EndpointSettings,
        transport: Transport,
        api: SessionApiClient,
        *,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        super().__init__(settings, transport, InitiatorMachine(settings.app_id), clock=clock, sleep=sleep)
        self.api = api
        self.flow_result: Optional[bool] = None
        self._heartbeat_sequence = 0

    async def create_session(self, *, auto_flow: bool = False) -> Session:
        """
        Ask the session API for a new session and start listening on its topics.

        Any active session is closed first.  The device may answer the
        configuration push before the HTTP response arrives, so inbound
        signaling for every session is watched and held while the request is
        in flight, then replayed against the new session.
        """

        if self.active_session is not None:
            self.end_session("superseded by a new session")
        watch = self.topics.inbound_signal_filter(self.machine.role)
        self.transport.subscribe(watch, self.settings.qos)
        self.hold_inbound()
        try:
            session_id = await self.api.create_session(self.settings.device_id)
            self._heartbeat_sequence = 0
            self.flow_result = None
            transition = self.machine.create(session_id, self.settings.device_id, self.clock(), auto_flow=auto_flow)
            if not transition.accepted:
                raise SessionApiError(f"session id {session_id!r} cannot be used in a topic")
            self.apply(transition)
            self.logger.info("Session %s created; waiting for device ready", session_id)
        finally:
            self.transport.unsubscribe(watch)
            self.release_inbound()
        return self.require_session()

    async def query_status(self) -> Any:
        session = self.require_session()
        return await self.api.session_status(session.session_id)

    async def fetch_config(self) -> None:
        session = self.require_session()
        config = await self.api.config_or_fallback(session.session_id)
        if self.is_current(session.session_id):
            self.config = config

    def send_offer(self, sdp: str = SIMULATED_OFFER_SDP) -> Session:
        session = self.require_session()
        if session.readiness is not Readiness.PEER_READY:
            raise PreconditionError("device is not ready yet")
        self.apply(self.machine.offer(session, self.clock(), sdp))
        return self.require_session()

    def send_candidate(self, candidate: str = SIMULATED_CANDIDATE) -> Session:
        session = self.require_session()
        self.apply(self.machine.candidate(session, self.clock(), candidate))
        return self.require_session()

    def send_heartbeat(self) -> int:
        session = self.require_session()
        self._heartbeat_sequence += 1
        self.apply(self.machine.heartbeat(session, self._heartbeat_sequence, self.clock()))
        return self._heartbeat_sequence

    async def run_auto(self) -> Session:
        """Create a session whose offer/candidate exchange runs once the device is ready."""

        return await self.create_session(auto_flow=True)

    def run_auto_flow(self, session_id: str) -> None:
        self.spawn(session_id, self._auto_flow(session_id), name=f"auto-flow-{session_id}")

    async def _auto_flow(self, session_id: str) -> None:
        self.logger.info("Automated flow started for %s", session_id)
        try:
            await self.fetch_config()
            if not self.is_current(session_id):
                return
            self.send_offer()
            await self.sleep(self.settings.offer_settle_s)
            if not self.is_current(session_id):
                return
            self.send_candidate()
            await self.sleep(self.settings.candidate_settle_s)
            if not self.is_current(session_id):
                return
        except asyncio.CancelledError:
            self.logger.info("Automated flow for %s cancelled", session_id)
            raise
        session = self.require_session()
        self.flow_result = session.is_connected
        if session.is_connected:
            self.logger.info("Automated flow for %s complete; session connected", session_id)
        else:
            self.logger.warning(
                "Automated flow for %s finished but session is %s", session_id, session.connectivity.value
            )


__all__ = ["AppEndpoint", "SIMULATED_CANDIDATE", "SIMULATED_OFFER_SDP"]
