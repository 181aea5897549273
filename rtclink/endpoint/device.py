"""
Responder endpoint ("device").
"""

from __future__ import annotations

import uuid
from typing import Any, Mapping, Optional

from ..errors import PreconditionError
from ..signaling.machine import ResponderMachine
from ..signaling.session import Session
from ..transport.base import Transport
from ..utils.settings import EndpointSettings
from .base import Clock, Endpoint, Sleep

DEFAULT_CAPABILITIES = {
    "video": True,
    "audio": True,
    "maxResolution": "1920x1080",
    "codecs": "H264,H265",
}
SIMULATED_CANDIDATE = "candidate:1 1 UDP 2013266431 192.168.1.200 12345 typ host"
SIMULATED_ANSWER_SDP = (
    "v=0\r\no=- 9876543210 9876543210 IN IP4 192.168.1.200\r\ns=-\r\nt=0 0\r\n"
    "m=video 9 UDP/TLS/RTP/SAVPF 96\r\nc=IN IP4 0.0.0.0\r\na=rtpmap:96 H264/90000\r\n"
)


class DeviceEndpoint(Endpoint):
    def __init__(
        self,
        settings: EndpointSettings,
        transport: Transport,
        *,
        capabilities: Optional[Mapping[str, Any]] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        machine = ResponderMachine(
            settings.device_id,
            capabilities=DEFAULT_CAPABILITIES if capabilities is None else capabilities,
        )
        super().__init__(settings, transport, machine, clock=clock, sleep=sleep)

    async def start(self) -> None:
        await super().start()
        topic = self.topics.device_service()
        self.transport.subscribe(topic, self.settings.qos)
        self.logger.info("Listening for configuration pushes on %s", topic)

    def announce_ready(self, session_id: Optional[str] = None) -> Session:
        """
        Adopt ``session_id`` without a configuration push and announce ``ready``.

        A fresh id is generated when none is given; the peer identity is
        resolved from the first message the app sends.
        """

        transition = self.machine.adopt(self.session, session_id or uuid.uuid4().hex, None, self.clock())
        if not transition.accepted:
            raise PreconditionError(f"{transition.dropped}: {session_id!r}")
        self.apply(transition)
        return self.require_session()

    def send_answer(self, sdp: str = SIMULATED_ANSWER_SDP) -> Session:
        session = self.require_session()
        self.apply(self.machine.answer(session, self.clock(), sdp))
        return self.require_session()

    def send_candidate(self, candidate: str = SIMULATED_CANDIDATE) -> Session:
        session = self.require_session()
        self.apply(self.machine.candidate(session, self.clock(), candidate))
        return self.require_session()

    def send_connected(self) -> Session:
        session = self.require_session()
        if session.is_connected:
            raise PreconditionError("session is already connected")
        self.apply(self.machine.connect(session, self.clock()))
        return self.require_session()


__all__ = ["DEFAULT_CAPABILITIES", "DeviceEndpoint", "SIMULATED_ANSWER_SDP", "SIMULATED_CANDIDATE"]
