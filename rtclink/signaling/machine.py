"""
Signaling state machine for the initiator ("app") and responder ("device").

``on_envelope`` never performs I/O.  It classifies one inbound envelope,
computes the next session snapshot and returns the envelopes to publish plus
the side effects (subscriptions, keepalive control, automated flow) that the
owning endpoint must execute.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .envelope import Channel, Command, Envelope, MessageType, build
from .session import (
    FALLBACK_CONFIGURATION,
    Configuration,
    Connectivity,
    Readiness,
    Role,
    Session,
)
from .topics import is_addressable

LOG = logging.getLogger(__name__)


class EffectKind(str, Enum):
    SUBSCRIBE = "subscribe"
    RELEASE = "release"
    START_KEEPALIVE = "start_keepalive"
    STOP_KEEPALIVE = "stop_keepalive"
    RUN_AUTO_FLOW = "run_auto_flow"


@dataclass(frozen=True, slots=True)
class Effect:
    kind: EffectKind
    session_id: str


@dataclass(frozen=True, slots=True)
class Outbound:
    """An envelope to publish on the signaling or data channel of its session."""

    channel: Channel
    envelope: Envelope

    @property
    def session_id(self) -> Optional[str]:
        return self.envelope.session_id


@dataclass(frozen=True, slots=True)
class LatencySample:
    name: str
    value_ms: int


@dataclass(frozen=True)
class Transition:
    session: Optional[Session]
    outbound: Tuple[Outbound, ...] = ()
    effects: Tuple[Effect, ...] = ()
    config: Optional[Configuration] = None
    samples: Tuple[LatencySample, ...] = ()
    dropped: Optional[str] = None

    @classmethod
    def drop(cls, session: Optional[Session], reason: str) -> "Transition":
        return cls(session=session, dropped=reason)

    @property
    def accepted(self) -> bool:
        return self.dropped is None


def elapsed(name: str, start: Optional[int], end: Optional[int]) -> Tuple[LatencySample, ...]:
    """A one-sample tuple when both timestamps are known, otherwise empty."""

    if start is None or end is None:
        return ()
    return (LatencySample(name, int(end) - int(start)),)


Handler = Callable[[Session, Envelope, int], Transition]


class SignalingMachine:
    """Shared guards, dispatch and envelope builders for both roles."""

    role: Role
    reply_to_bye = False

    def __init__(self, identity: str) -> None:
        if not identity:
            raise ValueError("identity must not be empty")
        self.identity = str(identity)

    # ------------------------------------------------------------------ dispatch

    def on_envelope(self, session: Optional[Session], envelope: Envelope, now: int) -> Transition:
        command = envelope.command
        if command is Command.UNRECOGNIZED:
            return Transition.drop(session, f"unknown command tag '{envelope.cmd}'")
        if command is Command.CONFIG_SERVICE:
            return self._on_config_push(session, envelope, now)

        data = envelope.data
        if data is None:
            return Transition.drop(session, "missing payload")
        if data.sender is not None and data.sender == self.identity:
            return Transition.drop(session, "self echo")
        kind = data.kind
        if command is Command.SIGNAL and kind is None:
            return Transition.drop(session, "missing message type")
        if session is None:
            return Transition.drop(session, "no active session")
        if data.session_id != session.session_id:
            return Transition.drop(
                session, f"session id mismatch (got {data.session_id}, holding {session.session_id})"
            )
        if not session.is_open:
            return Transition.drop(session, "session already closed")

        if command is Command.KEEPALIVE_DATA:
            return self._on_keepalive(self._adopt_peer(session, data.sender), envelope, now, Channel.DATA)
        if command is Command.KEEPALIVE_DATA_RESPONSE:
            return self._on_keepalive_response(session, envelope, now, Channel.DATA)

        if kind is MessageType.UNRECOGNIZED:
            return Transition.drop(session, f"unrecognized message type '{data.type}'")
        handler = self._handlers().get(kind)
        if handler is None:
            return Transition.drop(session, f"'{kind.value}' is not handled by the {self.role.value} role")
        if kind is not MessageType.CONNECTED:
            session = self._adopt_peer(session, data.sender)
        return handler(session, envelope, now)

    def _handlers(self) -> Dict[MessageType, Handler]:
        return {
            MessageType.BYE: self._on_bye,
            MessageType.KEEPALIVE: lambda s, e, n: self._on_keepalive(s, e, n, Channel.SIGNAL),
            MessageType.KEEPALIVE_RESPONSE: lambda s, e, n: self._on_keepalive_response(s, e, n, Channel.SIGNAL),
        }

    def _on_config_push(self, session: Optional[Session], envelope: Envelope, now: int) -> Transition:
        return Transition.drop(session, f"configuration push is not addressed to the {self.role.value} role")

    @staticmethod
    def _adopt_peer(session: Session, sender: Optional[str]) -> Session:
        if session.peer_identity is None and sender:
            LOG.info("Peer identity resolved to %s", sender)
            return session.evolve(peer_identity=sender)
        return session

    # ------------------------------------------------------------------ shared handlers

    def _on_bye(self, session: Session, envelope: Envelope, now: int) -> Transition:
        data = envelope.data
        reason = data.reason if data is not None else None
        closed = session.closed(reason or "closed by peer")
        outbound: Tuple[Outbound, ...] = ()
        sender = data.sender if data is not None else None
        if self.reply_to_bye and session.peer_identity is not None and sender == session.peer_identity:
            outbound = (self.signal(closed, MessageType.BYE, now, reason="peer requested close"),)
        return Transition(
            session=closed,
            outbound=outbound,
            effects=self._teardown(session.session_id),
        )

    def _on_keepalive(self, session: Session, envelope: Envelope, now: int, channel: Channel) -> Transition:
        if not session.is_connected:
            return Transition.drop(session, f"{channel.value} keepalive before connected")
        data = envelope.data
        sequence = data.sequence if data is not None else None
        if channel is Channel.DATA:
            reply = self.data_message(
                session,
                Command.KEEPALIVE_DATA_RESPONSE,
                now,
                type=MessageType.KEEPALIVE_RESPONSE.value,
                original_sequence=sequence,
                channel=channel.value,
                status="alive",
            )
        else:
            reply = self.signal(
                session,
                MessageType.KEEPALIVE_RESPONSE,
                now,
                original_sequence=sequence,
                channel=channel.value,
                status="alive",
            )
        return Transition(
            session=session,
            outbound=(reply,),
            samples=elapsed(f"keepalive_delay_{channel.name.lower()}", envelope.ts, now),
        )

    def _on_keepalive_response(
        self, session: Session, envelope: Envelope, now: int, channel: Channel
    ) -> Transition:
        return Transition(
            session=session,
            samples=elapsed(f"keepalive_response_delay_{channel.name.lower()}", envelope.ts, now),
        )

    @staticmethod
    def _teardown(session_id: str) -> Tuple[Effect, ...]:
        return (
            Effect(EffectKind.STOP_KEEPALIVE, session_id),
            Effect(EffectKind.RELEASE, session_id),
        )

    # ------------------------------------------------------------------ builders

    def signal(self, session: Session, kind: MessageType, now: int, **fields: Any) -> Outbound:
        envelope = build(
            Command.SIGNAL,
            now,
            type=kind.value,
            session_id=session.session_id,
            sender=self.identity,
            recipient=session.peer_identity,
            **fields,
        )
        return Outbound(Channel.SIGNAL, envelope)

    def data_message(self, session: Session, command: Command, now: int, **fields: Any) -> Outbound:
        envelope = build(
            command,
            now,
            session_id=session.session_id,
            sender=self.identity,
            recipient=session.peer_identity,
            **fields,
        )
        return Outbound(Channel.DATA, envelope)

    def keepalive_tick(self, session: Session, sequence: int, now: int) -> Tuple[Outbound, Outbound]:
        """The data channel and signaling channel keepalives for one tick."""

        data = self.data_message(
            session,
            Command.KEEPALIVE_DATA,
            now,
            type=MessageType.KEEPALIVE.value,
            sequence=sequence,
            channel=Channel.DATA.value,
        )
        signal = self.signal(
            session,
            MessageType.KEEPALIVE,
            now,
            sequence=sequence,
            channel=Channel.SIGNAL.value,
            status="connected",
        )
        return data, signal

    def heartbeat(self, session: Session, sequence: int, now: int) -> Transition:
        return Transition(
            session=session,
            outbound=(self.signal(session, MessageType.KEEPALIVE, now, sequence=sequence, channel=Channel.SIGNAL.value),),
        )

    def close(self, session: Session, now: int, reason: str) -> Transition:
        """Locally initiated ``bye``."""

        closed = session.closed(reason)
        return Transition(
            session=closed,
            outbound=(self.signal(closed, MessageType.BYE, now, reason=reason),),
            effects=self._teardown(session.session_id),
        )


class ResponderMachine(SignalingMachine):
    """Device side: waits for a configuration push, answers ICE with ``connected``."""

    role = Role.RESPONDER
    reply_to_bye = True

    def __init__(self, identity: str, *, capabilities: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(identity)
        self.capabilities = dict(capabilities or {})

    def _handlers(self) -> Dict[MessageType, Handler]:
        handlers = super()._handlers()
        handlers.update(
            {
                MessageType.OFFER: self._on_offer,
                MessageType.CANDIDATE: self._on_candidate,
                MessageType.CONNECTED: self._on_connected,
            }
        )
        return handlers

    def _on_config_push(self, session: Optional[Session], envelope: Envelope, now: int) -> Transition:
        data = envelope.data
        if data is None or not data.session_id:
            return Transition.drop(session, "configuration push without session id")
        if session is not None and session.session_id == data.session_id and session.is_open:
            return Transition.drop(session, "duplicate configuration push")
        try:
            config = Configuration.from_payload(data.model_dump(by_alias=True, exclude_none=True))
        except ValueError as exc:
            LOG.warning("Pushed configuration unusable (%s); installing fallback", exc)
            config = FALLBACK_CONFIGURATION
        return self.adopt(session, data.session_id, data.sender, now, config=config)

    def adopt(
        self,
        session: Optional[Session],
        session_id: str,
        peer_identity: Optional[str],
        now: int,
        *,
        config: Optional[Configuration] = None,
    ) -> Transition:
        """Start ``session_id``, closing any prior open session, and announce ``ready``."""

        if not is_addressable(session_id):
            return Transition.drop(session, "unaddressable session id")
        outbound: Tuple[Outbound, ...] = ()
        effects: Tuple[Effect, ...] = ()
        if session is not None and session.is_open:
            superseded = self.close(session, now, "superseded by a new session")
            outbound += superseded.outbound
            effects += superseded.effects
        fresh = Session(
            session_id=session_id,
            role=self.role,
            local_identity=self.identity,
            peer_identity=peer_identity,
            readiness=Readiness.PEER_READY,
            connectivity=Connectivity.IDLE,
            created_at=now,
            ready_at=now,
        )
        ready = self.signal(fresh, MessageType.READY, now, capabilities=self.capabilities or None)
        return Transition(
            session=fresh,
            outbound=outbound + (ready,),
            effects=effects + (Effect(EffectKind.SUBSCRIBE, session_id),),
            config=config,
        )

    def _on_offer(self, session: Session, envelope: Envelope, now: int) -> Transition:
        if session.connectivity not in (Connectivity.IDLE, Connectivity.NEGOTIATING):
            return Transition.drop(session, f"offer while {session.connectivity.value}")
        updated = session.evolve(connectivity=Connectivity.NEGOTIATING, offer_received_at=now)
        return Transition(
            session=updated,
            samples=elapsed("offer_delay", envelope.ts, now) + elapsed("ready_to_offer", session.ready_at, now),
        )

    def _on_candidate(self, session: Session, envelope: Envelope, now: int) -> Transition:
        samples = elapsed("candidate_delay", envelope.ts, now)
        if session.connectivity is Connectivity.CONNECTED:
            return Transition(session=session, samples=samples)
        if session.connectivity is not Connectivity.NEGOTIATING:
            return Transition.drop(session, "candidate before offer")
        # No real ICE runs here: an accepted candidate is treated as connectivity.
        transition = self.connect(session, now)
        return Transition(
            session=transition.session,
            outbound=transition.outbound,
            effects=transition.effects,
            samples=samples,
        )

    def _on_connected(self, session: Session, envelope: Envelope, now: int) -> Transition:
        sender = envelope.sender
        matches = (session.peer_identity is not None and sender == session.peer_identity) or (
            session.peer_identity is None and sender is None
        )
        if not matches:
            return Transition.drop(
                session, f"connected from {sender}, expected {session.peer_identity}"
            )
        if session.is_connected:
            return Transition(session=session)
        if session.connectivity is not Connectivity.NEGOTIATING:
            return Transition.drop(session, f"connected while {session.connectivity.value}")
        updated = session.evolve(connectivity=Connectivity.CONNECTED, connected_at=now)
        return Transition(
            session=updated,
            effects=(Effect(EffectKind.START_KEEPALIVE, session.session_id),),
            samples=elapsed("offer_to_connected", session.offer_received_at, now),
        )

    def connect(self, session: Session, now: int) -> Transition:
        """Mark the session connected, announce it and start the keepalive."""

        updated = session.evolve(connectivity=Connectivity.CONNECTED, connected_at=now)
        return Transition(
            session=updated,
            outbound=(self.signal(updated, MessageType.CONNECTED, now),),
            effects=(Effect(EffectKind.START_KEEPALIVE, session.session_id),),
        )

    def candidate(self, session: Session, now: int, candidate: str) -> Transition:
        updated = session.evolve(candidate_sent_at=now)
        return Transition(
            session=updated,
            outbound=(
                self.signal(updated, MessageType.CANDIDATE, now, candidate=candidate, sdp_mid="0", sdp_mline_index=0),
            ),
        )

    def answer(self, session: Session, now: int, sdp: str) -> Transition:
        return Transition(session=session, outbound=(self.signal(session, MessageType.ANSWER, now, sdp=sdp),))


class InitiatorMachine(SignalingMachine):
    """App side: creates sessions, sends offer and ICE, measures latencies."""

    role = Role.INITIATOR

    def _handlers(self) -> Dict[MessageType, Handler]:
        handlers = super()._handlers()
        handlers.update(
            {
                MessageType.READY: self._on_ready,
                MessageType.ANSWER: self._on_answer,
                MessageType.CANDIDATE: self._on_candidate,
                MessageType.CONNECTED: self._on_connected,
            }
        )
        return handlers

    def create(self, session_id: str, peer_identity: str, now: int, *, auto_flow: bool = False) -> Transition:
        if not is_addressable(session_id):
            return Transition.drop(None, "unaddressable session id")
        session = Session(
            session_id=session_id,
            role=self.role,
            local_identity=self.identity,
            peer_identity=peer_identity,
            readiness=Readiness.WAITING_FOR_PEER,
            connectivity=Connectivity.NEGOTIATING,
            created_at=now,
            auto_flow=auto_flow,
        )
        return Transition(session=session, effects=(Effect(EffectKind.SUBSCRIBE, session_id),))

    def _on_ready(self, session: Session, envelope: Envelope, now: int) -> Transition:
        if session.readiness is not Readiness.WAITING_FOR_PEER:
            return Transition(session=session)
        updated = session.evolve(readiness=Readiness.PEER_READY, ready_at=now)
        effects: Tuple[Effect, ...] = ()
        if session.auto_flow:
            effects = (Effect(EffectKind.RUN_AUTO_FLOW, session.session_id),)
        return Transition(
            session=updated,
            effects=effects,
            samples=elapsed("ready_delay", envelope.ts, now) + elapsed("create_to_ready", session.created_at, now),
        )

    def _on_answer(self, session: Session, envelope: Envelope, now: int) -> Transition:
        return Transition(session=session, samples=elapsed("offer_to_answer", session.offer_sent_at, now))

    def _on_candidate(self, session: Session, envelope: Envelope, now: int) -> Transition:
        return Transition(session=session, samples=elapsed("candidate_delay", envelope.ts, now))

    def _on_connected(self, session: Session, envelope: Envelope, now: int) -> Transition:
        if session.is_connected:
            return Transition(session=session)
        updated = session.evolve(connectivity=Connectivity.CONNECTED, connected_at=now)
        return Transition(
            session=updated,
            effects=(Effect(EffectKind.START_KEEPALIVE, session.session_id),),
            samples=elapsed("create_to_connected", session.created_at, now),
        )

    def offer(self, session: Session, now: int, sdp: str) -> Transition:
        connectivity = session.connectivity
        if connectivity is Connectivity.IDLE:
            connectivity = Connectivity.NEGOTIATING
        updated = session.evolve(offer_sent_at=now, connectivity=connectivity)
        return Transition(
            session=updated,
            outbound=(self.signal(updated, MessageType.OFFER, now, sdp=sdp, candidate=""),),
        )

    def candidate(self, session: Session, now: int, candidate: str) -> Transition:
        updated = session.evolve(candidate_sent_at=now)
        return Transition(
            session=updated,
            outbound=(self.signal(updated, MessageType.CANDIDATE, now, candidate=candidate),),
        )


__all__ = [
    "Effect",
    "EffectKind",
    "InitiatorMachine",
    "LatencySample",
    "Outbound",
    "ResponderMachine",
    "SignalingMachine",
    "Transition",
    "elapsed",
]
