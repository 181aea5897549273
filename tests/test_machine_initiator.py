"""Initiator ("app") transitions and outbound builders."""

from rtclink.signaling.envelope import Channel, Command, Envelope, MessageType, build
from rtclink.signaling.machine import Effect, EffectKind, InitiatorMachine
from rtclink.signaling.session import Connectivity, Readiness

APP = "188815492"
DEVICE = "AF070135F064641AG"


def signal(kind: MessageType, session_id: str = "s1", ts: int = 1_000, sender: str = DEVICE, **fields) -> Envelope:
    return build(Command.SIGNAL, ts, type=kind.value, session_id=session_id, sender=sender, **fields)


def test_create_waits_for_peer() -> None:
    machine = InitiatorMachine(APP)

    transition = machine.create("s1", DEVICE, 1_000)

    session = transition.session
    assert session.readiness is Readiness.WAITING_FOR_PEER
    assert session.connectivity is Connectivity.NEGOTIATING
    assert session.created_at == 1_000
    assert transition.outbound == ()
    assert transition.effects == (Effect(EffectKind.SUBSCRIBE, "s1"),)


def test_ready_marks_peer_ready_and_triggers_auto_flow() -> None:
    machine = InitiatorMachine(APP)
    manual = machine.create("s1", DEVICE, 1_000).session
    auto = machine.create("s1", DEVICE, 1_000, auto_flow=True).session

    manual_ready = machine.on_envelope(manual, signal(MessageType.READY, ts=1_200), 1_250)
    auto_ready = machine.on_envelope(auto, signal(MessageType.READY, ts=1_200), 1_250)

    assert manual_ready.session.readiness is Readiness.PEER_READY
    assert manual_ready.effects == ()
    assert auto_ready.effects == (Effect(EffectKind.RUN_AUTO_FLOW, "s1"),)
    assert {s.name: s.value_ms for s in auto_ready.samples} == {"ready_delay": 50, "create_to_ready": 250}


def test_duplicate_ready_is_a_no_op() -> None:
    machine = InitiatorMachine(APP)
    session = machine.create("s1", DEVICE, 1_000, auto_flow=True).session
    ready = machine.on_envelope(session, signal(MessageType.READY), 1_100).session

    again = machine.on_envelope(ready, signal(MessageType.READY), 1_200)

    assert again.accepted
    assert again.session is ready
    assert again.effects == ()


def test_offer_records_send_time_and_answer_latency() -> None:
    machine = InitiatorMachine(APP)
    session = machine.create("s1", DEVICE, 1_000).session

    offer = machine.offer(session, 1_500, "v=0")
    [out] = offer.outbound
    assert out.channel is Channel.SIGNAL
    assert out.envelope.kind is MessageType.OFFER
    assert out.envelope.data.sdp == "v=0"
    assert out.envelope.data.candidate == ""
    assert out.envelope.data.recipient == DEVICE
    assert offer.session.offer_sent_at == 1_500

    answer = machine.on_envelope(offer.session, signal(MessageType.ANSWER, sdp="v=0"), 1_800)
    assert [(s.name, s.value_ms) for s in answer.samples] == [("offer_to_answer", 300)]


def test_unmeasured_latencies_are_omitted() -> None:
    machine = InitiatorMachine(APP)
    session = machine.create("s1", DEVICE, 1_000).session

    answer = machine.on_envelope(session, signal(MessageType.ANSWER, sdp="v=0"), 1_800)
    untimed = Envelope(cmd="WEB_RTC", data={"type": "candidate", "sessionId": "s1", "from": DEVICE})
    candidate = machine.on_envelope(session, untimed, 1_800)

    assert answer.samples == ()
    assert candidate.accepted
    assert candidate.samples == ()


def test_connected_starts_keepalive() -> None:
    machine = InitiatorMachine(APP)
    session = machine.create("s1", DEVICE, 1_000).session

    transition = machine.on_envelope(session, signal(MessageType.CONNECTED), 4_000)

    assert transition.session.connectivity is Connectivity.CONNECTED
    assert transition.effects == (Effect(EffectKind.START_KEEPALIVE, "s1"),)
    assert [(s.name, s.value_ms) for s in transition.samples] == [("create_to_connected", 3_000)]


def test_bye_from_device_closes_without_reply() -> None:
    machine = InitiatorMachine(APP)
    session = machine.create("s1", DEVICE, 1_000).session

    transition = machine.on_envelope(session, signal(MessageType.BYE), 2_000)

    assert transition.session.connectivity is Connectivity.CLOSED
    assert transition.outbound == ()
    assert transition.effects == (Effect(EffectKind.STOP_KEEPALIVE, "s1"), Effect(EffectKind.RELEASE, "s1"))


def test_keepalive_response_only_samples() -> None:
    machine = InitiatorMachine(APP)
    session = machine.on_envelope(
        machine.create("s1", DEVICE, 1_000).session, signal(MessageType.CONNECTED), 1_100
    ).session

    response = build(
        Command.KEEPALIVE_DATA_RESPONSE, 1_180, type="keepalive_response", session_id="s1", sender=DEVICE, original_sequence=1
    )
    transition = machine.on_envelope(session, response, 1_200)

    assert transition.session is session
    assert transition.outbound == ()
    assert [(s.name, s.value_ms) for s in transition.samples] == [("keepalive_response_delay_data", 20)]


def test_keepalive_tick_covers_both_channels() -> None:
    machine = InitiatorMachine(APP)
    session = machine.create("s1", DEVICE, 1_000).session

    data, sig = machine.keepalive_tick(session, 3, 5_000)

    assert data.channel is Channel.DATA
    assert data.envelope.command is Command.KEEPALIVE_DATA
    assert data.envelope.data.channel == "P2P"
    assert sig.channel is Channel.SIGNAL
    assert sig.envelope.kind is MessageType.KEEPALIVE
    assert sig.envelope.data.channel == "MQTT"
    assert data.envelope.data.sequence == sig.envelope.data.sequence == 3


def test_local_close_sends_bye() -> None:
    machine = InitiatorMachine(APP)
    session = machine.create("s1", DEVICE, 1_000).session

    transition = machine.close(session, 2_000, "user requested")

    assert not transition.session.is_open
    [bye] = transition.outbound
    assert bye.envelope.kind is MessageType.BYE
    assert bye.envelope.data.reason == "user requested"
    assert bye.envelope.session_id == "s1"


def test_config_push_is_not_for_the_app() -> None:
    machine = InitiatorMachine(APP)
    push = build(Command.CONFIG_SERVICE, 1, session_id="s1", stun_servers=["stun:x"])

    transition = machine.on_envelope(None, push, 1)

    assert not transition.accepted
    assert transition.session is None


def test_create_rejects_unaddressable_ids() -> None:
    machine = InitiatorMachine(APP)

    transition = machine.create("s#1", DEVICE, 1_000)

    assert transition.dropped == "unaddressable session id"
    assert transition.session is None
    assert transition.effects == ()
