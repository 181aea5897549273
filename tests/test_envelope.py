import json

import pytest

from rtclink.errors import ProtocolViolation
from rtclink.signaling.envelope import Command, MessageType, build, decode, encode, to_dict


def test_encode_uses_wire_names_and_skips_empty_fields() -> None:
    envelope = build(
        Command.SIGNAL,
        1_700_000_000_000,
        type="candidate",
        session_id="s1",
        sender="188815492",
        recipient="AF070135F064641AG",
        candidate="candidate:1 1 UDP 2113667326 192.168.1.100 54400 typ host",
        sdp_mid="0",
        sdp_mline_index=0,
    )

    message = json.loads(encode(envelope))

    assert message["cmd"] == "WEB_RTC"
    assert message["ts"] == 1_700_000_000_000
    assert message["msgId"]
    assert message["data"] == {
        "type": "candidate",
        "sessionId": "s1",
        "from": "188815492",
        "to": "AF070135F064641AG",
        "candidate": "candidate:1 1 UDP 2113667326 192.168.1.100 54400 typ host",
        "sdpMid": "0",
        "sdpMLineIndex": 0,
    }


def test_decode_preserves_fields() -> None:
    original = build(Command.KEEPALIVE_DATA, 5, type="keepalive", session_id="s1", sender="a", sequence=3, channel="P2P")

    decoded = decode(encode(original))

    assert encode(decoded) == encode(original)
    assert decoded.command is Command.KEEPALIVE_DATA
    assert decoded.kind is MessageType.KEEPALIVE
    assert decoded.session_id == "s1"
    assert decoded.sender == "a"
    assert decoded.data.sequence == 3
    assert decoded.msg_id == original.msg_id


def test_message_ids_are_unique() -> None:
    first = build(Command.SIGNAL, 1, type="bye", session_id="s")
    second = build(Command.SIGNAL, 1, type="bye", session_id="s")

    assert first.msg_id != second.msg_id


def test_unknown_tags_and_types_decode_as_unrecognized() -> None:
    envelope = decode('{"cmd": "SOMETHING_NEW", "data": {"type": "renegotiate", "sessionId": "s"}}')

    assert envelope.command is Command.UNRECOGNIZED
    assert envelope.kind is MessageType.UNRECOGNIZED
    assert MessageType.parse("") is None
    assert MessageType.parse(None) is None


def test_unknown_payload_keys_survive_round_trip() -> None:
    envelope = decode('{"cmd": "WEB_RTC", "msgId": 7, "data": {"type": "offer", "sessionId": "s", "vendor": {"x": 1}}}')

    assert to_dict(envelope)["data"]["vendor"] == {"x": 1}
    assert to_dict(envelope)["msgId"] == 7


def test_numeric_identities_become_text() -> None:
    envelope = decode('{"cmd": "WEB_RTC", "data": {"type": "ready", "sessionId": 12, "from": 188815492}}')

    assert envelope.sender == "188815492"
    assert envelope.session_id == "12"


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        b"\xff\xfe",
        '{"data": {}}',
        '{"cmd": "WEB_RTC", "data": {"sequence": "many"}}',
    ],
)
def test_malformed_payloads_raise(raw) -> None:
    with pytest.raises(ProtocolViolation):
        decode(raw)


WIRE_MESSAGES = [
    {
        "cmd": "WEB_RTC",
        "ts": 10,
        "msgId": "m-ready",
        "data": {
            "type": "ready",
            "sessionId": "s1",
            "from": "AF070135F064641AG",
            "to": "188815492",
            "capabilities": {"video": True, "audio": True, "codecs": ["H264", "OPUS"]},
        },
    },
    {
        "cmd": "WEB_RTC",
        "ts": 11,
        "msgId": "m-offer",
        "data": {"type": "offer", "sessionId": "s1", "from": "188815492", "to": "AF070135F064641AG", "sdp": "v=0\r\n"},
    },
    {
        "cmd": "WEB_RTC",
        "ts": 12,
        "msgId": "m-answer",
        "data": {"type": "answer", "sessionId": "s1", "from": "AF070135F064641AG", "sdp": "v=0\r\na=answer\r\n"},
    },
    {
        "cmd": "WEB_RTC",
        "ts": 13,
        "msgId": 42,
        "data": {
            "type": "candidate",
            "sessionId": "s1",
            "from": "188815492",
            "candidate": "candidate:1 1 UDP 2113667326 192.168.1.100 54400 typ host",
            "sdpMid": "0",
            "sdpMLineIndex": 0,
        },
    },
    {"cmd": "WEB_RTC", "ts": 14, "msgId": "m-connected", "data": {"type": "connected", "sessionId": "s1", "from": "AF070135F064641AG"}},
    {"cmd": "WEB_RTC", "ts": 15, "msgId": "m-bye", "data": {"type": "bye", "sessionId": "s1", "from": "188815492", "reason": "user requested"}},
    {"cmd": "WEB_RTC", "ts": 16, "msgId": "m-ka", "data": {"type": "keepalive", "sessionId": "s1", "from": "188815492", "sequence": 7}},
    {
        "cmd": "WEB_RTC",
        "ts": 17,
        "msgId": "m-kar",
        "data": {"type": "keepalive_response", "sessionId": "s1", "from": "AF070135F064641AG", "originalSequence": 7, "status": "ok"},
    },
    {
        "cmd": "P2P_KEEPALIVE_RESPONSE",
        "ts": 18,
        "msgId": "m-data-kar",
        "data": {
            "type": "keepalive_response",
            "sessionId": "s1",
            "from": "AF070135F064641AG",
            "originalSequence": 3,
            "channel": "P2P",
            "status": "ok",
        },
    },
    {
        "cmd": "P2P_SIGNAL_CONFIG_SERVICE",
        "ts": 19,
        "msgId": "m-config",
        "data": {
            "sessionId": "s1",
            "from": "188815492",
            "stunServers": ["stun:stun.l.google.com:19302"],
            "turnServers": ["turn:turn.example.com:3478"],
            "rtcConfiguration": '{"iceTransportPolicy": "all"}',
            "extraConfig": '{"keepAliveInterval": 5000}',
        },
    },
]


@pytest.mark.parametrize("message", WIRE_MESSAGES, ids=lambda message: message["msgId"] if isinstance(message["msgId"], str) else "numeric-id")
def test_wire_messages_survive_decode_and_encode(message) -> None:
    assert json.loads(encode(decode(json.dumps(message)))) == message
