"""
Wire envelope models and the text codec.

Every message on the transport is a JSON object::

    {"cmd": "WEB_RTC", "ts": 1700000000000, "msgId": "...", "data": {...}}

Field names follow the deployed protocol (camelCase); the models expose
snake_case attributes.  Unknown payload keys are kept so relaying an envelope
never loses information.
"""

from __future__ import annotations

import json
import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import ProtocolViolation


class Command(str, Enum):
    SIGNAL = "WEB_RTC"
    KEEPALIVE_DATA = "P2P_KEEPALIVE"
    KEEPALIVE_DATA_RESPONSE = "P2P_KEEPALIVE_RESPONSE"
    CONFIG_SERVICE = "P2P_SIGNAL_CONFIG_SERVICE"
    UNRECOGNIZED = "UNRECOGNIZED"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Command":
        try:
            command = cls(str(value or ""))
        except ValueError:
            return cls.UNRECOGNIZED
        return command


class MessageType(str, Enum):
    READY = "ready"
    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "candidate"
    CONNECTED = "connected"
    BYE = "bye"
    KEEPALIVE = "keepalive"
    KEEPALIVE_RESPONSE = "keepalive_response"
    UNRECOGNIZED = "unrecognized"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["MessageType"]:
        if value is None or value == "":
            return None
        try:
            kind = cls(str(value))
        except ValueError:
            return cls.UNRECOGNIZED
        if kind is cls.UNRECOGNIZED:
            return cls.UNRECOGNIZED
        return kind


class Channel(str, Enum):
    """Keepalive channel tags, kept compatible with deployed devices."""

    DATA = "P2P"
    SIGNAL = "MQTT"


class Payload(BaseModel):
    type: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    sender: Optional[str] = Field(default=None, alias="from")
    recipient: Optional[str] = Field(default=None, alias="to")
    sdp: Optional[str] = None
    candidate: Optional[str] = None
    sdp_mid: Optional[str] = Field(default=None, alias="sdpMid")
    sdp_mline_index: Optional[int] = Field(default=None, alias="sdpMLineIndex")
    reason: Optional[str] = None
    sequence: Optional[int] = None
    original_sequence: Optional[int] = Field(default=None, alias="originalSequence")
    channel: Optional[str] = None
    status: Optional[str] = None
    capabilities: Optional[Dict[str, Any]] = None
    stun_servers: Optional[List[str]] = Field(default=None, alias="stunServers")
    turn_servers: Optional[List[str]] = Field(default=None, alias="turnServers")
    rtc_configuration: Optional[str] = Field(default=None, alias="rtcConfiguration")
    extra_config: Optional[str] = Field(default=None, alias="extraConfig")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @field_validator("session_id", "sender", "recipient", mode="before")
    @classmethod
    def _identity_as_text(cls, value: Any) -> Optional[str]:
        # Numeric member ids show up as JSON numbers from some backends.
        if value is None:
            return None
        return str(value)

    @property
    def kind(self) -> Optional[MessageType]:
        return MessageType.parse(self.type)


class Envelope(BaseModel):
    cmd: str
    ts: Optional[int] = None
    msg_id: Optional[Union[int, str]] = Field(default=None, alias="msgId")
    data: Optional[Payload] = None

    model_config = ConfigDict(populate_by_name=True)

    @property
    def command(self) -> Command:
        return Command.parse(self.cmd)

    @property
    def kind(self) -> Optional[MessageType]:
        return self.data.kind if self.data is not None else None

    @property
    def session_id(self) -> Optional[str]:
        return self.data.session_id if self.data is not None else None

    @property
    def sender(self) -> Optional[str]:
        return self.data.sender if self.data is not None else None


def now_ms() -> int:
    return int(time.time() * 1000)


def new_message_id() -> str:
    return uuid.uuid4().hex


def build(command: Command, ts: int, **fields: Any) -> Envelope:
    """Create an envelope with a fresh message id; ``None`` fields are dropped."""

    payload = Payload(**{key: value for key, value in fields.items() if value is not None})
    return Envelope(cmd=command.value, ts=int(ts), msg_id=new_message_id(), data=payload)


def to_dict(envelope: Envelope) -> Dict[str, Any]:
    return envelope.model_dump(by_alias=True, exclude_none=True)


def encode(envelope: Envelope) -> str:
    return json.dumps(to_dict(envelope), ensure_ascii=False, separators=(",", ":"))


def decode(raw: Union[str, bytes]) -> Envelope:
    """
    Parse transport text into an envelope.

    Raises :class:`ProtocolViolation` for invalid JSON or a malformed shape.
    """

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolViolation("payload is not valid UTF-8") from exc
    try:
        message = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProtocolViolation(f"payload is not JSON: {str(raw)[:100]}") from exc
    if not isinstance(message, dict):
        raise ProtocolViolation("payload is not a JSON object")
    try:
        return Envelope.model_validate(message)
    except ValidationError as exc:
        raise ProtocolViolation(f"malformed envelope: {exc.error_count()} error(s)") from exc


__all__ = [
    "Channel",
    "Command",
    "Envelope",
    "MessageType",
    "Payload",
    "build",
    "decode",
    "encode",
    "new_message_id",
    "now_ms",
    "to_dict",
]
