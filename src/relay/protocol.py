"""WebSocket message protocol definitions.

Defines Pydantic models for signaling message serialization/deserialization.
Fields are snake_case in Python and camelCase on the wire.
"""

import json
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string with millisecond precision."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class WireModel(BaseModel):
    """Base model mapping snake_case fields to camelCase wire names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> str:
        """Serialize to the JSON text sent over the socket."""
        return self.model_dump_json(by_alias=True)


# === Client → Server ===


class RegisterMessage(WireModel):
    """Client → Server: declare role and optional call association."""

    type: Literal["register"] = "register"
    role: Literal["customer", "agent"]
    call_id: str | None = None


class OfferMessage(WireModel):
    """Client → Server: customer submits a session offer for a call."""

    type: Literal["offer"] = "offer"
    call_id: str | None = Field(
        default=None, min_length=1, description="Call id; generated by the relay if omitted"
    )
    offer: Any = None
    caller_name: Any = None
    caller_phone: Any = None
    call_reason: Any = None


class AnswerMessage(WireModel):
    """Client → Server: agent answers the call it is associated with."""

    type: Literal["answer"] = "answer"
    answer: Any = None


class IceCandidateMessage(WireModel):
    """Client → Server: ICE candidate for the sender's current call."""

    type: Literal["ice-candidate"] = "ice-candidate"
    candidate: Any = None


class AgentReadyMessage(WireModel):
    """Client → Server: agent is idle and ready to take calls."""

    type: Literal["agent-ready"] = "agent-ready"


class EndCallMessage(WireModel):
    """Client → Server: end the sender's current call."""

    type: Literal["end-call"] = "end-call"


class PingMessage(WireModel):
    """Client → Server: application-level heartbeat."""

    type: Literal["ping"] = "ping"


ClientMessage = (
    RegisterMessage
    | OfferMessage
    | AnswerMessage
    | IceCandidateMessage
    | AgentReadyMessage
    | EndCallMessage
    | PingMessage
)

CLIENT_MESSAGE_TYPES: dict[str, type[WireModel]] = {
    "register": RegisterMessage,
    "offer": OfferMessage,
    "answer": AnswerMessage,
    "ice-candidate": IceCandidateMessage,
    "agent-ready": AgentReadyMessage,
    "end-call": EndCallMessage,
    "ping": PingMessage,
}


# === Server → Client ===


class ServerMessage(WireModel):
    """Base for server messages; every outbound message carries a timestamp."""

    timestamp: str = Field(default_factory=utc_timestamp)


class ConnectionEstablishedMessage(ServerMessage):
    """Server → Client: sent once after admission."""

    type: Literal["connection_established"] = "connection_established"
    connection_id: str


class IncomingCallMessage(ServerMessage):
    """Server → Agents: a customer submitted an offer."""

    type: Literal["incoming-call"] = "incoming-call"
    call_id: str
    caller_name: Any = None
    caller_phone: Any = None
    call_reason: Any = None


class AnswerRelayMessage(ServerMessage):
    """Server → Customer: the agent's answer."""

    type: Literal["answer"] = "answer"
    answer: Any = None
    call_id: str


class IceCandidateRelayMessage(ServerMessage):
    """Server → Peer: the other side's ICE candidate."""

    type: Literal["ice-candidate"] = "ice-candidate"
    candidate: Any = None
    call_id: str


class CallEndedMessage(ServerMessage):
    """Server → Participants: the call was ended."""

    type: Literal["call-ended"] = "call-ended"
    call_id: str


class PongMessage(ServerMessage):
    """Server → Client: heartbeat reply."""

    type: Literal["pong"] = "pong"


# === Parsing ===


class MalformedMessage(ValueError):
    """Inbound payload could not be decoded into a known message."""

    def __init__(self, reason: str, detail: str = "") -> None:
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


class UnknownMessageType(ValueError):
    """Inbound payload is well-formed but its type is not handled."""

    def __init__(self, message_type: str) -> None:
        super().__init__(f"Unknown message type: {message_type}")
        self.message_type = message_type


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """Decode one inbound frame.

    Args:
        raw: Frame received from the socket

    Returns:
        Validated client message

    Raises:
        MalformedMessage: If the frame is binary, not JSON, not an object,
            has no string ``type``, or fails field validation
        UnknownMessageType: If ``type`` is not a handled message type
    """
    if isinstance(raw, bytes):
        raise MalformedMessage("binary_frame")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedMessage("invalid_json", str(e)) from e

    if not isinstance(data, dict):
        raise MalformedMessage("not_an_object", type(data).__name__)

    message_type = data.get("type")
    if not isinstance(message_type, str):
        raise MalformedMessage("missing_type")

    model = CLIENT_MESSAGE_TYPES.get(message_type)
    if model is None:
        raise UnknownMessageType(message_type)

    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError as e:
        raise MalformedMessage("invalid_fields", str(e)) from e
