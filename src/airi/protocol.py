"""Wire protocol: a tagged union of immutable ``{type, data}`` envelopes.

Every message travels as JSON::

    {"type": "input:text", "data": {"text": "Hello"}}

``type`` selects the payload model, so decoding either yields one concrete
message class or raises :class:`~airi.errors.DecodeError`. Timestamps are
integer milliseconds since the Unix epoch.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_serializer

from .errors import DecodeError

# Fixed diagnostics carried by synthesized ``error`` messages.
PROCESSING_FAILURE = "Failed to process message"
GENERATION_FAILURE = "Failed to generate AI response"


class MessageKind(str, Enum):
    PING = "ping"
    PONG = "pong"
    TEXT_INPUT = "input:text"
    VOICE_INPUT = "input:voice"
    AI_RESPONSE = "ai_response"
    ERROR = "error"
    CONNECTED = "connected"
    AUTHENTICATE = "module:authenticate"
    AUTHENTICATED = "module:authenticated"


def now_ms() -> int:
    return int(time.time() * 1000)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")


class _OmitUnset(_Frozen):
    """Leaves optional fields that are None off the wire."""

    @model_serializer(mode="wrap")
    def serialize_compact(self, handler: Any) -> Dict[str, Any]:
        return {k: v for k, v in handler(self).items() if v is not None}


# -----------------------------
# Payloads
# -----------------------------
class PingData(_OmitUnset):
    timestamp: Optional[int] = None


class PongData(_Frozen):
    timestamp: int


class TextInput(_Frozen):
    text: str


class VoiceInput(_Frozen):
    """Opaque voice payload; whatever the client sends is kept as extra fields."""

    model_config = ConfigDict(frozen=True, extra="allow")


class Features(_Frozen):
    voice: bool = True
    memory: bool = True
    openai: bool = False
    gemini: bool = False


class ConnectedData(_Frozen):
    message: str
    timestamp: int
    features: Features


class MemoryStats(_Frozen):
    short_term: int = Field(..., ge=0, alias="shortTerm")
    long_term: int = Field(..., ge=0, alias="longTerm")
    total: int = Field(..., ge=0)


class ResponseMetadata(_OmitUnset):
    provider: str
    model: Optional[str] = None
    memory_stats: Optional[MemoryStats] = Field(default=None, alias="memoryStats")
    transcription: Optional[bool] = None


class AiResponseData(_Frozen):
    content: str
    timestamp: int
    metadata: ResponseMetadata


class AuthenticateData(_Frozen):
    model_config = ConfigDict(frozen=True, extra="allow")


class AuthenticatedData(_Frozen):
    authenticated: bool


class ErrorData(_Frozen):
    message: str


# -----------------------------
# Envelopes
# -----------------------------
class _Envelope(_Frozen):
    @property
    def kind(self) -> MessageKind:
        return MessageKind(self.type)  # type: ignore[attr-defined]


class PingMessage(_Envelope):
    type: Literal["ping"] = "ping"
    data: PingData = Field(default_factory=PingData)


class PongMessage(_Envelope):
    type: Literal["pong"] = "pong"
    data: PongData


class TextInputMessage(_Envelope):
    type: Literal["input:text"] = "input:text"
    data: TextInput


class VoiceInputMessage(_Envelope):
    type: Literal["input:voice"] = "input:voice"
    data: VoiceInput = Field(default_factory=VoiceInput)


class AiResponseMessage(_Envelope):
    type: Literal["ai_response"] = "ai_response"
    data: AiResponseData


class ErrorMessage(_Envelope):
    type: Literal["error"] = "error"
    data: ErrorData


class ConnectedMessage(_Envelope):
    type: Literal["connected"] = "connected"
    data: ConnectedData


class AuthenticateMessage(_Envelope):
    type: Literal["module:authenticate"] = "module:authenticate"
    data: AuthenticateData = Field(default_factory=AuthenticateData)


class AuthenticatedMessage(_Envelope):
    type: Literal["module:authenticated"] = "module:authenticated"
    data: AuthenticatedData


Message = Annotated[
    Union[
        PingMessage,
        PongMessage,
        TextInputMessage,
        VoiceInputMessage,
        AiResponseMessage,
        ErrorMessage,
        ConnectedMessage,
        AuthenticateMessage,
        AuthenticatedMessage,
    ],
    Field(discriminator="type"),
]

_ADAPTER: TypeAdapter[Any] = TypeAdapter(Message)


# -----------------------------
# Codec
# -----------------------------
def encode(message: _Envelope) -> str:
    """Serialize a message to its JSON wire form.

    Only ``ping`` timestamps and ``ai_response`` metadata drop unset fields;
    opaque payloads (voice, authenticate) are written back exactly as received.
    """
    return message.model_dump_json(by_alias=True)


def decode(raw: Union[str, bytes]) -> Message:
    """Parse a JSON frame into a concrete message class.

    Raises
    ------
    DecodeError
        If the frame is not JSON, names an unknown ``type`` or carries a
        payload that does not match that type.
    """
    try:
        return _ADAPTER.validate_json(raw)
    except ValidationError as e:
        raise DecodeError(f"invalid message: {e.error_count()} validation error(s)") from e
    except (TypeError, ValueError) as e:
        raise DecodeError(f"invalid message: {e}") from e


# -----------------------------
# Factories
# -----------------------------
def ping(timestamp: Optional[int] = None) -> PingMessage:
    return PingMessage(data=PingData(timestamp=timestamp))


def pong(timestamp: Optional[int] = None) -> PongMessage:
    return PongMessage(data=PongData(timestamp=now_ms() if timestamp is None else timestamp))


def text_input(text: str) -> TextInputMessage:
    return TextInputMessage(data=TextInput(text=text))


def error_message(message: str = PROCESSING_FAILURE) -> ErrorMessage:
    return ErrorMessage(data=ErrorData(message=message))


def authenticated(ok: bool = True) -> AuthenticatedMessage:
    return AuthenticatedMessage(data=AuthenticatedData(authenticated=ok))


def connected(features: Features, message: str = "Connected to AIRI Backend") -> ConnectedMessage:
    return ConnectedMessage(
        data=ConnectedData(message=message, timestamp=now_ms(), features=features)
    )


def ai_response(
    content: str,
    *,
    provider: str,
    model: Optional[str] = None,
    memory_stats: Optional[Dict[str, int]] = None,
    transcription: Optional[bool] = None,
) -> AiResponseMessage:
    """Build an ``ai_response``; ``memory_stats`` uses the wire keys
    ``shortTerm``/``longTerm``/``total``."""
    stats = MemoryStats.model_validate(memory_stats) if memory_stats is not None else None
    return AiResponseMessage(
        data=AiResponseData(
            content=content,
            timestamp=now_ms(),
            metadata=ResponseMetadata(
                provider=provider,
                model=model,
                memory_stats=stats,
                transcription=transcription,
            ),
        )
    )
