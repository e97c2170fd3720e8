"""WebSocket message protocol definitions.

Defines Pydantic models for the JSON events exchanged with devices. Every
frame carries a ``type`` discriminator; payload fields use camelCase on the
wire (``sessionKey``, ``audioBase64``) and snake_case in Python.
"""

import base64
import binascii
import json
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from voicerelay.models import RelayResult


class WireModel(BaseModel):
    """Base model accepting both alias and field names."""

    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# Client → Server


class JoinSessionMessage(WireModel):
    """Client → Server: join (or create) the session identified by a key."""

    type: Literal["joinSession"] = "joinSession"
    session_key: str = Field(..., alias="sessionKey", min_length=1, max_length=256)
    language: str = Field(default="auto", min_length=1, max_length=35)

    @field_validator("session_key", "language")
    @classmethod
    def strip_value(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class VoiceTransferMessage(WireModel):
    """Client → Server: a recorded voice clip for the peer device."""

    type: Literal["voiceTransfer"] = "voiceTransfer"
    audio_base64: str = Field(..., alias="audioBase64", min_length=1)
    timestamp: str | None = Field(default=None, description="Client timestamp, echoed back")

    @field_validator("timestamp", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: object) -> object:
        if isinstance(v, int | float) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("audio_base64")
    @classmethod
    def validate_base64(cls, v: str) -> str:
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("audioBase64 is not valid base64") from e
        return v

    def audio_bytes(self) -> bytes:
        return base64.b64decode(self.audio_base64)


class LeaveSessionMessage(WireModel):
    """Client → Server: leave the current session without disconnecting."""

    type: Literal["leaveSession"] = "leaveSession"


ClientMessage = Annotated[
    JoinSessionMessage | VoiceTransferMessage | LeaveSessionMessage,
    Field(discriminator="type"),
]

_client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """Parse and validate an inbound JSON frame.

    Raises:
        ValueError: If the frame is not JSON, has an unknown type, or fails
            validation (pydantic.ValidationError is a ValueError)
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Message must be a JSON object")
    return _client_message_adapter.validate_python(data)


# Server → Client


class SessionStatusMessage(WireModel):
    """Server → Client: session status change."""

    type: Literal["sessionStatus"] = "sessionStatus"
    status: Literal["waiting", "connected", "error", "expired"]
    message: str


class VoiceReceivedMessage(WireModel):
    """Server → Client: relayed (and possibly translated) voice clip."""

    type: Literal["voiceReceived"] = "voiceReceived"
    audio_base64: str = Field(..., alias="audioBase64")
    text: str | None = None
    translated_text: str | None = Field(default=None, alias="translatedText")
    from_language: str = Field(..., alias="fromLanguage")
    to_language: str = Field(..., alias="toLanguage")
    timestamp: str
    sequence: int = Field(default=0, ge=0, description="Per-sender clip sequence number")

    @classmethod
    def from_result(cls, result: RelayResult) -> "VoiceReceivedMessage":
        return cls(
            audio_base64=base64.b64encode(result.audio).decode("ascii"),
            text=result.text,
            translated_text=result.translated_text,
            from_language=result.from_language,
            to_language=result.to_language,
            timestamp=result.timestamp,
            sequence=result.sequence,
        )


class ErrorMessage(WireModel):
    """Server → Client: error notification for the sender only."""

    type: Literal["error"] = "error"
    message: str = Field(..., description="Human-readable error description")
    code: str = Field(default="INTERNAL_ERROR", description="Error code")
    stage: str | None = Field(default=None, description="Failing relay stage")


ServerMessage = SessionStatusMessage | VoiceReceivedMessage | ErrorMessage
