"""Unit tests for the WebSocket message protocol."""

import base64
import json

import pytest
from pydantic import ValidationError

from voicerelay.models import RelayResult
from voicerelay.transport.protocol import (
    ErrorMessage,
    JoinSessionMessage,
    LeaveSessionMessage,
    SessionStatusMessage,
    VoiceReceivedMessage,
    VoiceTransferMessage,
    parse_client_message,
)

AUDIO_B64 = base64.b64encode(b"\x00\x01\x02\x03").decode("ascii")


class TestParseClientMessage:
    """Test inbound frame parsing."""

    def test_join_with_language(self) -> None:
        message = parse_client_message(
            json.dumps({"type": "joinSession", "sessionKey": " abc ", "language": "es-ES"})
        )

        assert isinstance(message, JoinSessionMessage)
        assert message.session_key == "abc"
        assert message.language == "es-ES"

    def test_join_language_defaults_to_auto(self) -> None:
        message = parse_client_message('{"type": "joinSession", "sessionKey": "abc"}')

        assert isinstance(message, JoinSessionMessage)
        assert message.language == "auto"

    def test_voice_transfer(self) -> None:
        message = parse_client_message(
            json.dumps({"type": "voiceTransfer", "audioBase64": AUDIO_B64, "timestamp": 1712})
        )

        assert isinstance(message, VoiceTransferMessage)
        assert message.audio_bytes() == b"\x00\x01\x02\x03"
        assert message.timestamp == "1712"

    def test_leave_session(self) -> None:
        assert isinstance(parse_client_message('{"type": "leaveSession"}'), LeaveSessionMessage)

    def test_bytes_frame(self) -> None:
        message = parse_client_message(b'{"type": "leaveSession"}')
        assert isinstance(message, LeaveSessionMessage)

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2, 3]",
            '{"type": "teleport"}',
            '{"sessionKey": "abc"}',
            '{"type": "joinSession"}',
            '{"type": "joinSession", "sessionKey": "   "}',
            '{"type": "voiceTransfer"}',
            '{"type": "voiceTransfer", "audioBase64": "***not base64***"}',
        ],
    )
    def test_invalid_frames_raise_value_error(self, raw: str) -> None:
        with pytest.raises(ValueError):
            parse_client_message(raw)

    def test_validation_error_is_value_error(self) -> None:
        with pytest.raises(ValidationError):
            parse_client_message('{"type": "joinSession"}')


class TestServerMessages:
    """Test outbound serialization."""

    def test_session_status(self) -> None:
        data = json.loads(SessionStatusMessage(status="waiting", message="Waiting").to_json())
        assert data == {"type": "sessionStatus", "status": "waiting", "message": "Waiting"}

    def test_session_status_rejects_internal_state(self) -> None:
        with pytest.raises(ValidationError):
            SessionStatusMessage(status="terminated", message="gone")

    def test_voice_received_uses_camel_case(self) -> None:
        result = RelayResult(
            audio=b"ID3",
            from_language="en-US",
            to_language="es-ES",
            timestamp="2024-01-01T00:00:00+00:00",
            text="hello",
            translated_text="hola",
            sequence=3,
        )

        data = json.loads(VoiceReceivedMessage.from_result(result).to_json())

        assert data == {
            "type": "voiceReceived",
            "audioBase64": base64.b64encode(b"ID3").decode("ascii"),
            "text": "hello",
            "translatedText": "hola",
            "fromLanguage": "en-US",
            "toLanguage": "es-ES",
            "timestamp": "2024-01-01T00:00:00+00:00",
            "sequence": 3,
        }

    def test_voice_received_omits_missing_translation(self) -> None:
        result = RelayResult(
            audio=b"RIFF", from_language="en-US", to_language="en-US", timestamp="t", text=""
        )

        data = json.loads(VoiceReceivedMessage.from_result(result).to_json())

        assert "translatedText" not in data
        assert data["text"] == ""

    def test_error_message_includes_stage(self) -> None:
        data = json.loads(
            ErrorMessage(message="Failed", code="SYNTHESIS_FAILED", stage="synthesize").to_json()
        )
        assert data == {
            "type": "error",
            "message": "Failed",
            "code": "SYNTHESIS_FAILED",
            "stage": "synthesize",
        }
