"""Unit tests for RelayServer message dispatch and the connection hub.

Connections are in-memory fakes, so these tests cover the join/voice/leave
handling and disconnect cleanup without opening sockets.
"""

import asyncio
import base64
from collections.abc import AsyncGenerator, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from tests.helpers.fakes import (
    FakeConnection,
    FakeRecognizer,
    FakeSynthesizer,
    FakeTranscoder,
    FakeTranslator,
    provider_failure,
)
from voicerelay.audio import FFmpegTranscoder, WavTranscoder
from voicerelay.config import RelayConfig
from voicerelay.errors import TranslationError
from voicerelay.hub import ConnectionHub
from voicerelay.metrics import MetricsCollector
from voicerelay.models import RelayResult, SessionStatus
from voicerelay.providers import DeepLTranslator, MockRecognizer
from voicerelay.server import RelayServer, build_providers, build_transcoder
from voicerelay.transport.protocol import (
    ErrorMessage,
    JoinSessionMessage,
    LeaveSessionMessage,
    SessionStatusMessage,
    VoiceReceivedMessage,
    VoiceTransferMessage,
)

AUDIO = base64.b64encode(b"clip").decode("ascii")


async def wait_for(condition: Callable[[], bool], timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not condition():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout=timeout)


def statuses(connection: FakeConnection) -> list[str]:
    return [m.status for m in connection.sent if isinstance(m, SessionStatusMessage)]


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def translator() -> FakeTranslator:
    return FakeTranslator()


@pytest_asyncio.fixture
async def server(
    synthesizer: FakeSynthesizer, translator: FakeTranslator, metrics: MetricsCollector
) -> AsyncGenerator[RelayServer, None]:
    relay_server = RelayServer(
        RelayConfig(),
        transcoder=FakeTranscoder(),
        recognizer=FakeRecognizer(transcript="hello"),
        translator=translator,
        synthesizer=synthesizer,
        metrics=metrics,
    )
    yield relay_server
    await relay_server.shutdown()


class Device:
    """A fake connection driven by its own handler task."""

    def __init__(self, server: RelayServer, connection_id: str) -> None:
        self.connection = FakeConnection(connection_id)
        self.task = asyncio.create_task(server.handle_connection(self.connection))

    def send(self, message: object) -> None:
        self.connection.push(message)  # type: ignore[arg-type]

    async def disconnect(self) -> None:
        self.connection.disconnect()
        await asyncio.wait_for(self.task, timeout=2.0)


class TestDispatch:
    """Test join, voice and leave handling."""

    @pytest.mark.asyncio
    async def test_end_to_end_translation(
        self, server: RelayServer, synthesizer: FakeSynthesizer
    ) -> None:
        a = Device(server, "a")
        b = Device(server, "b")

        a.send(JoinSessionMessage(session_key="abc", language="en-US"))
        await wait_for(lambda: statuses(a.connection) == ["waiting"])
        b.send(JoinSessionMessage(session_key="abc", language="es-ES"))
        await wait_for(lambda: statuses(b.connection) == ["connected"])
        assert statuses(a.connection) == ["waiting", "connected"]

        a.send(VoiceTransferMessage(audio_base64=AUDIO, timestamp="t1"))
        await wait_for(lambda: b.connection.sent_of_type("voiceReceived") != [])

        [received] = b.connection.sent_of_type("voiceReceived")
        assert isinstance(received, VoiceReceivedMessage)
        assert received.translated_text == "hello (es-ES)"
        assert received.from_language == "en-US"
        assert received.to_language == "es-ES"
        assert received.timestamp == "t1"
        assert base64.b64decode(received.audio_base64) == synthesizer.output
        assert a.connection.sent_of_type("voiceReceived") == []
        assert a.connection.sent_of_type("error") == []

        await a.disconnect()
        await b.disconnect()

    @pytest.mark.asyncio
    async def test_sequence_numbers_per_sender(self, server: RelayServer) -> None:
        a = Device(server, "a")
        b = Device(server, "b")
        a.send(JoinSessionMessage(session_key="abc", language="en-US"))
        b.send(JoinSessionMessage(session_key="abc", language="en-US"))
        await wait_for(lambda: "connected" in statuses(b.connection))

        for _ in range(3):
            a.send(VoiceTransferMessage(audio_base64=AUDIO))
        await wait_for(lambda: len(b.connection.sent_of_type("voiceReceived")) == 3)

        sequences = sorted(m.sequence for m in b.connection.sent_of_type("voiceReceived"))
        assert sequences == [0, 1, 2]

        await a.disconnect()
        await b.disconnect()

    @pytest.mark.asyncio
    async def test_third_device_gets_session_full_status(self, server: RelayServer) -> None:
        devices = [Device(server, f"c{i}") for i in range(3)]
        for device in devices[:2]:
            device.send(JoinSessionMessage(session_key="abc", language="en-US"))
        await wait_for(lambda: "connected" in statuses(devices[1].connection))

        devices[2].send(JoinSessionMessage(session_key="abc", language="fr-FR"))
        await wait_for(lambda: statuses(devices[2].connection) != [])

        [status] = [m for m in devices[2].connection.sent if isinstance(m, SessionStatusMessage)]
        assert status.status == "error"
        assert status.message == "Session is full"
        session = server.registry.get_session("abc")
        assert session is not None and sorted(session.connection_ids) == ["c0", "c1"]

        for device in devices:
            await device.disconnect()

    @pytest.mark.asyncio
    async def test_voice_without_peer_reports_error(self, server: RelayServer) -> None:
        a = Device(server, "a")
        a.send(JoinSessionMessage(session_key="abc"))
        a.send(VoiceTransferMessage(audio_base64=AUDIO))

        await wait_for(lambda: a.connection.sent_of_type("error") != [])

        [error] = a.connection.sent_of_type("error")
        assert isinstance(error, ErrorMessage)
        assert error.code == "NO_RECEIVER"
        await a.disconnect()

    @pytest.mark.asyncio
    async def test_failed_relay_reaches_sender_only(
        self, server: RelayServer, translator: FakeTranslator
    ) -> None:
        translator.error = provider_failure("Quota exceeded")
        a = Device(server, "a")
        b = Device(server, "b")
        a.send(JoinSessionMessage(session_key="abc", language="en-US"))
        b.send(JoinSessionMessage(session_key="abc", language="es-ES"))
        await wait_for(lambda: "connected" in statuses(b.connection))

        a.send(VoiceTransferMessage(audio_base64=AUDIO))
        await wait_for(lambda: a.connection.sent_of_type("error") != [])

        [error] = a.connection.sent_of_type("error")
        assert isinstance(error, ErrorMessage)
        assert error.code == "TRANSLATION_FAILED"
        assert error.stage == "translate"
        assert error.message == "Quota exceeded"
        assert b.connection.sent_of_type("voiceReceived") == []
        assert b.connection.sent_of_type("error") == []

        await a.disconnect()
        await b.disconnect()

    @pytest.mark.asyncio
    async def test_leave_then_disconnect(self, server: RelayServer) -> None:
        a = Device(server, "a")
        b = Device(server, "b")
        a.send(JoinSessionMessage(session_key="abc", language="en-US"))
        b.send(JoinSessionMessage(session_key="abc", language="es-ES"))
        await wait_for(lambda: "connected" in statuses(b.connection))

        a.send(LeaveSessionMessage())
        await wait_for(lambda: statuses(b.connection)[-1] == "waiting")
        assert server.registry.session_for("a") is None

        await b.disconnect()
        assert "abc" not in server.registry
        await a.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_cleans_up_and_notifies_peer(
        self, server: RelayServer, metrics: MetricsCollector
    ) -> None:
        a = Device(server, "a")
        b = Device(server, "b")
        a.send(JoinSessionMessage(session_key="abc", language="en-US"))
        b.send(JoinSessionMessage(session_key="abc", language="es-ES"))
        await wait_for(lambda: "connected" in statuses(b.connection))

        await a.disconnect()

        assert a.connection.closed
        assert "a" not in server.hub
        assert statuses(b.connection)[-1] == "waiting"
        assert server.registry.get_session("abc") is not None
        assert metrics.get_summary()["connections_active"] == 1

        await b.disconnect()
        assert len(server.registry) == 0
        assert len(server.hub) == 0

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_in_flight_relays(self, metrics: MetricsCollector) -> None:
        recognizer = FakeRecognizer(transcript="hello", delay_s=0.05)
        server = RelayServer(
            RelayConfig(),
            transcoder=FakeTranscoder(),
            recognizer=recognizer,
            translator=FakeTranslator(),
            synthesizer=FakeSynthesizer(),
            metrics=metrics,
        )
        a = Device(server, "a")
        b = Device(server, "b")
        a.send(JoinSessionMessage(session_key="abc", language="en-US"))
        b.send(JoinSessionMessage(session_key="abc", language="es-ES"))
        await wait_for(lambda: "connected" in statuses(b.connection))
        a.send(VoiceTransferMessage(audio_base64=AUDIO))
        await wait_for(lambda: server.pending_relays == 1)

        await server.shutdown()

        assert server.pending_relays == 0
        assert len(b.connection.sent_of_type("voiceReceived")) == 1
        await a.disconnect()
        await b.disconnect()


class TestConnectionHub:
    """Test routing of outbound messages by connection id."""

    @pytest.mark.asyncio
    async def test_status_and_delivery(self, metrics: MetricsCollector) -> None:
        hub = ConnectionHub(metrics=metrics)
        connection = FakeConnection("c1")
        hub.register(connection)

        await hub.send_status("c1", SessionStatus.CONNECTED, "Devices connected successfully")
        delivered = await hub.deliver(
            "c1",
            RelayResult(audio=b"x", from_language="en-US", to_language="es-ES", timestamp="t"),
        )
        await hub.send_error("c1", TranslationError())

        assert delivered
        assert [m.type for m in connection.sent] == ["sessionStatus", "voiceReceived", "error"]
        error = connection.sent[-1]
        assert isinstance(error, ErrorMessage)
        assert error.code == "TRANSLATION_FAILED"

    @pytest.mark.asyncio
    async def test_terminated_status_not_sent(self, metrics: MetricsCollector) -> None:
        hub = ConnectionHub(metrics=metrics)
        connection = FakeConnection("c1")
        hub.register(connection)

        await hub.send_status("c1", SessionStatus.TERMINATED, "gone")

        assert connection.sent == []

    @pytest.mark.asyncio
    async def test_deliver_to_unknown_or_closed_connection(
        self, metrics: MetricsCollector
    ) -> None:
        hub = ConnectionHub(metrics=metrics)
        result = RelayResult(audio=b"x", from_language="en", to_language="es", timestamp="t")
        assert not await hub.deliver("ghost", result)

        connection = FakeConnection("c1")
        hub.register(connection)
        await connection.close()
        assert not await hub.deliver("c1", result)

    @pytest.mark.asyncio
    async def test_failed_write_reports_not_delivered(self, metrics: MetricsCollector) -> None:
        hub = ConnectionHub(metrics=metrics)
        connection = MagicMock(connection_id="c1", is_connected=True)
        connection.send_message = AsyncMock(side_effect=RuntimeError("socket reset"))
        hub.register(connection)

        result = RelayResult(audio=b"x", from_language="en", to_language="es", timestamp="t")

        assert not await hub.deliver("c1", result)
        connection.send_message.assert_awaited_once()

    def test_register_unregister_updates_gauge(self, metrics: MetricsCollector) -> None:
        hub = ConnectionHub(metrics=metrics)
        hub.register(FakeConnection("c1"))
        hub.unregister("c1")
        hub.unregister("c1")

        assert len(hub) == 0
        assert metrics.get_summary()["connections_active"] == 0


class TestBuilders:
    """Test provider and transcoder selection from configuration."""

    def test_mock_backend(self) -> None:
        config = RelayConfig.model_validate(
            {"providers": {"backend": "mock", "mock_transcript": "hi"}}
        )

        recognizer, _, _ = build_providers(config, None)

        assert isinstance(recognizer, MockRecognizer)
        assert recognizer.transcript == "hi"

    def test_cloud_backend_requires_keys(self) -> None:
        with pytest.raises(RuntimeError, match="GOOGLE_API_KEY"):
            build_providers(RelayConfig(), object())  # type: ignore[arg-type]

    def test_cloud_backend(self) -> None:
        config = RelayConfig.model_validate(
            {"providers": {"google_api_key": "g", "deepl_api_key": "d"}}
        )

        _, translator, _ = build_providers(config, object())  # type: ignore[arg-type]

        assert isinstance(translator, DeepLTranslator)

    def test_transcoder_selection(self) -> None:
        assert isinstance(build_transcoder(RelayConfig().audio), FFmpegTranscoder)
        wav_config = RelayConfig.model_validate({"audio": {"transcoder": "wav"}})
        assert isinstance(build_transcoder(wav_config.audio), WavTranscoder)
