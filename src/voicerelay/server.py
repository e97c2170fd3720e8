"""Relay server: WebSocket endpoint wiring sessions to the relay pipeline.

Each accepted connection is driven by ``RelayServer.handle_connection``,
which dispatches join, voice and leave messages. Voice clips are relayed
in background tasks so a slow external service never blocks the reader
loop of either device.
"""

import argparse
import asyncio
import itertools
import logging
import time
from collections.abc import Callable
from pathlib import Path

import aiohttp
from aiohttp.web import AppRunner, Application, TCPSite
from dotenv import load_dotenv

from voicerelay.audio import FFmpegTranscoder, WavTranscoder
from voicerelay.config import AudioConfig, RelayConfig
from voicerelay.errors import SessionFullError
from voicerelay.health import setup_health_routes
from voicerelay.hub import ConnectionHub
from voicerelay.metrics import MetricsCollector, get_metrics_collector
from voicerelay.models import VoiceClip
from voicerelay.pipeline import RelayPipeline
from voicerelay.providers import (
    DeepLTranslator,
    GoogleSpeechRecognizer,
    GoogleTextToSpeech,
    MockRecognizer,
    MockSynthesizer,
    MockTranslator,
    SpeechRecognizer,
    SpeechSynthesizer,
    Transcoder,
    Translator,
)
from voicerelay.providers.http import create_http_session
from voicerelay.registry import SessionRegistry
from voicerelay.sweeper import ExpirySweeper
from voicerelay.transport.base import Connection, Transport
from voicerelay.transport.protocol import (
    ErrorMessage,
    JoinSessionMessage,
    LeaveSessionMessage,
    SessionStatusMessage,
    VoiceTransferMessage,
)
from voicerelay.transport.websocket_transport import WebSocketTransport

logger = logging.getLogger(__name__)


class RelayServer:
    """Owns the registry, pipeline and sweeper for one server process.

    Thread-safety: all methods must run on the same event loop.
    """

    def __init__(
        self,
        config: RelayConfig,
        transcoder: Transcoder,
        recognizer: SpeechRecognizer,
        translator: Translator,
        synthesizer: SpeechSynthesizer,
        clock: Callable[[], float] = time.time,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize relay server.

        Args:
            config: Relay configuration
            transcoder: Audio normalizer used before recognition
            recognizer: Speech-to-text service
            translator: Translation service
            synthesizer: Text-to-speech service
            clock: Wall-clock source for session ages
            metrics: Metrics collector (defaults to the process collector)
        """
        self.config = config
        self.metrics = metrics or get_metrics_collector()
        self.hub = ConnectionHub(metrics=self.metrics)
        self.registry = SessionRegistry(
            self.hub,
            clock=clock,
            metrics=self.metrics,
            notify_timeout_s=config.session.notify_timeout_seconds,
        )
        self.pipeline = RelayPipeline(
            self.registry,
            transcoder=transcoder,
            recognizer=recognizer,
            translator=translator,
            synthesizer=synthesizer,
            delivery=self.hub,
            default_locale=config.language.default_locale,
            metrics=self.metrics,
        )
        self.sweeper = ExpirySweeper(
            self.registry,
            ttl_s=config.session.ttl_seconds,
            interval_s=config.session.sweep_interval_seconds,
        )
        self._relay_tasks: set[asyncio.Task[object]] = set()
        self._connection_tasks: set[asyncio.Task[None]] = set()

    @property
    def pending_relays(self) -> int:
        return len(self._relay_tasks)

    def start(self) -> None:
        """Start background maintenance (the expiry sweeper)."""
        self.sweeper.start()

    async def handle_connection(self, connection: Connection) -> None:
        """Drive one device connection until it closes.

        On exit the device is removed from its session so the peer is told
        to wait for a reconnection.
        """
        connection_id = connection.connection_id
        sequence = itertools.count()
        self.hub.register(connection)

        try:
            async for message in connection.receive_messages():
                if isinstance(message, JoinSessionMessage):
                    await self._handle_join(connection, message)
                elif isinstance(message, VoiceTransferMessage):
                    self._handle_voice(connection_id, message, next(sequence))
                elif isinstance(message, LeaveSessionMessage):
                    await self.registry.leave(connection_id)
        except Exception as e:
            logger.exception(
                "Error handling connection",
                extra={"connection_id": connection_id, "error": str(e)},
            )
        finally:
            await self.registry.leave(connection_id)
            self.hub.unregister(connection_id)
            await connection.close()
            logger.info("Connection finished", extra={"connection_id": connection_id})

    async def _handle_join(self, connection: Connection, message: JoinSessionMessage) -> None:
        try:
            await self.registry.join(
                message.session_key, connection.connection_id, message.language
            )
        except SessionFullError as e:
            await connection.send_message(SessionStatusMessage(status="error", message=e.message))
        except ValueError as e:
            await connection.send_message(ErrorMessage(message=str(e), code="INVALID_MESSAGE"))

    def _handle_voice(
        self, connection_id: str, message: VoiceTransferMessage, sequence: int
    ) -> None:
        clip = VoiceClip(
            sender_connection_id=connection_id,
            audio=message.audio_bytes(),
            timestamp=message.timestamp,
            sequence=sequence,
        )
        task = asyncio.create_task(
            self.pipeline.relay(clip), name=f"relay-{connection_id}-{sequence}"
        )
        self._relay_tasks.add(task)
        task.add_done_callback(self._relay_tasks.discard)

    async def serve(self, transport: Transport) -> None:
        """Accept connections from a transport until cancelled."""
        while True:
            connection = await transport.accept_connection()
            logger.info(
                "New connection accepted",
                extra={"connection_id": connection.connection_id},
            )
            task = asyncio.create_task(self.handle_connection(connection))
            self._connection_tasks.add(task)
            task.add_done_callback(self._connection_tasks.discard)

    async def shutdown(self) -> None:
        """Stop the sweeper and wait for in-flight relays."""
        await self.sweeper.stop()

        if self._relay_tasks:
            logger.info("Waiting for in-flight relays", extra={"count": len(self._relay_tasks)})
            _, pending = await asyncio.wait(
                set(self._relay_tasks), timeout=self.config.graceful_shutdown_timeout_s
            )
            for task in pending:
                task.cancel()
            if pending:
                logger.warning("Cancelled unfinished relays", extra={"count": len(pending)})
                await asyncio.gather(*pending, return_exceptions=True)

        if self._connection_tasks:
            for task in self._connection_tasks:
                task.cancel()
            await asyncio.gather(*self._connection_tasks, return_exceptions=True)


def build_transcoder(config: AudioConfig) -> Transcoder:
    """Create the configured audio transcoder."""
    if config.transcoder == "wav":
        return WavTranscoder(sample_rate=config.sample_rate)

    if not FFmpegTranscoder.is_available(config.ffmpeg_path):
        logger.warning(
            "ffmpeg not found, voice clips will fail to transcode",
            extra={"ffmpeg_path": config.ffmpeg_path},
        )
    return FFmpegTranscoder(
        ffmpeg_path=config.ffmpeg_path,
        sample_rate=config.sample_rate,
        timeout_s=config.transcode_timeout_s,
    )


def build_providers(
    config: RelayConfig, http: aiohttp.ClientSession | None
) -> tuple[SpeechRecognizer, Translator, SpeechSynthesizer]:
    """Create recognizer, translator and synthesizer for the configured backend.

    Raises:
        RuntimeError: If the cloud backend is selected without credentials
    """
    providers = config.providers
    if providers.backend == "mock":
        logger.info("Using mock speech providers")
        recognizer = MockRecognizer(transcript=providers.mock_transcript)
        return recognizer, MockTranslator(), MockSynthesizer()

    if http is None:
        raise RuntimeError("Cloud providers require an HTTP session")
    if not providers.google_api_key or not providers.deepl_api_key:
        raise RuntimeError(
            "Cloud providers are not configured. "
            "Cause: GOOGLE_API_KEY and DEEPL_API_KEY must both be set. "
            "Resolution: Export the keys (or add them to .env), or set "
            "RELAY_PROVIDER_BACKEND=mock for local testing."
        )

    recognizer = GoogleSpeechRecognizer(
        http,
        providers.google_api_key,
        endpoint=providers.speech_endpoint,
        sample_rate=config.audio.sample_rate,
        default_language=config.language.default_locale,
    )
    translator = DeepLTranslator(
        http, providers.deepl_api_key, endpoint=providers.translate_endpoint
    )
    synthesizer = GoogleTextToSpeech(
        http,
        providers.google_api_key,
        endpoint=providers.tts_endpoint,
        audio_encoding=providers.tts_audio_encoding,
    )
    return recognizer, translator, synthesizer


async def start_server(config_path: Path | None, server: RelayServer | None = None) -> None:
    """Start the relay server and run until interrupted.

    Args:
        config_path: Path to YAML config file (defaults apply if missing)
        server: Optional pre-created server (for testing)

    Raises:
        RuntimeError: If provider configuration is invalid
        OSError: If a port cannot be bound
    """
    if server is not None:
        config = server.config
    else:
        config = RelayConfig.from_yaml_with_defaults(config_path)

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(
        "Loaded configuration",
        extra={"config_path": str(config_path), "backend": config.providers.backend},
    )

    http: aiohttp.ClientSession | None = None
    if server is None:
        if config.providers.backend == "cloud":
            http = create_http_session(config.providers.request_timeout_s)
        try:
            recognizer, translator, synthesizer = build_providers(config, http)
        except RuntimeError:
            if http is not None:
                await http.close()
            raise
        server = RelayServer(
            config,
            transcoder=build_transcoder(config.audio),
            recognizer=recognizer,
            translator=translator,
            synthesizer=synthesizer,
        )

    ws_config = config.websocket
    transport = WebSocketTransport(
        host=ws_config.host,
        port=ws_config.port,
        max_connections=ws_config.max_connections,
        max_message_bytes=ws_config.max_message_bytes,
    )
    await transport.start()

    runner: AppRunner | None = None
    if config.health.enabled:
        health_port = config.health.port or ws_config.port + 1
        health_app = Application()
        setup_health_routes(health_app, server.registry, server.hub, server.metrics)
        runner = AppRunner(health_app)
        await runner.setup()
        site = TCPSite(runner, config.health.host, health_port)
        await site.start()
        logger.info("Health check server started", extra={"port": health_port})

    server.start()
    try:
        logger.info("Relay server ready", extra={"port": transport.port})
        await server.serve(transport)
    except asyncio.CancelledError:
        logger.info("Server loop cancelled")
    finally:
        logger.info("Shutting down relay server")
        await server.shutdown()
        await transport.stop()
        if runner is not None:
            await runner.cleanup()
        if http is not None:
            await http.close()
        logger.info("Relay server stopped")


def main() -> None:
    """Entry point for the relay server."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="Voice relay server")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(__file__).parent.parent.parent / "configs" / "relay.yaml",
        help="Path to relay config YAML file",
    )
    args = parser.parse_args()

    try:
        asyncio.run(start_server(args.config))
    except KeyboardInterrupt:
        logger.info("Relay server interrupted")


if __name__ == "__main__":
    main()
