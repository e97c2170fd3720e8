"""Relay pipeline: one invocation per inbound voice clip.

Sequence: resolve peer → transcode → recognize → translate → synthesize
(only when the two devices speak different languages) → deliver. Each stage
failure aborts the remaining stages and is reported to the sender alone; the
receiver never sees a partial result and session membership is untouched.

Invocations share no mutable state besides the registry lookup, so clips
from the same or different sessions can be relayed concurrently.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Protocol, TypeVar

from voicerelay.errors import (
    RelayError,
    SynthesisError,
    TranscodeError,
    TranscriptionError,
    TranslationError,
)
from voicerelay.metrics import MetricsCollector, get_metrics_collector
from voicerelay.models import (
    PeerResolution,
    RelayResult,
    VoiceClip,
    is_auto_language,
    languages_match,
    resolve_language,
)
from voicerelay.providers.base import (
    ProviderError,
    SpeechRecognizer,
    SpeechSynthesizer,
    Transcoder,
    Translator,
)
from voicerelay.registry import SessionRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RelayDelivery(Protocol):
    """Outbound channel for relay results and sender-side errors."""

    async def deliver(self, connection_id: str, result: RelayResult) -> bool:
        """Send a result to the receiver. Returns False if it is gone."""
        ...

    async def send_error(self, connection_id: str, error: RelayError) -> None: ...


class RelayPipeline:
    """Orchestrates transcoding, recognition, translation and synthesis.

    Thread-safety: Safe for concurrent invocations on one event loop.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        transcoder: Transcoder,
        recognizer: SpeechRecognizer,
        translator: Translator,
        synthesizer: SpeechSynthesizer,
        delivery: RelayDelivery,
        default_locale: str = "en-US",
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize relay pipeline.

        Args:
            registry: Session registry used to resolve sender and receiver
            transcoder: Converts clips to normalized PCM WAV
            recognizer: Speech-to-text service
            translator: Translation service
            synthesizer: Text-to-speech service
            delivery: Sends results to receivers and errors to senders
            default_locale: Language used in place of the auto-detect sentinel
            metrics: Metrics collector (defaults to the process collector)
        """
        self._registry = registry
        self._transcoder = transcoder
        self._recognizer = recognizer
        self._translator = translator
        self._synthesizer = synthesizer
        self._delivery = delivery
        self._default_locale = default_locale
        self._metrics = metrics or get_metrics_collector()

    async def relay(self, clip: VoiceClip) -> RelayResult | None:
        """Relay one voice clip to the sender's peer.

        Never raises (other than cancellation): failures are reported to the
        sender as an error event.

        Args:
            clip: Inbound voice clip

        Returns:
            The delivered result, or None if the relay failed or the
            receiver had already left
        """
        started = time.monotonic()
        sender_id = clip.sender_connection_id

        try:
            peer = self._registry.resolve_peer(sender_id)
            result = await self._process(clip, peer)
        except RelayError as e:
            await self._fail(clip, e)
            return None

        receiver_id = peer.receiver.connection_id
        if self._registry.session_for(receiver_id) != peer.session_key:
            # Receiver left, switched sessions or was evicted while in flight.
            logger.info(
                "Receiver left session, relay result dropped",
                extra={
                    "session_key": peer.session_key,
                    "connection_id": sender_id,
                    "receiver_id": receiver_id,
                },
            )
            return None

        delivered = await self._delivery.deliver(receiver_id, result)
        if not delivered:
            logger.info(
                "Receiver connection closed, relay result dropped",
                extra={
                    "session_key": peer.session_key,
                    "connection_id": sender_id,
                    "receiver_id": receiver_id,
                },
            )
            return None

        latency = time.monotonic() - started
        self._metrics.record_relay_delivered(latency, result.synthesized)
        logger.info(
            "Voice clip relayed",
            extra={
                "session_key": peer.session_key,
                "connection_id": sender_id,
                "from_language": result.from_language,
                "to_language": result.to_language,
                "synthesized": result.synthesized,
                "sequence": clip.sequence,
                "latency_ms": latency * 1000.0,
            },
        )
        return result

    async def _process(self, clip: VoiceClip, peer: PeerResolution) -> RelayResult:
        from_language = resolve_language(peer.sender.language, self._default_locale)
        to_language = resolve_language(peer.receiver.language, self._default_locale)
        recognition_hint = None if is_auto_language(peer.sender.language) else from_language

        normalized_audio = await self._run_stage(
            "transcode", TranscodeError, lambda: self._transcoder.transcode(clip.audio)
        )

        text = await self._run_stage(
            "recognize",
            TranscriptionError,
            lambda: self._recognizer.recognize(normalized_audio, recognition_hint),
        )
        text = (text or "").strip()

        translated_text: str | None = None
        if text:
            translated_text = await self._run_stage(
                "translate",
                TranslationError,
                lambda: self._translator.translate(text, to_language),
            )

        audio = normalized_audio
        synthesized = False
        if not languages_match(from_language, to_language) and translated_text:
            audio = await self._run_stage(
                "synthesize",
                SynthesisError,
                lambda: self._synthesizer.synthesize(translated_text, to_language),
            )
            synthesized = True

        return RelayResult(
            audio=audio,
            from_language=from_language,
            to_language=to_language,
            timestamp=clip.timestamp or datetime.now(UTC).isoformat(),
            text=text,
            translated_text=translated_text,
            sequence=clip.sequence,
            synthesized=synthesized,
        )

    async def _run_stage(
        self,
        stage: str,
        error_type: type[RelayError],
        call: Callable[[], Awaitable[T]],
    ) -> T:
        """Run one external call, converting any failure into ``error_type``."""
        started = time.monotonic()
        try:
            return await call()
        except ProviderError as e:
            raise error_type(str(e) or None) from e
        except Exception as e:
            logger.exception("Unexpected error in relay stage", extra={"stage": stage})
            raise error_type() from e
        finally:
            self._metrics.record_stage_latency(stage, time.monotonic() - started)

    async def _fail(self, clip: VoiceClip, error: RelayError) -> None:
        self._metrics.record_relay_failed(error.stage)
        logger.warning(
            "Relay failed",
            extra={
                "connection_id": clip.sender_connection_id,
                "stage": error.stage,
                "code": error.code,
                "error": error.message,
                "sequence": clip.sequence,
            },
        )
        await self._delivery.send_error(clip.sender_connection_id, error)
