"""Interfaces for the external services used by the relay pipeline.

Each collaborator is a request/response service that can fail independently.
Implementations raise ProviderError (or any exception); the pipeline converts
failures into the stage-specific relay error.
"""

from typing import Protocol, runtime_checkable


class ProviderError(Exception):
    """Raised when an external service call fails.

    Attributes:
        provider: Name of the failing provider
        status: HTTP status code, if the failure came from an HTTP response
    """

    def __init__(self, message: str, provider: str = "unknown", status: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status = status


@runtime_checkable
class Transcoder(Protocol):
    """Converts encoded audio into normalized mono 16-bit PCM WAV."""

    async def transcode(self, audio: bytes) -> bytes: ...


@runtime_checkable
class SpeechRecognizer(Protocol):
    """Speech-to-text service.

    ``language`` is None when the speaker declared the auto-detect sentinel.
    Returns an empty string when no speech was detected.
    """

    async def recognize(self, audio: bytes, language: str | None) -> str: ...


@runtime_checkable
class Translator(Protocol):
    """Text translation service. Only called with non-empty text."""

    async def translate(self, text: str, target_language: str) -> str: ...


@runtime_checkable
class SpeechSynthesizer(Protocol):
    """Text-to-speech service returning encoded audio bytes."""

    async def synthesize(self, text: str, language: str) -> bytes: ...
