"""Mock providers for local development without cloud credentials.

MockRecognizer returns a fixed transcript, MockTranslator tags text with the
target language, and MockSynthesizer produces a sine-wave WAV whose length
grows with the text. Optional delays simulate service latency.
"""

import asyncio
import logging
from typing import Final

from voicerelay.audio.synthesis import generate_sine_wave
from voicerelay.audio.wav import write_wav

SINE_FREQUENCY_HZ: Final[int] = 440  # A4 note
SAMPLE_RATE_HZ: Final[int] = 16000
MS_PER_CHARACTER: Final[int] = 60
MIN_DURATION_MS: Final[int] = 200

logger = logging.getLogger(__name__)


class MockRecognizer:
    """Speech recognizer that ignores the audio and returns a fixed transcript."""

    def __init__(self, transcript: str = "hello", delay_s: float = 0.0) -> None:
        self.transcript = transcript
        self.delay_s = delay_s

    async def recognize(self, audio: bytes, language: str | None) -> str:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        logger.debug("Mock recognition", extra={"language": language, "bytes": len(audio)})
        return self.transcript


class MockTranslator:
    """Translator that prefixes text with the target language code."""

    def __init__(self, delay_s: float = 0.0) -> None:
        self.delay_s = delay_s

    async def translate(self, text: str, target_language: str) -> str:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        return f"[{target_language}] {text}"


class MockSynthesizer:
    """Synthesizer producing a 440Hz tone (60ms per character) as WAV."""

    def __init__(self, delay_s: float = 0.0) -> None:
        self.delay_s = delay_s

    async def synthesize(self, text: str, language: str) -> bytes:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        duration_ms = max(MIN_DURATION_MS, len(text) * MS_PER_CHARACTER)
        pcm = generate_sine_wave(SINE_FREQUENCY_HZ, duration_ms, SAMPLE_RATE_HZ)
        return write_wav(pcm, SAMPLE_RATE_HZ)
