"""External service clients used by the relay pipeline."""

from voicerelay.providers.base import (
    ProviderError,
    SpeechRecognizer,
    SpeechSynthesizer,
    Transcoder,
    Translator,
)
from voicerelay.providers.deepl import DeepLTranslator
from voicerelay.providers.google_speech import GoogleSpeechRecognizer
from voicerelay.providers.google_tts import GoogleTextToSpeech
from voicerelay.providers.mock import MockRecognizer, MockSynthesizer, MockTranslator

__all__ = [
    "DeepLTranslator",
    "GoogleSpeechRecognizer",
    "GoogleTextToSpeech",
    "MockRecognizer",
    "MockSynthesizer",
    "MockTranslator",
    "ProviderError",
    "SpeechRecognizer",
    "SpeechSynthesizer",
    "Transcoder",
    "Translator",
]
