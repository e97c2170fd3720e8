"""Google Cloud Speech-to-Text client (v1 ``speech:recognize``)."""

import base64
import logging

import aiohttp

from voicerelay.providers.base import ProviderError
from voicerelay.providers.http import read_json

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://speech.googleapis.com/v1/speech:recognize"


class GoogleSpeechRecognizer:
    """Speech recognizer backed by the Google Speech-to-Text REST API.

    Expects LINEAR16 audio (a WAV produced by the transcoder). When no
    language hint is given the configured default language is sent, since
    the API requires a language code.
    """

    name = "google-speech"

    def __init__(
        self,
        http: aiohttp.ClientSession,
        api_key: str,
        endpoint: str = DEFAULT_ENDPOINT,
        sample_rate: int = 16000,
        default_language: str = "en-US",
        model: str = "default",
    ) -> None:
        self._http = http
        self._api_key = api_key
        self._endpoint = endpoint
        self._sample_rate = sample_rate
        self._default_language = default_language
        self._model = model

    async def recognize(self, audio: bytes, language: str | None) -> str:
        request_body = {
            "config": {
                "encoding": "LINEAR16",
                "sampleRateHertz": self._sample_rate,
                "languageCode": language or self._default_language,
                "model": self._model,
            },
            "audio": {"content": base64.b64encode(audio).decode("ascii")},
        }

        try:
            async with self._http.post(
                self._endpoint, params={"key": self._api_key}, json=request_body
            ) as response:
                data = await read_json(response, self.name)
        except aiohttp.ClientError as e:
            raise ProviderError(f"Speech-to-text request failed: {e}", provider=self.name) from e

        results = data.get("results") or []
        if not results:
            logger.info("No transcription results", extra={"language": language})
            return ""

        transcripts = [
            result["alternatives"][0].get("transcript", "")
            for result in results
            if result.get("alternatives")
        ]
        return " ".join(t for t in transcripts if t).strip()
