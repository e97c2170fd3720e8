"""Google Cloud Text-to-Speech client (v1 ``text:synthesize``)."""

import base64
import binascii

import aiohttp

from voicerelay.providers.base import ProviderError
from voicerelay.providers.http import read_json

DEFAULT_ENDPOINT = "https://texttospeech.googleapis.com/v1/text:synthesize"


class GoogleTextToSpeech:
    """Speech synthesizer backed by the Google Text-to-Speech REST API."""

    name = "google-tts"

    def __init__(
        self,
        http: aiohttp.ClientSession,
        api_key: str,
        endpoint: str = DEFAULT_ENDPOINT,
        audio_encoding: str = "MP3",
    ) -> None:
        self._http = http
        self._api_key = api_key
        self._endpoint = endpoint
        self._audio_encoding = audio_encoding

    async def synthesize(self, text: str, language: str) -> bytes:
        request_body = {
            "input": {"text": text},
            "voice": {"languageCode": language},
            "audioConfig": {"audioEncoding": self._audio_encoding},
        }

        try:
            async with self._http.post(
                self._endpoint, params={"key": self._api_key}, json=request_body
            ) as response:
                data = await read_json(response, self.name)
        except aiohttp.ClientError as e:
            raise ProviderError(f"Text-to-speech request failed: {e}", provider=self.name) from e

        audio_content = data.get("audioContent")
        if not audio_content:
            raise ProviderError("Text-to-speech response had no audio", provider=self.name)

        try:
            return base64.b64decode(audio_content, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ProviderError("Text-to-speech returned invalid audio", provider=self.name) from e
