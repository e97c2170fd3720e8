"""DeepL translation client (v2 ``translate``)."""

import logging

import aiohttp

from voicerelay.providers.base import ProviderError
from voicerelay.providers.http import read_json

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api-free.deepl.com/v2/translate"


def deepl_target_language(language: str) -> str:
    """DeepL takes bare language codes: ``es-ES`` → ``ES``."""
    return language.strip()[:2].upper()


class DeepLTranslator:
    """Translator backed by the DeepL REST API."""

    name = "deepl"

    def __init__(
        self, http: aiohttp.ClientSession, api_key: str, endpoint: str = DEFAULT_ENDPOINT
    ) -> None:
        self._http = http
        self._api_key = api_key
        self._endpoint = endpoint

    async def translate(self, text: str, target_language: str) -> str:
        form = {"text": text, "target_lang": deepl_target_language(target_language)}
        headers = {"Authorization": f"DeepL-Auth-Key {self._api_key}"}

        try:
            async with self._http.post(self._endpoint, data=form, headers=headers) as response:
                data = await read_json(response, self.name)
        except aiohttp.ClientError as e:
            raise ProviderError(f"Translation request failed: {e}", provider=self.name) from e

        translations = data.get("translations")
        if not translations:
            logger.error("Translation response without translations", extra={"response": data})
            raise ProviderError("Failed to get translation", provider=self.name)

        return str(translations[0].get("text", ""))
