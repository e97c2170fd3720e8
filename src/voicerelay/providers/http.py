"""Shared aiohttp helpers for the HTTP-backed providers."""

from typing import Any

import aiohttp

from voicerelay.providers.base import ProviderError


def create_http_session(timeout_s: float) -> aiohttp.ClientSession:
    """Create the client session shared by all HTTP providers.

    Must be called from a running event loop.
    """
    return aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout_s))


def error_message(data: dict[str, Any]) -> str | None:
    """Extract a service error message from a JSON error body.

    Google reports ``{"error": {"message": ...}}``; DeepL reports
    ``{"message": ...}``.
    """
    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    if data.get("message"):
        return str(data["message"])
    return None


async def read_json(response: aiohttp.ClientResponse, provider: str) -> dict[str, Any]:
    """Decode a JSON response body, raising ProviderError on HTTP errors."""
    try:
        data = await response.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError) as e:
        raise ProviderError(
            f"Invalid response from {provider} (HTTP {response.status})",
            provider=provider,
            status=response.status,
        ) from e

    if not isinstance(data, dict):
        raise ProviderError(f"Unexpected response from {provider}", provider=provider)

    if response.status >= 400:
        raise ProviderError(
            error_message(data) or f"{provider} returned HTTP {response.status}",
            provider=provider,
            status=response.status,
        )
    return data
