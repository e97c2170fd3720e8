"""Configuration schema for the relay server.

Defines Pydantic models for loading and validating configuration from YAML
files and environment variables.
"""

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class WebSocketConfig(BaseModel):
    """WebSocket transport configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=3000, ge=1024, le=65535, description="Bind port")
    max_connections: int = Field(default=200, ge=2, description="Maximum concurrent connections")
    max_message_bytes: int = Field(
        default=10 * 2**20,
        ge=2**16,
        description="Largest accepted WebSocket frame (base64 voice clips)",
    )


class HealthConfig(BaseModel):
    """HTTP health/metrics endpoint configuration."""

    enabled: bool = Field(default=True, description="Serve /health and /metrics")
    host: str = Field(default="127.0.0.1", description="Bind host address")
    port: int | None = Field(
        default=None,
        ge=1024,
        le=65535,
        description="Bind port (defaults to the WebSocket port + 1)",
    )


class SessionConfig(BaseModel):
    """Session retention configuration."""

    ttl_seconds: int = Field(
        default=24 * 60 * 60,
        ge=60,
        description="Maximum session age before the sweeper evicts it",
    )
    sweep_interval_seconds: int = Field(
        default=60 * 60,
        ge=1,
        description="Seconds between expiry sweeps",
    )
    notify_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound on delivering one sessionStatus event",
    )


class AudioConfig(BaseModel):
    """Normalized audio format and transcoder selection."""

    transcoder: Literal["ffmpeg", "wav"] = Field(
        default="ffmpeg",
        description="ffmpeg (any container) or wav (in-process, WAV input only)",
    )
    ffmpeg_path: str = Field(default="ffmpeg", description="ffmpeg executable")
    sample_rate: int = Field(default=16000, description="Recognition sample rate in Hz")
    transcode_timeout_s: float = Field(default=30.0, gt=0, description="ffmpeg timeout")

    @field_validator("sample_rate")
    @classmethod
    def validate_sample_rate(cls, v: int) -> int:
        """Validate that sample rate is accepted by LINEAR16 recognition."""
        valid_rates = [8000, 16000, 22050, 24000, 32000, 44100, 48000]
        if v not in valid_rates:
            raise ValueError(f"sample_rate must be one of {valid_rates}, got {v}")
        return v


class LanguageConfig(BaseModel):
    """Language resolution settings."""

    default_locale: str = Field(
        default="en-US",
        description="Concrete language used in place of the 'auto' sentinel",
    )

    @field_validator("default_locale")
    @classmethod
    def validate_default_locale(cls, v: str) -> str:
        v = v.strip()
        if not v or v.lower() == "auto":
            raise ValueError("default_locale must be a concrete language code")
        return v


class ProvidersConfig(BaseModel):
    """External speech and translation services."""

    backend: Literal["cloud", "mock"] = Field(
        default="cloud",
        description="cloud (Google STT/TTS + DeepL) or mock (no credentials needed)",
    )
    google_api_key: str | None = Field(default=None, description="Google Cloud API key")
    deepl_api_key: str | None = Field(default=None, description="DeepL API key")
    speech_endpoint: str = Field(
        default="https://speech.googleapis.com/v1/speech:recognize",
        description="Google Speech-to-Text recognize URL",
    )
    translate_endpoint: str = Field(
        default="https://api-free.deepl.com/v2/translate",
        description="DeepL translate URL",
    )
    tts_endpoint: str = Field(
        default="https://texttospeech.googleapis.com/v1/text:synthesize",
        description="Google Text-to-Speech synthesize URL",
    )
    tts_audio_encoding: Literal["MP3", "OGG_OPUS", "LINEAR16"] = Field(
        default="MP3", description="Encoding of synthesized audio"
    )
    request_timeout_s: float = Field(default=30.0, gt=0, description="HTTP request timeout")
    mock_transcript: str = Field(default="hello", description="Transcript returned by mock STT")


class RelayConfig(BaseModel):
    """Root relay server configuration."""

    websocket: WebSocketConfig = Field(default_factory=WebSocketConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)
    language: LanguageConfig = Field(default_factory=LanguageConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    graceful_shutdown_timeout_s: int = Field(
        default=10,
        ge=1,
        description="Seconds to wait for in-flight relays on shutdown",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @classmethod
    def from_yaml(cls, path: Path) -> "RelayConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        return cls.model_validate(apply_env_overrides(data))

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "RelayConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Environment overrides apply in both cases.
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)
        return cls.model_validate(apply_env_overrides({}))


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    if not isinstance(data.get(name), dict):
        data[name] = {}
    section: dict[str, Any] = data[name]
    return section


def apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides to raw configuration data.

    Supported variables: GOOGLE_API_KEY, DEEPL_API_KEY, RELAY_PROVIDER_BACKEND,
    RELAY_TRANSCODER, RELAY_PORT, RELAY_DEFAULT_LOCALE, LOG_LEVEL.
    """
    if google_api_key := os.getenv("GOOGLE_API_KEY"):
        _section(data, "providers")["google_api_key"] = google_api_key

    if deepl_api_key := os.getenv("DEEPL_API_KEY"):
        _section(data, "providers")["deepl_api_key"] = deepl_api_key

    if backend := os.getenv("RELAY_PROVIDER_BACKEND"):
        _section(data, "providers")["backend"] = backend

    if transcoder := os.getenv("RELAY_TRANSCODER"):
        _section(data, "audio")["transcoder"] = transcoder

    if port := os.getenv("RELAY_PORT"):
        _section(data, "websocket")["port"] = int(port)

    if default_locale := os.getenv("RELAY_DEFAULT_LOCALE"):
        _section(data, "language")["default_locale"] = default_locale

    if log_level := os.getenv("LOG_LEVEL"):
        data["log_level"] = log_level

    return data
