"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from relay.errors import ConfigError


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    log_level: str = Field(default="INFO")

    # HTTP listener
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5050)
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL used for the media stream URL instead of the request Host header.",
    )

    # OpenAI credentials (shared by the realtime link and the extractor)
    openai_api_key: str | None = Field(default=None)
    openai_base_url: str | None = Field(
        default=None, description="Optional override for the chat completion endpoint."
    )

    # Realtime conversation
    realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    realtime_model: str = Field(default="gpt-4o-realtime-preview")
    realtime_voice: str = Field(default="shimmer")
    realtime_temperature: float = Field(default=0.8, ge=0.0, le=2.0)
    realtime_audio_format: str = Field(default="g711_ulaw")
    realtime_turn_detection: str = Field(default="server_vad")
    realtime_transcription_model: str = Field(default="whisper-1")
    realtime_configure_fallback_seconds: float | None = Field(
        default=1.0,
        description=(
            "Send the session configuration after this delay if the provider never "
            "acknowledges the connection with session.created. None disables the fallback."
        ),
    )
    provider_drain_timeout_seconds: float = Field(
        default=5.0,
        description="How long teardown waits for pending provider events before cancelling.",
    )

    # Post-call extraction
    extraction_model: str = Field(default="gpt-4o")

    # Webhook delivery
    webhook_url: str | None = Field(default=None)
    webhook_enabled: bool = Field(
        default=False,
        description="If false, extracted records are only logged.",
    )
    webhook_api_key: str | None = Field(default=None)
    webhook_timeout_seconds: float = Field(default=30.0)
    webhook_max_attempts: int = Field(
        default=1,
        ge=1,
        description="Values above 1 wrap delivery in a retrying dispatcher.",
    )
    webhook_retry_backoff_seconds: float = Field(default=1.0, ge=0.0)

    @property
    def realtime_endpoint(self) -> str:
        return f"{self.realtime_url}?model={self.realtime_model}"

    def require_openai_api_key(self) -> str:
        if not self.openai_api_key:
            raise ConfigError("Missing OpenAI API key. Set OPENAI_API_KEY in the environment or .env file.")
        return self.openai_api_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
