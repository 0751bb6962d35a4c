"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration.

    The ElevenLabs and Twilio credentials carry no defaults, so constructing
    the settings fails fast when any of them is missing.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field(default="INFO")

    # HTTP server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for Twilio callbacks (e.g. https://<ngrok>.ngrok-free.app).",
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Origins allowed to call the API from a browser frontend.",
    )

    # ElevenLabs conversational AI
    elevenlabs_api_key: str
    elevenlabs_agent_id: str
    elevenlabs_api_url: str = Field(default="https://api.elevenlabs.io")
    ai_setup_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Deadline for fetching the signed URL and opening the AI websocket.",
    )
    default_prompt: str = Field(default="you are gary from the phone store")
    default_first_message: str = Field(default="Hey, how can I help you today?")

    # Twilio (Voice)
    twilio_account_sid: str
    twilio_auth_token: str
    twilio_phone_number: str = Field(description="E.164 caller id, e.g. +1415...")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
