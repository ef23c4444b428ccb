"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

DEFAULT_DASHSCOPE_TTS_URL = (
    "https://dashscope.aliyuncs.com/api/v1/services/aigc/"
    "multimodal-generation/generation"
)


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Generation backend (any OpenAI-compatible chat completions endpoint)
    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "openai_api_key"),
    )
    openai_api_base: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_BASE", "openai_api_base"),
    )
    openai_api_model: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_MODEL", "openai_api_model"),
    )
    system_prompt: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SYSTEM_PROMPT", "system_prompt"),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("REQUEST_TIMEOUT", "request_timeout"),
        ge=1,
    )

    # Speech synthesis (DashScope qwen-tts)
    dashscope_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("DASHSCOPE_API_KEY", "dashscope_api_key"),
    )
    dashscope_tts_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl(DEFAULT_DASHSCOPE_TTS_URL),
        validation_alias=AliasChoices("DASHSCOPE_TTS_URL", "dashscope_tts_url"),
    )
    tts_model: str = Field(
        default="qwen-tts-latest",
        validation_alias=AliasChoices("TTS_MODEL", "tts_model"),
    )
    tts_voice: str = Field(
        default="Chelsie",
        validation_alias=AliasChoices("TTS_VOICE", "tts_voice"),
    )

    # Pipeline tuning
    chunk_queue_capacity: int = Field(
        default=10000,
        ge=1,
        validation_alias=AliasChoices(
            "CHUNK_QUEUE_CAPACITY",
            "chunk_queue_capacity",
        ),
    )
    segment_flush_threshold: int = Field(
        default=100,
        ge=1,
        validation_alias=AliasChoices(
            "SEGMENT_FLUSH_THRESHOLD",
            "segment_flush_threshold",
        ),
    )

    # Session lifecycle
    preset_session_ids: list[str] = Field(
        default_factory=lambda: ["sess1", "sess2"],
        validation_alias=AliasChoices("PRESET_SESSION_IDS", "preset_session_ids"),
        description="Sessions created and registered at startup.",
    )
    session_idle_ttl_seconds: int = Field(
        default=6 * 3600,
        ge=0,
        validation_alias=AliasChoices(
            "SESSION_IDLE_TTL_SECONDS",
            "session_idle_ttl_seconds",
        ),
        description="Idle sessions without connections are dropped after this (0 = never).",
    )
    session_sweep_interval_seconds: int = Field(
        default=300,
        ge=1,
        validation_alias=AliasChoices(
            "SESSION_SWEEP_INTERVAL_SECONDS",
            "session_sweep_interval_seconds",
        ),
    )

    def missing_required(self) -> list[str]:
        """Return the environment names of required values that are unset."""

        required = {
            "OPENAI_API_KEY": self.openai_api_key,
            "OPENAI_API_BASE": self.openai_api_base,
            "OPENAI_API_MODEL": self.openai_api_model,
            "DASHSCOPE_API_KEY": self.dashscope_api_key,
        }
        missing: list[str] = []
        for name, value in required.items():
            if value is None:
                missing.append(name)
            elif isinstance(value, SecretStr) and not value.get_secret_value():
                missing.append(name)
            elif isinstance(value, str) and not value.strip():
                missing.append(name)
        return missing


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
