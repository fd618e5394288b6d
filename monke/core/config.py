"""Unified configuration for the conversation loop."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SYSTEM_PROMPT = (
    "You are Monke, a curious and friendly monkey companion for children aged 7-12. "
    "You love learning, exploring, and helping kids discover new things! "
    "Keep your responses short (2-3 sentences), fun, and age-appropriate. "
    "Use simple language and be encouraging. IMPORTANT: Do NOT use action descriptions "
    "like *waves* or **bold formatting** - your responses will be spoken aloud, so only "
    "use natural spoken dialogue. Be playful but educational!"
)

AIServiceName = Literal["openai", "claude", "local_llm"]
SynthesizerName = Literal["local", "remote"]


class Settings(BaseSettings):
    """Global settings of the conversation loop."""

    model_config = SettingsConfigDict(
        env_prefix="MONKE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"

    # HTTP control API
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    # AI service
    ai_service: AIServiceName = "openai"
    api_keys: dict[str, str] = {}
    credentials_path: str = "data/credentials.json"
    openai_model: str = "gpt-4o-mini"
    openai_api_url: str = "https://api.openai.com/v1/chat/completions"
    claude_model: str = "claude-3-5-sonnet-20241022"
    claude_api_url: str = "https://api.anthropic.com/v1/messages"
    claude_api_version: str = "2023-06-01"
    local_llm_url: str = "http://localhost:8080/completion"
    llm_max_tokens: int = Field(150, ge=1)
    llm_temperature: float = Field(0.7, ge=0.0, le=2.0)
    llm_timeout_sec: float = Field(30.0, gt=0)

    # Conversation
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    enable_conversation_history: bool = True
    max_conversation_history: int = Field(10, ge=2)
    error_recovery_delay: float = Field(2.0, ge=0)

    # Speech capture
    silence_timeout: float = Field(2.0, gt=0)
    max_recording_seconds: float = Field(15.0, gt=0)
    input_device: str | None = None
    vad_aggressiveness: int = Field(2, ge=0, le=3)
    asr_model_path: str | None = None
    asr_device: str = "cpu"
    asr_compute_type: str = "int8"
    asr_language: str = "en"

    # Speech synthesis
    synthesizer: SynthesizerName = "local"
    output_device: str | None = None
    tts_voice_path: str | None = None
    speech_rate: float = Field(1.0, gt=0)
    speech_pitch: float = Field(1.15, ge=0.5, le=2.0)  # multiplier, above 1 sounds younger
    tts_warmup: bool = True
    remote_tts_url: str = "http://localhost:3100/api/text-to-speech"
    remote_tts_speaking_rate: float = Field(1.0, ge=0.25, le=4.0)
    remote_tts_pitch: float = Field(4.0, ge=-20.0, le=20.0)
    remote_tts_volume: float = Field(0.9, ge=0.0, le=1.0)
    remote_tts_timeout_sec: float = Field(20.0, gt=0)
    tts_temp_dir: str | None = None

    # Speech synthesis proxy server
    tts_proxy_host: str = "127.0.0.1"
    tts_proxy_port: int = 3100
    tts_proxy_max_chars: int = 1000
    tts_proxy_rate_limit: int = 60
    tts_proxy_rate_window_sec: float = 15 * 60

    # Logs
    debug_logging: bool = False
    log_api_requests: bool = False
    speak_errors: bool = False
    log_rotate_mb: int = 5
    log_retention_days: int = 7
    mask_secrets_patterns: str = "api_key,token,authorization,password,x-api-key"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            cls.json_config_settings_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @staticmethod
    def json_config_settings_source() -> dict[str, object]:
        """Load config.json from the repository root when present."""
        config_path = Path(__file__).resolve().parents[2] / "config.json"
        if config_path.is_file():
            try:
                return json.loads(config_path.read_text(encoding="utf-8"))
            except ValueError:
                return {}
        return {}

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
