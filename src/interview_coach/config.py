"""
Application configuration using pydantic-settings.

Loads configuration from environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="INTERVIEW_COACH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/interview_coach.db",
        description="SQLAlchemy async connection string for the record store",
    )

    # LLM Configuration (Ollama-compatible HTTP API)
    llm_base_url: str = Field(
        default="http://localhost:11434",
        description="Base URL of the Ollama-compatible chat endpoint",
    )
    llm_model_name: str = Field(
        default="llama3.1:8b",
        description="Model name used for question generation and feedback",
    )
    llm_timeout: int = Field(
        default=45,
        description="Timeout in seconds for LLM requests",
    )
    llm_max_retries: int = Field(
        default=1,
        description="Number of retries on LLM failure",
    )

    # Speech
    speech_rate: float = Field(default=1.0, ge=0.5, le=2.0, description="Speech output rate")
    speech_volume: float = Field(default=1.0, ge=0.0, le=1.0, description="Speech output volume")
    speech_language: str = Field(default="en", description="Language hint for recognition")
    tts_safety_timeout_s: float = Field(
        default=10.0,
        description="Hard upper bound for a single utterance before playback is abandoned",
    )
    stt_max_silence_s: float = Field(
        default=10.0,
        description="Continuous silence before an advisory timeout is reported",
    )
    piper_bin: str = Field(default="piper", description="Path/name of the Piper TTS binary")
    piper_model: str | None = Field(default=None, description="Path to the Piper *.onnx voice")
    stt_model: str = Field(default="small", description="faster-whisper model size")
    stt_device: Literal["cpu", "cuda", "auto"] = Field(default="cpu", description="STT device")
    simulate_voice: bool = Field(
        default=False,
        description="Force the simulated (degraded-mode) speech ports",
    )

    # Identity
    user_id: str | None = Field(
        default=None,
        description="Identifier of the current user (single-user CLI deployments)",
    )

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
