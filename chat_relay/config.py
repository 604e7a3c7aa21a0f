"""Application settings from environment variables."""

from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Load environment variables
load_dotenv()


class Settings(BaseSettings):
    """Application settings from environment."""

    # Upstream completion API
    deepseek_api_key: str = ""
    completion_base_url: str = "https://api.deepseek.com"
    completion_model: str = "deepseek-chat"
    system_prompt: str = "You are a helpful assistant. Respond concisely, in under 25 words."
    temperature: float = 0.5
    max_tokens: int = 50

    # Timeouts (seconds); the processing deadline must fire before the transport one
    upstream_timeout_seconds: float = Field(default=20.0, gt=0)
    processing_timeout_seconds: float = Field(default=15.0, gt=0)
    # Total wall-clock budget for one relayed stream, first fragment included
    stream_timeout_seconds: float = Field(default=60.0, gt=0)

    # Request handling
    chat_mode: Literal["async", "sync", "stream"] = "async"
    max_message_length: int = Field(default=200, ge=1)

    # Job store
    job_store_backend: Literal["memory", "supabase"] = "memory"
    job_ttl_seconds: int = Field(default=900, ge=1)
    sweep_interval_seconds: float = 60.0
    sweep_max_age_seconds: int = 600

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_jobs_table: str = "chat_jobs"

    # Client poller defaults
    poll_interval_seconds: float = 1.0
    poll_max_attempts: int = 45

    # Configuration
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _check_deadlines(self) -> "Settings":
        if self.processing_timeout_seconds >= self.upstream_timeout_seconds:
            raise ValueError(
                "processing_timeout_seconds must be shorter than upstream_timeout_seconds"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
