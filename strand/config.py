"""Settings via pydantic-settings with STRAND_ env prefix.

Vendor credentials use validation_alias to read the unprefixed env vars
(ANTHROPIC_API_KEY, ANTHROPIC_AUTH_TOKEN) that the vendor SDKs use, so
one .env file serves both.
"""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STRAND_", env_file=".env")

    log_level: str = "warning"

    # Provider
    provider: Literal["anthropic", "ollama"] = "anthropic"
    model: str = "claude-sonnet-4-5-20250514"
    anthropic_api_key: str = Field("", validation_alias="ANTHROPIC_API_KEY")
    # Dual auth: auth_token (Bearer) takes precedence over api_key (x-api-key)
    anthropic_auth_token: str = Field("", validation_alias="ANTHROPIC_AUTH_TOKEN")
    api_base_url: str = "https://api.anthropic.com"
    ollama_base_url: str = "http://localhost:11434"

    # Default generation options
    max_tokens: int = 1024
    temperature: float = 0.7

    # Transport
    request_timeout: float = 30.0  # seconds (read)
    connect_timeout: float = 10.0  # seconds

    # Retry
    max_retries: int = 3  # retries after the first attempt
    retry_initial_delay: float = 2.0  # seconds
    retry_max_delay: float = 30.0  # seconds
    stream_max_retries: int = 3

    # Conversation memory
    memory_enabled: bool = False
    memory_max_tokens: int = 4000
    token_encoder_model: str = ""  # empty -> use model

    # Ensemble
    ensemble_max_workers: int = 4

    @model_validator(mode="after")
    def _validate_retry(self) -> "Settings":
        if self.max_retries < 0 or self.stream_max_retries < 0:
            raise ValueError("retry counts must be >= 0")
        if self.retry_initial_delay < 0:
            raise ValueError("retry_initial_delay must be >= 0")
        if self.retry_max_delay < self.retry_initial_delay:
            raise ValueError(
                f"retry_max_delay ({self.retry_max_delay}) must be >= "
                f"retry_initial_delay ({self.retry_initial_delay})"
            )
        if self.memory_max_tokens <= 0:
            raise ValueError("memory_max_tokens must be > 0")
        if self.ensemble_max_workers < 1:
            raise ValueError("ensemble_max_workers must be >= 1")
        return self

    @property
    def encoder_model(self) -> str:
        return self.token_encoder_model or self.model
