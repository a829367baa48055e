"""Configuration module for appgen settings.

Every component also accepts explicit constructor arguments; this module only
supplies defaults resolved from the environment (prefix ``APPGEN_``) or a
``.env`` file.
"""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="APPGEN_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    anthropic_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("APPGEN_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    )
    model_name: str = "claude-sonnet-4-5-20250929"

    # Retry ceiling per build request (provider calls, not retries)
    max_attempts: int = Field(default=2, ge=1)

    # Truncation heuristics, tuned empirically
    brace_tolerance: int = Field(default=2, ge=0)
    markup_tolerance: int = Field(default=3, ge=0)

    # Stream consumer
    progress_interval_ms: int = Field(default=500, ge=0)
    max_marker_path_length: int = Field(default=512, ge=16)

    # Optional YAML override for the token budget table
    budgets_config_path: Optional[str] = None

    # When True, unfixed validation defects fail the first attempt for a retry
    retry_on_validation_errors: bool = False

    log_level: str = "INFO"


settings = Settings()
