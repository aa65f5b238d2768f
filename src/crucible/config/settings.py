"""
Application settings using Pydantic.

Provides environment-based configuration loading with CRUCIBLE_ prefix.
"""

import os
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CRUCIBLE_",
        extra="ignore",
    )

    # Run defaults
    stage: str | None = None
    password: str | None = None
    destroy_strategy: Literal["sequential", "parallel"] = "sequential"

    # State storage
    state_store: Literal["filesystem", "memory", "s3", "http"] = "filesystem"
    state_dir: str = ".crucible"
    ci_state_store_check: bool = True

    # S3 state store
    s3_bucket: str | None = None
    s3_prefix: str = "crucible/"
    aws_region: str = "us-east-1"

    # Remote (HTTP) state store
    http_state_url: str | None = None
    http_state_token: str | None = None

    # HTTP client settings
    http_timeout: float = 30.0
    http_max_retries: int = 5

    # Grafana reference provider
    grafana_url: str | None = None
    grafana_token: str | None = None

    # Logging
    log_level: str = "INFO"

    @property
    def default_stage(self) -> str:
        """Stage name when none is given explicitly."""
        return self.stage or os.environ.get("USER") or os.environ.get("USERNAME") or "dev"

    @property
    def is_local_state_store(self) -> bool:
        return self.state_store in ("filesystem", "memory")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
