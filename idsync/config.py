"""Application settings and logging setup."""

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TOKEN_SCOPE = (
    "p1:read:user p1:create:user p1:update:user p1:delete:user "
    "p1:read:environment p1:read:population p1:read:group"
)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """
    Process-wide settings, read from ``IDSYNC_*`` environment variables.

    Per-connection settings (credentials, import URLs, mappings) are stored
    with the connection itself, not here.
    """

    model_config = SettingsConfigDict(
        env_prefix="IDSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(default="sqlite:///./data/idsync.db")
    database_echo: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Outbound HTTP
    http_timeout: float = Field(default=10.0, gt=0)
    http_max_retries: int = Field(default=3, ge=0)
    http_backoff_factor: float = Field(default=1.0, ge=0)
    idp_token_scope: str = Field(default=DEFAULT_TOKEN_SCOPE)

    # Import pipeline
    page_size: int = Field(default=100, ge=1, le=1000)
    max_import_records: int = Field(default=10_000, ge=1)
    dry_run_sample_size: int = Field(default=5, ge=0)
    progress_update_interval: int = Field(default=25, ge=1)
    lease_timeout_seconds: int = Field(default=3600, ge=1)
    task_workers: int = Field(default=1, ge=1)

    # Preview
    preview_sample_size: int = Field(default=10, ge=1)
    preview_page_size: int = Field(default=20, ge=1)

    # API
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"]
    )

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for the CLI and the API server."""
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format=LOG_FORMAT,
    )


def mask_identifier(value: Optional[str]) -> str:
    """Shorten an identifier such as a client id for log output."""
    if not value:
        return "MISSING"
    return f"{value[:8]}..."
