from __future__ import annotations
"""Process-level configuration using Pydantic Settings.

Read once at startup by the host process. Adapters never read settings
directly; the host passes the pieces they need (storage client, retry
defaults) explicitly.
"""

import logging
from functools import lru_cache

from pydantic_settings import BaseSettings

from genhub.services.retry import RetryConfig


class Settings(BaseSettings):
    """genhub settings.

    Loaded from environment variables or .env file.
    """

    # --- Application ---
    APP_NAME: str = "genhub"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # --- Storage downloads ---
    DOWNLOAD_TIMEOUT: float = 120.0

    # --- Retry defaults (idempotent operations only) ---
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_INITIAL_DELAY: float = 1.0
    RETRY_MAX_DELAY: float = 30.0

    # --- Object storage (S3 or S3-compatible) ---
    S3_ACCESS_KEY_ID: str = ""
    S3_SECRET_ACCESS_KEY: str = ""
    S3_REGION: str = "us-east-1"
    S3_BUCKET: str = ""
    S3_ENDPOINT_URL: str = ""
    S3_PUBLIC_BASE_URL: str = ""

    @property
    def storage_enabled(self) -> bool:
        return bool(self.S3_ACCESS_KEY_ID and self.S3_SECRET_ACCESS_KEY and self.S3_BUCKET)

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.RETRY_MAX_ATTEMPTS,
            initial_delay=self.RETRY_INITIAL_DELAY,
            max_delay=self.RETRY_MAX_DELAY,
        )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    """Install the root log format used across genhub."""
    settings = settings or get_settings()
    level = logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # httpx logs every request at INFO; adapters do their own request logging
    logging.getLogger("httpx").setLevel(logging.WARNING)
