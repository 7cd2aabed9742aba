"""Client configuration settings."""

import logging
import warnings
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "TheFit"
    app_version: str = "0.1.0"
    debug: bool = False

    # Workout API
    api_base_url: str = "http://13.209.67.129:8000"
    http_timeout_seconds: float = 30.0

    # Local cache (key-value store on SQLite)
    cache_database_url: str = "sqlite+aiosqlite:///./data/thefit_cache.db"
    database_echo: bool = False

    # Video storage
    upload_folder: str = "fitvideo"
    result_folder: str = "fitvideoresult"
    result_bucket_name: str = "thefit-bucket"
    result_bucket_region: str = "ap-northeast-2"
    result_storage_endpoint_url: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None

    # Sync / polling
    poll_interval_seconds: float = 10.0
    final_refresh_delay_seconds: float = 0.1
    min_sets_per_exercise: int = 5
    previous_workout_days: int = 7

    # Observability
    log_level: str = "INFO"
    log_json: bool = False
    metrics_backend: str = "inmemory"

    @property
    def result_storage_credentials(self) -> bool:
        """True when explicit storage credentials are configured."""
        return bool(self.aws_access_key_id and self.aws_secret_access_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Warns if the workout API is reached over plain HTTP outside debug mode.
    """
    settings = Settings()

    if settings.api_base_url.startswith("http://") and not settings.debug:
        msg = (
            "api_base_url uses plain HTTP. "
            "Set API_BASE_URL to an https:// endpoint for production."
        )
        logger.warning(msg)
        warnings.warn(msg, UserWarning, stacklevel=2)

    return settings
