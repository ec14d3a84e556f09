"""Application settings parsed from environment variables and defaults."""

import json
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_QUEUE_NAMES = ["default", "profiles", "maintenance"]


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = "Brewtaste API"
    environment: str = "development"
    api_prefix: str = "/api"

    database_url: str = "sqlite+aiosqlite:///./brewtaste.db"
    test_database_url: Optional[str] = None

    log_level: str = "INFO"
    redis_url: str = "redis://redis:6379/0"
    worker_queue_names: list[str] | str = Field(default_factory=lambda: DEFAULT_QUEUE_NAMES.copy())
    ops_api_token: Optional[str] = None

    # Aggregation
    taste_profile_refresh_hours: int = 24
    taste_profile_stale_hours: int = 24
    taste_profile_stale_refresh_interval_seconds: int = 6 * 3600

    # Update scheduler defaults; the live values are mutable at runtime.
    taste_profile_debounce_ms: int = 5000
    taste_profile_batch_size: int = 10
    taste_profile_max_retries: int = 3
    taste_profile_retry_delay_ms: int = 1000
    taste_profile_realtime_updates: bool = True
    taste_profile_batch_updates: bool = True
    taste_profile_history_limit: int = 50
    taste_profile_full_refresh_ratio: float = 0.2
    taste_profile_full_refresh_hours: int = 168
    taste_profile_recent_ratings_limit: int = 100

    # Similarity and clustering
    taste_profile_cluster_max_iterations: int = 50

    @field_validator("worker_queue_names", mode="before")
    @classmethod
    def _split_worker_queue_names(cls, value: str | list[str] | None) -> list[str]:
        """Normalize worker queue names from JSON, CSV, or list inputs."""
        if isinstance(value, list):
            cleaned = [item.strip() for item in value if isinstance(item, str) and item.strip()]
            if cleaned:
                return cleaned
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return ["default"]
            try:
                parsed = json.loads(stripped)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                cleaned = [str(item).strip() for item in parsed if str(item).strip()]
                if cleaned:
                    return cleaned
            names = [item.strip() for item in stripped.split(",") if item.strip()]
            if names:
                return names
        return ["default"]

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """Return cached settings to avoid re-parsing environment variables."""
    return Settings()


settings = get_settings()
