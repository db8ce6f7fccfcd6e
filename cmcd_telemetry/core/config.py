"""Pipeline configuration loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CMCD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "cmcd-telemetry"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 8000

    # Delivery
    delivery_mode: Literal["local", "remote"] = "local"
    endpoint: str = ""
    request_timeout_seconds: float = 10.0

    # Batching
    batch_size: int = 10
    flush_interval_ms: int = 5000
    max_queue_size: int | None = None

    # Sampling
    sample_interval_ms: int = 1000
    bandwidth_pixel_factor: float = 0.1

    # Local persistence
    local_log_max_records: int = 1000
    local_log_path: str | None = None

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
