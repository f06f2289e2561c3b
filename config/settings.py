"""Configuration management using pydantic-settings."""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase (PostgREST) configuration
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    supabase_table: str = "services"
    request_timeout_seconds: float = 15.0

    # Environment capabilities (told to the core, never detected)
    offline_mode: bool = False
    storage_available: bool = True

    # Durable cache
    cache_directory: Path = Path("./cache")
    cache_db_name: str = "servicedir_cache.db"
    cache_schema_version: int = 2

    # Entry store
    cache_max_entries: int = 200
    cache_eviction_fraction: float = 0.25

    # TTLs per kind of read (seconds), before the safety margin is applied
    featured_ttl_seconds: int = 24 * 60 * 60
    list_ttl_seconds: int = 48 * 60 * 60
    single_service_ttl_seconds: int = 7 * 24 * 60 * 60
    ttl_safety_margin_seconds: int = 5 * 60

    # Request coordinator
    coordinator_timeout_seconds: float = 30.0
    coordinator_workers: int = 8

    # Access tracker
    analytics_directory: Path = Path("./data/analytics")
    max_events: int = 500
    retention_days: int = 30
    cleanup_interval_seconds: int = 3 * 24 * 60 * 60
    recency_weight: float = 1.5
    recency_window_days: float = 30.0
    persist_debounce_seconds: float = 1.0

    # Preload scheduler
    preload_count: int = 8
    preload_interval_seconds: int = 120 * 60
    min_time_between_preloads_seconds: int = 10 * 60
    max_concurrent_preloads: int = 1
    preload_delay_seconds: float = 5.0
    enable_background_preload: bool = False

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def cache_db_path(self) -> Path:
        return self.cache_directory / self.cache_db_name


settings = Settings()
