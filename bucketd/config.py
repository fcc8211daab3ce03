"""Configuration management using Pydantic Settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings loaded from ``BUCKETD_*`` environment variables."""

    # Storage
    storage_root: str = "./upload"
    # Wipe the storage root on startup; the registry is in-memory so any
    # leftover bucket directories are unreachable.
    purge_storage_on_startup: bool = True
    chunk_size: int = 64 * 1024

    # Limits
    max_file_size_mb: int = 20
    max_files_per_upload: int = 10
    max_info_ids: int = 10

    # Lifecycle
    default_ttl_minutes: int = 30
    sweep_interval_seconds: float = 60.0
    # Build bucket.zip right after create/upload instead of on first download
    prebuild_archive: bool = False

    # Shared secret for private endpoints; empty disables access control
    access_token: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = 3000

    model_config = SettingsConfigDict(env_prefix="BUCKETD_", env_file=".env", extra="ignore")

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
