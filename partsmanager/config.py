"""
Configuration and settings for the sync backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service and workers."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Remote document store (Postgres expected, or Firestore)
    database_url: Optional[str] = Field(default=None)
    use_firestore: bool = Field(default=False)
    firebase_service_account: Optional[str] = Field(default=None)

    # Local replica + commit queue (SQLite file on the desktop host)
    local_database_url: str = Field(
        default="sqlite+pysqlite:///partsmanager_local.db"
    )
    session_file: str = Field(default=".partsmanager_session")

    # S3-compatible storage (exports)
    cos_endpoint: Optional[str] = Field(default=None)
    cos_region: Optional[str] = Field(default=None)
    cos_bucket: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "use_in_memory_backends", "PARTSMANAGER_USE_IN_MEMORY_BACKENDS"
        ),
    )

    # Sync signal queue (Redis)
    redis_url: Optional[str] = Field(default=None)
    redis_queue_key: str = Field(default="partsmanager:sync")

    # Push worker
    sync_interval_seconds: float = Field(default=30.0)
    commit_delay_seconds: float = Field(default=0.1)
    max_commit_retries: int = Field(default=5)
    quota_pause_seconds: float = Field(default=24 * 60 * 60)
    synced_commit_ttl_seconds: float = Field(default=24 * 60 * 60)

    # Pull service
    pull_min_interval_seconds: float = Field(default=10 * 60)
    pull_max_interval_seconds: float = Field(default=30 * 60)
    pull_interval_step_seconds: float = Field(default=10 * 60)

    # Trash batching
    batch_limit: int = Field(default=500)
    batch_pause_seconds: float = Field(default=0.1)

    # Scan pairing
    scan_staleness_seconds: float = Field(default=5.0)

    # Notifications
    low_stock_threshold: int = Field(default=10)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
