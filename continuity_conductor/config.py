"""
Centralized configuration using Pydantic Settings.

All settings are loaded from environment variables with CONTINUITY_ prefix.
Example: CONTINUITY_RULE_CACHE_TTL_SECONDS=60
"""

from pathlib import Path
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Continuity Conductor configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="CONTINUITY_",
        env_file=".env",
        env_file_encoding="utf-8"
    )

    # Server
    log_level: str = "INFO"

    # Session identity
    project_name: str = "default"
    working_directory: str = "."
    user_id: str = "default"

    # Rule store
    rule_cache_ttl_seconds: float = Field(default=300.0, gt=0)  # 5 minutes

    # Ecosystem health
    degraded_online_ratio: float = Field(default=0.6, ge=0.0, le=1.0)
    next_check_interval_ms: int = 30_000

    # Synchronization
    sync_interval_seconds: int = 300

    # Conversation capacity
    context_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    token_capacity: int = Field(default=200_000, gt=0)

    # Project intelligence
    intelligence_max_age_hours: float = Field(default=24.0, gt=0)

    # Reference relational store (sqlite+aiosqlite URL); auto-detect if not set
    analytics_database_url: Optional[str] = None

    def get_working_directory(self) -> str:
        """Absolute working directory used in checkpoint and handoff metadata."""
        return str(Path(self.working_directory).resolve())

    def get_analytics_database_url(self) -> str:
        """
        Determine the relational store URL.

        Priority:
        1. analytics_database_url setting (CONTINUITY_ANALYTICS_DATABASE_URL)
        2. <working_directory>/.continuity/storage/analytics.db
        """
        if self.analytics_database_url:
            return self.analytics_database_url

        storage = Path(self.get_working_directory()) / ".continuity" / "storage"
        storage.mkdir(parents=True, exist_ok=True)
        return f"sqlite+aiosqlite:///{storage / 'analytics.db'}"


# Singleton instance
settings = Settings()
