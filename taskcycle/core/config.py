"""Configuration management for taskcycle."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TASKCYCLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # SQLite Configuration
    sqlite_db_path: str = Field(default="data/taskcycle.db", description="Path to the SQLite database file")
    storage_timeout_seconds: float = Field(
        default=5.0, description="Upper bound for a single storage call before it is treated as unavailable"
    )

    # Redis Configuration (optional)
    redis_url: str | None = Field(
        default=None, description="Redis connection URL for cross-process change notifications"
    )

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Lifecycle Configuration
    reconcile_interval_seconds: int = Field(
        default=60, description="Interval of the periodic reconcile timer for each watched group"
    )
    completion_grace_seconds: float = Field(
        default=1.9, description="Delay between completing a task and its deferred reset or deletion"
    )
    timezone: str = Field(default="UTC", description="Timezone used to interpret deadline date and time input")


class Constants:
    """Engine-wide constants."""

    # Task difficulty ("stars")
    MIN_DIFFICULTY: int = 1
    MAX_DIFFICULTY: int = 5

    # Deadlines
    MIN_DURATION_DAYS: int = 1
    URGENT_THRESHOLD_HOURS: int = 24
    DATE_FORMAT: str = "%Y-%m-%d"
    TIME_FORMAT: str = "%H:%M"

    # Overdue processing
    OVERDUE_CLAIM_LEASE_SECONDS: int = 30

    # Scheduler job ids
    RECONCILE_JOB_PREFIX: str = "reconcile"
    DEFERRED_COMPLETION_JOB_PREFIX: str = "deferred-completion"
    RECONCILE_JOB_MAX_RETRIES: int = 2
    RECONCILE_JOB_BASE_DELAY: float = 2.0

    # Optimistic write retries for edit and toggle
    WRITE_RETRY_ATTEMPTS: int = 3

    # Change notification channel
    CHANGE_CHANNEL_PREFIX: str = "taskcycle:changes"

    # Redis Configuration
    REDIS_MAX_CONNECTIONS: int = 10

    # Job Tracker Configuration
    TRACKER_DEAD_LETTER_QUEUE_MAXLEN: int = 100
    TRACKER_FAILURE_THRESHOLD: int = 3


def get_settings() -> Settings:
    """Get engine settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
