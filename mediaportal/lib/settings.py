"""
Application settings loaded from environment variables.
Uses pydantic-settings for validation and .env file support.
"""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./mediaportal.db",
        description="SQLAlchemy connection string"
    )

    # Application
    app_name: str = Field(default="mediaportal", description="Application name")
    app_base_url: str = Field(
        default="http://localhost:3010",
        description="Public base URL used in notification links"
    )
    debug: bool = Field(default=False, description="Debug mode")

    # Scheduler
    scheduler_enabled: bool = Field(
        default=True,
        description="Start the job tick loop with the application"
    )
    scheduler_tick_seconds: int = Field(
        default=60,
        ge=1,
        description="Seconds between scheduler ticks"
    )
    jobs_timezone: str = Field(
        default="UTC",
        description="Timezone used to evaluate cron schedules"
    )
    job_timeout_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="Default upper bound for a single job execution"
    )
    job_history_retention_days: int = Field(
        default=30,
        ge=1,
        description="Job runs older than this are pruned by job-history-prune"
    )

    # Notifications
    notifications_enabled: bool = Field(
        default=True,
        description="Global switch for event fan-out (test sends are unaffected)"
    )
    notification_send_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound for a single adapter send"
    )

    # Web Push (used when an endpoint config does not carry its own keys)
    vapid_public_key: str = Field(default="", description="VAPID public key")
    vapid_private_key: str = Field(default="", description="VAPID private key")
    vapid_subject: str = Field(
        default="mailto:admin@mediaportal.local",
        description="VAPID subject claim"
    )


# Global settings instance
settings = Settings()
