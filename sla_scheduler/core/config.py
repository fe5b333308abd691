"""
Configuration management using Pydantic Settings.
Loads environment variables from .env file.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "SLA Scheduler"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # Supabase Configuration (monitored documents, notifications, employees)
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    # Lock store. Unset means single-instance deployment: every lock is granted.
    redis_url: Optional[str] = None
    lock_key_prefix: str = "lock:"

    # Scheduler Settings
    enable_scheduler: bool = True
    # Every instance may run the scheduler; the lock store keeps jobs exclusive.
    run_scheduler: bool = True
    scheduler_timezone: str = "UTC"

    # Job roster (seconds). Lock TTL must stay strictly below the interval.
    sla_breach_interval_seconds: int = 5 * 60
    sla_breach_lock_ttl_seconds: int = 4 * 60
    sla_warning_interval_seconds: int = 5 * 60
    sla_warning_lock_ttl_seconds: int = 4 * 60
    expired_lots_interval_seconds: int = 60 * 60
    expired_lots_lock_ttl_seconds: int = 50 * 60
    low_stock_interval_seconds: int = 30 * 60
    low_stock_lock_ttl_seconds: int = 25 * 60
    token_cleanup_interval_seconds: int = 6 * 60 * 60
    token_cleanup_lock_ttl_seconds: int = 5 * 60 * 60

    # Startup burst
    initial_run_delay_seconds: float = 10
    initial_run_lock_ttl_seconds: int = 30

    # SLA evaluation
    sla_warning_lookahead_minutes: int = 60
    notification_dedup_window_minutes: int = 60

    # Inventory alerts
    low_stock_alert_limit: int = 100

    # Job Monitoring
    job_failure_alert_threshold: int = 2  # Flag degraded after this many failures

    @property
    def lock_store_enabled(self) -> bool:
        """Check if a distributed lock store is configured."""
        return bool(self.redis_url)

    @property
    def database_configured(self) -> bool:
        """Check if Supabase credentials are present."""
        return bool(self.supabase_url and self.supabase_key)


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance.
    Call this function to get application settings.
    """
    return Settings()


# Global settings instance
settings = get_settings()
