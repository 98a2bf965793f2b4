"""
Configuration management for the FPL League Settlement Service.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Config:
    """Application configuration."""

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Supabase Configuration
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_key: str = os.getenv("SUPABASE_KEY", "")
    supabase_service_key: Optional[str] = os.getenv("SUPABASE_SERVICE_KEY", None)

    # FPL API Configuration
    fpl_api_base_url: str = os.getenv("FPL_API_BASE_URL", "https://fantasy.premierleague.com/api")
    user_agent: str = os.getenv("FPL_USER_AGENT", "fpl-league-settlement/1.0 (weekly league points sync)")
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "30.0"))

    # Rate Limiting
    max_requests_per_minute: int = int(os.getenv("MAX_REQUESTS_PER_MINUTE", "60"))
    min_request_interval: float = float(os.getenv("MIN_REQUEST_INTERVAL", "0.2"))

    # Retry Configuration (per HTTP call, inside the client)
    max_retries: int = int(os.getenv("MAX_RETRIES", "2"))
    retry_backoff_base: float = float(os.getenv("RETRY_BACKOFF_BASE", "1.0"))
    max_retry_delay: int = int(os.getenv("MAX_RETRY_DELAY", "60"))

    # Per-entry resolution retries (on top of client retries); backoff grows linearly per attempt
    entry_max_retries: int = int(os.getenv("ENTRY_MAX_RETRIES", "2"))
    entry_retry_backoff: float = float(os.getenv("ENTRY_RETRY_BACKOFF", "1.0"))

    # Contest sync: entries resolved concurrently per batch, pause between batches
    sync_batch_size: int = int(os.getenv("SYNC_BATCH_SIZE", "5"))
    sync_batch_sleep_seconds: float = float(os.getenv("SYNC_BATCH_SLEEP_SECONDS", "0.5"))
    # Active contests synced concurrently in one activation pass
    contest_sync_concurrency: int = int(os.getenv("CONTEST_SYNC_CONCURRENCY", "3"))

    # Activation + sync cadence for the long-running service (seconds)
    sync_interval_seconds: int = int(os.getenv("SYNC_INTERVAL_SECONDS", "300"))

    # Cache Configuration
    bootstrap_cache_ttl: int = int(os.getenv("BOOTSTRAP_CACHE_TTL", "300"))  # 5 minutes

    # Trigger surface: bearer secret for the cron endpoint (empty = allow in development only)
    cron_secret: str = os.getenv("CRON_SECRET", "")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "json")  # json or text

    def validate(self):
        """Validate configuration."""
        errors = []

        if not self.supabase_url:
            errors.append("SUPABASE_URL is required")
        if not self.supabase_key:
            errors.append("SUPABASE_KEY is required")
        if self.sync_batch_size < 1:
            errors.append("SYNC_BATCH_SIZE must be at least 1")
        if self.contest_sync_concurrency < 1:
            errors.append("CONTEST_SYNC_CONCURRENCY must be at least 1")
        if self.entry_max_retries < 0:
            errors.append("ENTRY_MAX_RETRIES must not be negative")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

        return True

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def __post_init__(self):
        """Validate after initialization."""
        self.validate()
