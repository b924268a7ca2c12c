"""
Application Configuration
"""

from pydantic import BaseModel
from pydantic_settings import BaseSettings
from typing import List, Optional


class ProviderAccount(BaseModel):
    """One set of reports provider credentials"""

    email: str
    password: str


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    database_url: Optional[str] = None

    # Environment
    environment: str = "development"

    # Admin trigger endpoint (Authorization: Bearer <admin_secret>)
    admin_secret: Optional[str] = None

    # Reports provider (shortage / discontinuation reports)
    reports_api_url: str = "https://www.drugshortagescanada.ca/api/v1"
    reports_accounts: List[ProviderAccount] = []  # JSON list of {"email", "password"}
    reports_page_size: int = 100
    reports_sync_overlap_minutes: int = 15  # Re-read window before last success

    # Catalog provider (drug product database)
    catalog_api_url: str = "https://health-products.canada.ca/api/drug"
    catalog_cache_dir: str = "catalog-cache"
    catalog_fingerprint_path: str = ".catalog-sync-state.json"
    full_sync_max_age_days: int = 30  # Force a full catalog diff after this long

    # HTTP behaviour
    http_timeout_seconds: float = 60.0
    http_retries: int = 3
    http_backoff_seconds: float = 2.0  # Linear: attempt * backoff
    detail_concurrency: int = 20
    batch_pause_seconds: float = 0.1

    # Batching
    db_batch_size: int = 500
    cache_batch_size: int = 1000

    # Scheduling
    scheduler_timezone: str = "America/Toronto"
    reports_schedule: str = "*/15 * * * *"
    catalog_schedule: str = "0 4 * * *"
    retry_delay_minutes: int = 5
    output_tail_lines: int = 500
    output_tail_chars: int = 2000

    # Circuit Breaker Configuration
    circuit_breaker_fail_max: int = 5
    circuit_breaker_reset_timeout: int = 60

    # Notifications
    notify_webhook_url: Optional[str] = None  # Slack/Discord compatible
    error_log_path: Optional[str] = None  # Rotating alert log, disabled when unset

    # Sentry Error Tracking
    sentry_dsn: Optional[str] = None
    sentry_environment: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
