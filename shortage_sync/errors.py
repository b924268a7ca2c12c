"""
Sync Error Taxonomy

FetchError is transient and retried locally before it reaches a job.
AuthenticationError is never retried. ConfigurationError is fatal at startup.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all sync engine errors"""


class FetchError(SyncError):
    """Upstream request failed after all retry attempts"""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class AuthenticationError(SyncError):
    """Upstream rejected our credentials (non-retryable)"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(SyncError):
    """Required configuration is missing"""


class UnsupportedDialectError(SyncError):
    """Upserts are only implemented for PostgreSQL and SQLite"""


class UpstreamUnavailableError(FetchError):
    """Circuit breaker for the provider is open"""
