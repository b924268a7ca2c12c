"""
Sentry Error Tracking
Provides error tracking with sync job context for production debugging
"""

import logging
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

logger = logging.getLogger(__name__)


def init_sentry() -> None:
    """
    Initialize Sentry SDK with FastAPI integration.

    If SENTRY_DSN is not configured, logs warning and returns (disabled).
    """
    from shortage_sync.config import settings

    if settings.sentry_dsn is None:
        logger.warning("Sentry DSN not configured - error tracking disabled")
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment or settings.environment,
        traces_sample_rate=0.1,  # 10% of requests traced
        integrations=[
            FastApiIntegration(),
        ],
    )

    logger.info(
        "Sentry initialized",
        extra={"environment": settings.sentry_environment or settings.environment}
    )


def set_job_context(job: str, options: Optional[dict] = None) -> None:
    """
    Set Sentry context for the current sync job run.

    Args:
        job: Job name ("reports" or "catalog")
        options: Run options (mode, force)
    """
    sentry_sdk.set_context("sync_job", {"job": job, **(options or {})})
    sentry_sdk.set_tag("sync_job", job)


def capture_job_exception(exc: BaseException) -> None:
    """Report an unexpected job failure (no-op when Sentry is not initialized)"""
    sentry_sdk.capture_exception(exc)


def add_breadcrumb(
    category: str,
    message: str,
    level: str = "info",
    data: Optional[dict] = None
) -> None:
    """
    Add breadcrumb to Sentry for the sync trail.

    Args:
        category: Breadcrumb category (e.g., "fetch", "upsert", "ledger")
        message: Human-readable message
        level: Severity level ("debug", "info", "warning", "error")
        data: Additional structured data
    """
    sentry_sdk.add_breadcrumb(
        category=category,
        message=message,
        level=level,
        data=data or {}
    )
