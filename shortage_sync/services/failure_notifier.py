"""
Failure Notification Service
Sends alerts when sync jobs fail or an upstream circuit opens
"""

import logging
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx
import structlog

from shortage_sync.config import settings

logger = structlog.get_logger(__name__)

MAX_ALERT_LOG_BYTES = 10 * 1024 * 1024  # 10MB
MAX_ALERT_LOG_FILES = 3
MAX_DETAILS_CHARS = 2000


def _build_alert_logger(path: Optional[str]) -> Optional[logging.Logger]:
    """Rotating plain-text alert log, or None when no path is configured"""
    if not path:
        return None
    resolved = Path(path).resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    # One logger per file, so notifiers with different paths never share handlers
    alert_logger = logging.getLogger(f"shortage_sync.alerts:{resolved}")
    alert_logger.propagate = False
    if not alert_logger.handlers:
        handler = logging.handlers.RotatingFileHandler(
            resolved, maxBytes=MAX_ALERT_LOG_BYTES, backupCount=MAX_ALERT_LOG_FILES
        )
        handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s"))
        alert_logger.addHandler(handler)
    alert_logger.setLevel(logging.INFO)
    return alert_logger


class FailureNotifier:
    """
    Posts alerts to a chat webhook (Slack/Discord compatible) and appends
    them to the rotating alert log.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        error_log_path: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.webhook_url = webhook_url
        self.alert_logger = _build_alert_logger(error_log_path)
        self.transport = transport

    def notify_failure(self, job: str, message: str, details: Optional[str] = None) -> bool:
        """
        Send failure alert for a job.

        Returns:
            True if the webhook accepted the alert, False otherwise
        """
        timestamp = datetime.now(timezone.utc).isoformat()
        details = (details or "")[:MAX_DETAILS_CHARS]

        if self.alert_logger is not None:
            line = f"{job} ERROR: {message}"
            if details:
                line += f"\n  {details}"
            self.alert_logger.error(line)

        if not self.webhook_url:
            logger.warning("notify_webhook_not_configured", job=job)
            return False

        text = f"**{job} failed** ({timestamp})\n{message}"
        if details:
            text += f"\n```\n{details}\n```"
        payload = {
            "content": text,  # Discord
            "text": text,  # Slack
        }

        # Do NOT raise - notification failure should not cascade
        try:
            with httpx.Client(timeout=10.0, transport=self.transport) as client:
                response = client.post(self.webhook_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("failure_notification_failed", job=job, error=str(e))
            return False

        logger.info("failure_notification_sent", job=job)
        return True


# Module-level singleton
failure_notifier = FailureNotifier(
    webhook_url=settings.notify_webhook_url,
    error_log_path=settings.error_log_path,
)
