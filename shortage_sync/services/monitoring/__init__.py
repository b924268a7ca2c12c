"""
Monitoring Module
Exports for structured logging, job output capture, circuit breakers and error tracking
"""

from shortage_sync.services.monitoring.logging import (
    setup_logging,
    configure_structlog,
    capture_job_output,
    CorrelationJsonFormatter,
    JobOutputBuffer,
)
from shortage_sync.services.monitoring.circuit_breakers import (
    get_breaker,
    create_breaker,
    CircuitBreakerAlertListener,
    REPORTS_PROVIDER,
    CATALOG_PROVIDER,
)

__all__ = [
    "setup_logging",
    "configure_structlog",
    "capture_job_output",
    "CorrelationJsonFormatter",
    "JobOutputBuffer",
    "get_breaker",
    "create_breaker",
    "CircuitBreakerAlertListener",
    "REPORTS_PROVIDER",
    "CATALOG_PROVIDER",
]
