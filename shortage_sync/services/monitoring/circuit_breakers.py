"""
Circuit Breaker Implementation for Upstream Providers

Opens a circuit after consecutive failed requests (after local retries) and
attempts recovery after a timeout, so an outage fails the job fast instead of
grinding through thousands of detail fetches.

Services protected:
- Reports provider
- Catalog provider
"""

import logging
from typing import Optional

import pybreaker

from shortage_sync.config import settings
from shortage_sync.errors import AuthenticationError, FetchError

logger = logging.getLogger(__name__)

REPORTS_PROVIDER = "reports_provider"
CATALOG_PROVIDER = "catalog_provider"


class CircuitBreakerAlertListener(pybreaker.CircuitBreakerListener):
    """
    Notification listener for circuit breaker state changes.

    Sends a failure alert when a circuit opens, indicating the upstream
    provider has been isolated.
    """

    def __init__(self, notifier=None):
        self.notifier = notifier

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state: pybreaker.CircuitBreakerState, new_state: pybreaker.CircuitBreakerState):
        logger.warning(
            f"Circuit breaker state change: {cb.name} transitioned from {old_state.name} to {new_state.name}",
            extra={
                "circuit_breaker": cb.name,
                "old_state": old_state.name,
                "new_state": new_state.name,
                "fail_count": cb.fail_counter
            }
        )

        if new_state.name == pybreaker.STATE_OPEN and self.notifier is not None:
            self.notifier.notify_failure(
                cb.name,
                f"Circuit opened after {cb.fail_counter} consecutive failures; "
                f"requests blocked for {cb.reset_timeout}s",
            )


def is_rate_limited(error: BaseException) -> bool:
    return isinstance(error, FetchError) and error.status_code == 429


def create_breaker(name: str, listener: Optional[pybreaker.CircuitBreakerListener] = None) -> pybreaker.CircuitBreaker:
    """
    Create a circuit breaker with configured thresholds.

    Authentication errors and rate limits are excluded: neither is an outage.
    The failure that trips the circuit is raised as is; later calls fail fast
    with CircuitBreakerError until the reset timeout elapses.
    """
    return pybreaker.CircuitBreaker(
        name=name,
        fail_max=settings.circuit_breaker_fail_max,
        reset_timeout=settings.circuit_breaker_reset_timeout,
        exclude=[AuthenticationError, is_rate_limited],
        throw_new_error_on_trip=False,
        listeners=[listener] if listener else [],
    )


# Module-level instances (lazy initialization)
_breakers = {}


def get_breaker(service_name: str) -> pybreaker.CircuitBreaker:
    """
    Get circuit breaker for a provider.

    Lazy initializes breakers on first access to avoid import-time side effects.

    Raises:
        ValueError: If service_name is not recognized
    """
    if service_name not in (REPORTS_PROVIDER, CATALOG_PROVIDER):
        raise ValueError(
            f"Unknown service name: {service_name}. Must be '{REPORTS_PROVIDER}' or '{CATALOG_PROVIDER}'"
        )

    if service_name not in _breakers:
        from shortage_sync.services.failure_notifier import failure_notifier

        _breakers[service_name] = create_breaker(
            service_name, CircuitBreakerAlertListener(failure_notifier)
        )
        logger.info(f"Initialized {service_name} circuit breaker")
    return _breakers[service_name]


__all__ = [
    "CircuitBreakerAlertListener",
    "create_breaker",
    "get_breaker",
    "REPORTS_PROVIDER",
    "CATALOG_PROVIDER",
]
