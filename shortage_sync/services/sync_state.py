"""
Sync State Ledger
Records the outcome of every run per source in the sync_state table.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from shortage_sync.models.sync_state import CATALOG_SOURCE, REPORTS_SOURCE, SyncState
from shortage_sync.services.reconciler import as_utc

logger = structlog.get_logger(__name__)

SOURCES = (REPORTS_SOURCE, CATALOG_SOURCE)

NEVER_SYNCED = "never_synced"
HEALTHY = "healthy"
DEGRADED = "degraded"

MAX_ERROR_LENGTH = 2000


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SyncStateLedger:
    """
    One row per source, each update in its own transaction.

    A skip advances last_run_at only; a failure also bumps
    consecutive_failures; a success resets it. A partial run counts as a
    failure and leaves last_success_at and the fingerprint where they were,
    so the next incremental window still covers the records it dropped.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def get(self, source: str) -> Optional[SyncState]:
        """Detached copy of the ledger row, or None before the first run"""
        session = self.session_factory()
        try:
            state = session.get(SyncState, source)
            if state is not None:
                session.expunge(state)
            return state
        finally:
            session.close()

    def _update(self, source: str, apply: Callable[[SyncState], None], now: Optional[datetime]) -> None:
        session = self.session_factory()
        try:
            state = session.get(SyncState, source)
            if state is None:
                state = SyncState(source=source, consecutive_failures=0)
                session.add(state)
            state.last_run_at = now or _now()
            apply(state)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def record_success(
        self,
        source: str,
        fingerprint: Optional[str] = None,
        full_sync: bool = False,
        records_seen: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or _now()

        def apply(state: SyncState):
            state.last_success_at = now
            state.last_error = None
            state.consecutive_failures = 0
            if fingerprint is not None:
                state.content_fingerprint = fingerprint
            if full_sync:
                state.last_full_sync_at = now
            if records_seen is not None:
                state.records_seen = records_seen

        self._update(source, apply, now)
        logger.info("ledger_success", source=source, records_seen=records_seen, full_sync=full_sync)

    def record_failure(self, source: str, error: str, now: Optional[datetime] = None) -> None:
        def apply(state: SyncState):
            state.last_error = (error or "")[:MAX_ERROR_LENGTH]
            state.consecutive_failures = (state.consecutive_failures or 0) + 1

        self._update(source, apply, now)
        logger.warning("ledger_failure", source=source, error=error)

    def record_partial(
        self,
        source: str,
        error: Optional[str],
        records_seen: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> None:
        def apply(state: SyncState):
            state.last_error = (error or "")[:MAX_ERROR_LENGTH]
            state.consecutive_failures = (state.consecutive_failures or 0) + 1
            if records_seen is not None:
                state.records_seen = records_seen

        self._update(source, apply, now)
        logger.warning("ledger_partial", source=source, error=error)

    def record_skip(self, source: str, now: Optional[datetime] = None) -> None:
        self._update(source, lambda state: None, now)
        logger.info("ledger_skip", source=source)

    def health(self, source: str) -> str:
        state = self.get(source)
        if state is None or state.last_success_at is None:
            return NEVER_SYNCED
        if state.consecutive_failures:
            return DEGRADED
        return HEALTHY

    def snapshot(self) -> Dict[str, dict]:
        """Ledger view for the admin and health endpoints"""
        result = {}
        for source in SOURCES:
            state = self.get(source)
            if state is None:
                result[source] = {"health": NEVER_SYNCED}
                continue
            result[source] = {
                "health": self.health(source),
                "last_run_at": _isoformat(state.last_run_at),
                "last_success_at": _isoformat(state.last_success_at),
                "last_error": state.last_error,
                "consecutive_failures": state.consecutive_failures,
                "content_fingerprint": state.content_fingerprint,
                "last_full_sync_at": _isoformat(state.last_full_sync_at),
                "records_seen": state.records_seen,
            }
        return result


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None
