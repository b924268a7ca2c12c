"""
Tests for the sync state ledger
"""

from datetime import datetime, timedelta, timezone

from shortage_sync.models import CATALOG_SOURCE, REPORTS_SOURCE
from shortage_sync.services.reconciler import as_utc
from shortage_sync.services.sync_state import DEGRADED, HEALTHY, NEVER_SYNCED, SyncStateLedger

NOW = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


class TestSyncStateLedger:

    def test_never_synced(self, session_factory):
        ledger = SyncStateLedger(session_factory)

        assert ledger.get(REPORTS_SOURCE) is None
        assert ledger.health(REPORTS_SOURCE) == NEVER_SYNCED
        assert ledger.snapshot()[CATALOG_SOURCE] == {"health": NEVER_SYNCED}

    def test_success_then_failures_then_success(self, session_factory):
        ledger = SyncStateLedger(session_factory)

        ledger.record_success(CATALOG_SOURCE, fingerprint="4096", full_sync=True, records_seen=10, now=NOW)
        assert ledger.health(CATALOG_SOURCE) == HEALTHY

        ledger.record_failure(CATALOG_SOURCE, "FetchError: HTTP 503", now=NOW + timedelta(hours=1))
        ledger.record_failure(CATALOG_SOURCE, "FetchError: HTTP 503", now=NOW + timedelta(hours=2))
        state = ledger.get(CATALOG_SOURCE)
        assert state.consecutive_failures == 2
        assert state.last_error == "FetchError: HTTP 503"
        assert as_utc(state.last_success_at) == NOW
        assert state.content_fingerprint == "4096"
        assert ledger.health(CATALOG_SOURCE) == DEGRADED

        ledger.record_success(CATALOG_SOURCE, now=NOW + timedelta(hours=3))
        state = ledger.get(CATALOG_SOURCE)
        assert state.consecutive_failures == 0
        assert state.last_error is None
        assert as_utc(state.last_full_sync_at) == NOW
        assert state.records_seen == 10

    def test_skip_advances_last_run_only(self, session_factory):
        ledger = SyncStateLedger(session_factory)
        ledger.record_success(CATALOG_SOURCE, now=NOW)

        ledger.record_skip(CATALOG_SOURCE, now=NOW + timedelta(days=1))

        state = ledger.get(CATALOG_SOURCE)
        assert as_utc(state.last_run_at) == NOW + timedelta(days=1)
        assert as_utc(state.last_success_at) == NOW

    def test_partial_keeps_success_and_fingerprint(self, session_factory):
        ledger = SyncStateLedger(session_factory)
        ledger.record_success(REPORTS_SOURCE, fingerprint="4096", full_sync=True, records_seen=10, now=NOW)

        ledger.record_partial(REPORTS_SOURCE, "3 records not written", records_seen=12, now=NOW + timedelta(hours=1))

        state = ledger.get(REPORTS_SOURCE)
        assert as_utc(state.last_run_at) == NOW + timedelta(hours=1)
        assert as_utc(state.last_success_at) == NOW
        assert as_utc(state.last_full_sync_at) == NOW
        assert state.content_fingerprint == "4096"
        assert state.records_seen == 12
        assert state.consecutive_failures == 1
        assert state.last_error == "3 records not written"
        assert ledger.health(REPORTS_SOURCE) == DEGRADED

    def test_failure_before_any_success(self, session_factory):
        ledger = SyncStateLedger(session_factory)

        ledger.record_failure(REPORTS_SOURCE, "AuthenticationError: All accounts exhausted", now=NOW)

        assert ledger.health(REPORTS_SOURCE) == NEVER_SYNCED
        snapshot = ledger.snapshot()[REPORTS_SOURCE]
        assert snapshot["consecutive_failures"] == 1
        assert snapshot["last_run_at"] == NOW.isoformat()
        assert snapshot["last_success_at"] is None
