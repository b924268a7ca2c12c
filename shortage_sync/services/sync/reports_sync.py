"""
Reports Sync Job
Keeps event reports (and the catalog entries they mention) current from the reports provider.

Flow: login -> choose window -> fetch -> dedupe -> verify vanished active
reports (full mode) -> upsert entries -> upsert reports -> recompute statuses.

Records lost to a failed database batch make the run partial: the ledger
keeps its last success so the next window fetches them again.
"""

from datetime import timedelta
from typing import Callable, List, Optional, Set, Tuple

import httpx
import pybreaker
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from shortage_sync.config import Settings, settings as default_settings
from shortage_sync.errors import AuthenticationError, UpstreamUnavailableError
from shortage_sync.models.event_report import EventReport
from shortage_sync.models.statuses import ACTIVE_REPORT_STATUSES
from shortage_sync.models.sync_state import REPORTS_SOURCE
from shortage_sync.services.batch_upsert import BatchUpserter
from shortage_sync.services.change_detector import FULL, INCREMENTAL, reports_window
from shortage_sync.services.http_fetch import build_async_client, gather_bounded
from shortage_sync.services.job_runner import PARTIAL, JobOutcome
from shortage_sync.services.reconciler import dedupe_by_key, map_report, map_report_entry
from shortage_sync.services.reports_client import ReportsProviderClient
from shortage_sync.services.status_derivation import recompute_statuses
from shortage_sync.services.sync_state import SyncStateLedger

logger = structlog.get_logger(__name__)


class ReportsSyncJob:
    source = REPORTS_SOURCE

    def __init__(
        self,
        session_factory: Callable[[], Session],
        ledger: Optional[SyncStateLedger] = None,
        settings: Settings = default_settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
    ):
        self.session_factory = session_factory
        self.ledger = ledger or SyncStateLedger(session_factory)
        self.settings = settings
        self.transport = transport
        self.breaker = breaker
        self.upserter = BatchUpserter(session_factory, batch_size=settings.db_batch_size)

    def _client(self, http: httpx.AsyncClient) -> ReportsProviderClient:
        return ReportsProviderClient(
            http,
            self.settings.reports_accounts,
            self.settings.reports_api_url,
            page_size=self.settings.reports_page_size,
            retries=self.settings.http_retries,
            backoff_seconds=self.settings.http_backoff_seconds,
            breaker=self.breaker,
        )

    async def run(self, force: bool = False, **_options) -> JobOutcome:
        state = self.ledger.get(self.source)
        mode, since = reports_window(
            state,
            force=force,
            overlap=timedelta(minutes=self.settings.reports_sync_overlap_minutes),
        )
        logger.info("reports_sync_window", mode=mode, since=since.isoformat() if since else None)

        verified = verify_failures = 0
        async with build_async_client(self.settings.http_timeout_seconds, transport=self.transport) as http:
            client = self._client(http)
            await client.login()

            if mode == INCREMENTAL:
                payloads = await client.fetch_updated_since(since)
            else:
                payloads = []
                async for page in client.iter_active_reports():
                    payloads.extend(page)

            payloads = dedupe_by_key(payloads, lambda payload: payload.get("id"), label="reports")
            logger.info("reports_fetched", mode=mode, reports=len(payloads))

            if mode == FULL:
                seen_ids = {payload.get("id") for payload in payloads}
                refreshed, verify_failures = await self._verify_vanished(client, seen_ids)
                verified = len(refreshed)
                payloads.extend(refreshed)
            api_calls = client.api_calls

        report_rows, entry_rows, mapping_failures = self._map(payloads)
        entry_stats = self.upserter.upsert_report_entries(entry_rows)
        report_stats = self.upserter.upsert_reports(report_rows)

        session = self.session_factory()
        try:
            statuses_changed = recompute_statuses(session)
        finally:
            session.close()

        stats = {
            "mode": mode,
            "reports": len(report_rows),
            "entries": len(entry_rows),
            "verified": verified,
            "verify_failures": verify_failures,
            "mapping_failures": mapping_failures,
            "failed_records": entry_stats.failed_records + report_stats.failed_records,
            "statuses_changed": statuses_changed,
            "api_calls": api_calls,
        }
        logger.info("reports_sync_complete", **stats)
        if stats["failed_records"]:
            return JobOutcome(
                status=PARTIAL,
                stats=stats,
                records_seen=len(report_rows),
                error=f"{stats['failed_records']} records not written; sync position held",
            )
        return JobOutcome(stats=stats, full_sync=mode == FULL, records_seen=len(report_rows))

    def _map(self, payloads: List[dict]) -> Tuple[List[dict], List[dict], int]:
        report_rows, entry_rows = [], []
        failures = 0
        for payload in payloads:
            try:
                report = map_report(payload)
                entry = map_report_entry(payload)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                failures += 1
                logger.warning("report_mapping_failed", report_id=payload.get("id"), error=str(e))
                continue
            report_rows.append(report)
            if entry is not None:
                entry_rows.append(entry)
        return report_rows, entry_rows, failures

    def _stored_active_reports(self) -> List[Tuple[int, str]]:
        session = self.session_factory()
        try:
            rows = session.execute(
                select(EventReport.report_id, EventReport.report_type)
                .where(EventReport.status.in_(ACTIVE_REPORT_STATUSES))
            ).all()
        finally:
            session.close()
        return [(row.report_id, row.report_type) for row in rows]

    async def _verify_vanished(self, client: ReportsProviderClient, seen_ids: Set[int]) -> Tuple[List[dict], int]:
        """
        Fetch current detail for stored active reports missing from the active listing.

        Returns (payloads, failure count).
        """
        vanished = [item for item in self._stored_active_reports() if item[0] not in seen_ids]
        if not vanished:
            return [], 0

        logger.info("reports_verifying_vanished", reports=len(vanished))
        results = await gather_bounded(
            vanished,
            lambda item: client.get_report(item[0], item[1]),
            width=self.settings.detail_concurrency,
        )

        refreshed = []
        failures = 0
        for (report_id, _), result in zip(vanished, results):
            if isinstance(result, (UpstreamUnavailableError, AuthenticationError)):
                raise result
            if isinstance(result, BaseException):
                failures += 1
                logger.warning("report_verification_failed", report_id=report_id, error=str(result))
                continue
            if isinstance(result, dict) and result.get("id") is not None:
                refreshed.append(result)
        return refreshed, failures
