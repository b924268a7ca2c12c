"""
Catalog Sync Job
Keeps catalog entries current from the catalog provider.

Modes:
- incremental: change detection, diff on last-update date, detail fetch for new/changed products
- backfill: full detail fetch through the disk cache, resumable after interruption
- from_cache: import the disk cache without network calls
"""

import asyncio
from typing import Callable, Dict, List, Optional, Tuple

import httpx
import pybreaker
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from shortage_sync.config import Settings, settings as default_settings
from shortage_sync.models.admin_schemas import CatalogMode
from shortage_sync.models.catalog_entry import CatalogEntry
from shortage_sync.models.sync_state import CATALOG_SOURCE
from shortage_sync.errors import UpstreamUnavailableError
from shortage_sync.services.batch_upsert import BatchUpserter, UpsertStats
from shortage_sync.services.cache_store import CatalogCacheStore
from shortage_sync.services.catalog_client import CatalogProviderClient
from shortage_sync.services.change_detector import CatalogChangeDetector, FingerprintFile
from shortage_sync.services.http_fetch import build_async_client, gather_bounded
from shortage_sync.services.job_runner import PARTIAL, SKIPPED, JobOutcome
from shortage_sync.services.reconciler import as_utc, filter_listing, map_catalog_entry, parse_datetime
from shortage_sync.services.status_derivation import recompute_statuses

logger = structlog.get_logger(__name__)


def _chunks(items: List, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _rows_from_records(records: Dict[str, dict]) -> Tuple[List[dict], int]:
    rows = []
    failures = 0
    for code, record in records.items():
        try:
            rows.append(map_catalog_entry(record["listing"], record["details"]))
        except (KeyError, TypeError, AttributeError) as e:
            failures += 1
            logger.warning("catalog_mapping_failed", product_code=code, error=str(e))
    return rows, failures


class CatalogSyncJob:
    source = CATALOG_SOURCE

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Settings = default_settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
        cache_store: Optional[CatalogCacheStore] = None,
        fingerprint_file: Optional[FingerprintFile] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.transport = transport
        self.breaker = breaker
        self._cache_store = cache_store
        self.fingerprint_file = fingerprint_file or FingerprintFile(settings.catalog_fingerprint_path)
        self.detector = CatalogChangeDetector(self.fingerprint_file, max_age_days=settings.full_sync_max_age_days)
        self.upserter = BatchUpserter(session_factory, batch_size=settings.db_batch_size)

    @property
    def cache_store(self) -> CatalogCacheStore:
        if self._cache_store is None:
            self._cache_store = CatalogCacheStore(self.settings.catalog_cache_dir, self.settings.cache_batch_size)
        return self._cache_store

    def _client(self, http: httpx.AsyncClient) -> CatalogProviderClient:
        return CatalogProviderClient(
            http,
            self.settings.catalog_api_url,
            retries=self.settings.http_retries,
            backoff_seconds=self.settings.http_backoff_seconds,
            breaker=self.breaker,
        )

    def _http(self) -> httpx.AsyncClient:
        return build_async_client(self.settings.http_timeout_seconds, transport=self.transport)

    async def run(self, mode: str = CatalogMode.incremental.value, force: bool = False, **_options) -> JobOutcome:
        mode = CatalogMode(mode)
        logger.info("catalog_sync_started", mode=mode.value, force=force)
        if mode == CatalogMode.backfill:
            return await self.run_backfill()
        if mode == CatalogMode.from_cache:
            return self.run_from_cache()
        return await self.run_incremental(force=force)

    def _stored_last_updated(self) -> Dict[str, Optional[object]]:
        session = self.session_factory()
        try:
            rows = session.execute(select(CatalogEntry.product_code, CatalogEntry.catalog_last_updated)).all()
        finally:
            session.close()
        return {row.product_code: row.catalog_last_updated for row in rows}

    def _recompute(self) -> int:
        session = self.session_factory()
        try:
            return recompute_statuses(session)
        finally:
            session.close()

    async def _fetch_records(self, client: CatalogProviderClient, items: List[dict]) -> Tuple[Dict[str, dict], int]:
        """
        Detail fetch in sub-batches of `detail_concurrency` with a short pause between them.

        Returns ({product_code: {"listing", "details"}}, failure count).
        """
        width = self.settings.detail_concurrency
        records: Dict[str, dict] = {}
        failures = 0

        for start in range(0, len(items), width):
            sub_batch = items[start:start + width]
            results = await gather_bounded(
                sub_batch,
                lambda item: client.fetch_details(item["drug_code"]),
                width=width,
            )
            for item, result in zip(sub_batch, results):
                if isinstance(result, UpstreamUnavailableError):
                    raise result
                code = item["drug_identification_number"]
                if isinstance(result, BaseException):
                    failures += 1
                    logger.warning("catalog_detail_failed", product_code=code, error=str(result))
                    continue
                records[code] = {"listing": item, "details": result}

            if start + width < len(items):
                await asyncio.sleep(self.settings.batch_pause_seconds)

        return records, failures

    def _needs_update(self, item: dict, stored: Dict[str, Optional[object]], force: bool) -> bool:
        code = item["drug_identification_number"]
        if code not in stored:
            return True
        if force:
            return True
        upstream = parse_datetime(item.get("last_update_date"))
        if upstream is None:
            return False
        existing = as_utc(stored[code])
        # Listing dates have day precision
        return existing is None or upstream.date() != existing.date()

    async def run_incremental(self, force: bool = False) -> JobOutcome:
        async with self._http() as http:
            client = self._client(http)
            fingerprint = await client.probe_listing()
            decision = self.detector.decide(fingerprint, force=force)
            logger.info("catalog_change_decision", action=decision.action, reason=decision.reason, fingerprint=fingerprint)

            if decision.should_skip:
                return JobOutcome(status=SKIPPED, stats={"reason": decision.reason})

            listing = filter_listing(await client.fetch_listing())
            stored = self._stored_last_updated()
            to_update = [item for item in listing if self._needs_update(item, stored, force)]
            logger.info("catalog_diff", products=len(listing), stored=len(stored), to_update=len(to_update))

            stats = UpsertStats()
            detail_failures = mapping_failures = 0
            for chunk in _chunks(to_update, self.settings.db_batch_size):
                records, failures = await self._fetch_records(client, chunk)
                detail_failures += failures
                rows, failures = _rows_from_records(records)
                mapping_failures += failures
                stats.add(self.upserter.upsert_catalog_entries(rows))
                logger.info("catalog_progress", upserted=stats.records, remaining=len(to_update) - stats.records)

        statuses_changed = self._recompute()
        # Dropped products are missing from the store, so the next run refetches them
        partial = bool(detail_failures or stats.failed_records)
        if partial:
            self.fingerprint_file.save(None, records_seen=len(listing), full_sync=False)
        else:
            self.fingerprint_file.save(fingerprint, records_seen=len(listing), full_sync=True)

        result = {
            "mode": CatalogMode.incremental.value,
            "reason": decision.reason,
            "products": len(listing),
            "to_update": len(to_update),
            "detail_failures": detail_failures,
            "mapping_failures": mapping_failures,
            "statuses_changed": statuses_changed,
            **stats.as_dict(),
        }
        logger.info("catalog_sync_complete", **result)
        if partial:
            return JobOutcome(
                status=PARTIAL,
                stats=result,
                records_seen=len(listing),
                error=f"{detail_failures + stats.failed_records} products not stored; fingerprint cleared",
            )
        return JobOutcome(
            stats=result,
            fingerprint=str(fingerprint) if fingerprint is not None else None,
            full_sync=True,
            records_seen=len(listing),
        )

    async def run_backfill(self) -> JobOutcome:
        cache = self.cache_store
        stats = UpsertStats()
        detail_failures = mapping_failures = 0

        async with self._http() as http:
            client = self._client(http)
            listing = cache.load_listing()
            if listing is None:
                listing = await client.fetch_listing()
                cache.save_listing(listing)
            else:
                logger.info("catalog_listing_from_cache", products=len(listing))

            listing = filter_listing(listing)
            cached = cache.cached_codes()
            remaining = [item for item in listing if item["drug_identification_number"] not in cached]
            logger.info("catalog_backfill_plan", products=len(listing), cached=len(cached), remaining=len(remaining))

            for chunk in _chunks(remaining, self.settings.cache_batch_size):
                records, failures = await self._fetch_records(client, chunk)
                detail_failures += failures
                cache.save_batch(records)
                rows, failures = _rows_from_records(records)
                mapping_failures += failures
                stats.add(self.upserter.upsert_catalog_entries(rows))
                logger.info("catalog_backfill_progress", cached=cache.count(), upserted=stats.records)

        # Products cached by an earlier, interrupted run
        stored = self._stored_last_updated()
        missing = {code: record for code, record in cache.load_all().items() if code not in stored}
        if missing:
            logger.info("catalog_importing_cached", products=len(missing))
            rows, failures = _rows_from_records(missing)
            mapping_failures += failures
            stats.add(self.upserter.upsert_catalog_entries(rows))

        statuses_changed = self._recompute()
        self.fingerprint_file.save(None, records_seen=len(listing), full_sync=False)

        result = {
            "mode": CatalogMode.backfill.value,
            "products": len(listing),
            "fetched": len(remaining) - detail_failures,
            "cached": cache.count(),
            "imported_from_cache": len(missing),
            "detail_failures": detail_failures,
            "mapping_failures": mapping_failures,
            "statuses_changed": statuses_changed,
            **stats.as_dict(),
        }
        logger.info("catalog_sync_complete", **result)
        return JobOutcome(stats=result, records_seen=len(listing))

    def run_from_cache(self) -> JobOutcome:
        records = self.cache_store.load_all()
        if not records:
            logger.warning("catalog_cache_empty", hint="run a backfill first")
            return JobOutcome(stats={"mode": CatalogMode.from_cache.value, "imported": 0})

        rows, mapping_failures = _rows_from_records(records)
        stats = self.upserter.upsert_catalog_entries(rows)
        statuses_changed = self._recompute()
        self.fingerprint_file.save(None, records_seen=len(records), full_sync=False)

        result = {
            "mode": CatalogMode.from_cache.value,
            "imported": len(rows),
            "mapping_failures": mapping_failures,
            "statuses_changed": statuses_changed,
            **stats.as_dict(),
        }
        logger.info("catalog_sync_complete", **result)
        return JobOutcome(stats=result, records_seen=len(records))
