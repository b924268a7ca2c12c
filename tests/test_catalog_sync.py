"""
Tests for the catalog sync job

Tests cover:
- Incremental: change detection skip, detail refetch only for new/changed products
- Status sub-resource failure drops the record, optional sub-resources degrade
- A run that drops products clears the fingerprint so the next run refetches them
- Backfill resumes from the disk cache without refetching cached products
- Import from cache without network access
- Open circuit aborts the run
"""

import asyncio

import httpx
import pybreaker
import pytest

from shortage_sync.errors import UpstreamUnavailableError
from shortage_sync.models import CatalogEntry, EventReport
from shortage_sync.services.cache_store import CatalogCacheStore
from shortage_sync.services.job_runner import PARTIAL, SKIPPED, SUCCEEDED
from shortage_sync.services.sync.catalog_sync import CatalogSyncJob
from payloads import FakeCatalogProvider, details_payloads, listing_item, make_settings


def make_listing(count):
    return [listing_item(f"0200000{n}", n) for n in range(1, count + 1)]


def make_job(session_factory, tmp_path, provider, **overrides):
    transport = httpx.MockTransport(provider) if provider is not None else None
    return CatalogSyncJob(session_factory, settings=make_settings(tmp_path, **overrides), transport=transport)


def entries(session_factory):
    session = session_factory()
    try:
        return {entry.product_code: entry for entry in session.query(CatalogEntry).all()}
    finally:
        session.close()


def cached_record(item):
    details = details_payloads(item["drug_code"])
    return {
        "listing": item,
        "details": {
            "ingredients": details["activeingredient"],
            "forms": details["form"],
            "routes": details["route"],
            "therapeutics": details["therapeuticclass"],
            "status": "MARKETED",
        },
    }


class TestIncremental:

    def test_first_run_then_unchanged_skip(self, session_factory, tmp_path):
        provider = FakeCatalogProvider(make_listing(3))

        first = asyncio.run(make_job(session_factory, tmp_path, provider).run())
        second = asyncio.run(make_job(session_factory, tmp_path, provider).run())

        assert first.status == SUCCEEDED
        assert first.stats["reason"] == "no_fingerprint"
        assert first.stats["to_update"] == 3
        assert first.fingerprint == "4096"
        assert first.full_sync is True
        assert set(entries(session_factory)) == {"02000001", "02000002", "02000003"}

        assert second.status == SKIPPED
        assert second.stats == {"reason": "unchanged"}
        assert provider.listing_calls() == 1

    def test_only_new_and_changed_products_refetched(self, session_factory, tmp_path):
        provider = FakeCatalogProvider(make_listing(3))
        asyncio.run(make_job(session_factory, tmp_path, provider).run())
        provider.requests.clear()

        provider.listing = make_listing(4)
        provider.listing[1]["last_update_date"] = "2026-10-10"
        provider.content_length = 5000
        outcome = asyncio.run(make_job(session_factory, tmp_path, provider).run())

        assert outcome.stats["reason"] == "fingerprint_changed"
        assert sorted(provider.detail_calls("status")) == [2, 4]
        assert len(entries(session_factory)) == 4

    def test_force_refetches_everything(self, session_factory, tmp_path):
        provider = FakeCatalogProvider(make_listing(2))
        asyncio.run(make_job(session_factory, tmp_path, provider).run())
        provider.requests.clear()

        outcome = asyncio.run(make_job(session_factory, tmp_path, provider).run(force=True))

        assert outcome.stats["reason"] == "forced"
        assert sorted(provider.detail_calls("status")) == [1, 2]

    def test_status_failure_drops_record_optional_failure_degrades(self, session_factory, tmp_path):
        provider = FakeCatalogProvider(make_listing(3))
        provider.fail("status", 2)
        provider.fail("route", 3)

        outcome = asyncio.run(make_job(session_factory, tmp_path, provider).run())

        stored = entries(session_factory)
        assert outcome.status == PARTIAL
        assert outcome.stats["detail_failures"] == 1
        assert set(stored) == {"02000001", "02000003"}
        assert stored["02000003"].route is None
        assert stored["02000003"].dosage_form == "TABLET"

    def test_dropped_product_holds_fingerprint_until_stored(self, session_factory, tmp_path):
        provider = FakeCatalogProvider(make_listing(3))
        provider.fail("status", 2)

        first = asyncio.run(make_job(session_factory, tmp_path, provider).run())

        assert first.status == PARTIAL
        assert first.fingerprint is None
        assert "1 products not stored" in first.error

        provider.failing.clear()
        provider.requests.clear()
        second = asyncio.run(make_job(session_factory, tmp_path, provider).run())

        assert second.status == SUCCEEDED
        assert second.stats["reason"] == "no_fingerprint"
        assert provider.detail_calls("status") == [2]
        assert set(entries(session_factory)) == {"02000001", "02000002", "02000003"}

    def test_merge_keeps_report_sourced_fields_and_status(self, session_factory, tmp_path):
        session = session_factory()
        session.add(CatalogEntry(product_code="02000001", common_name="atorvastatin", has_reports=True))
        session.add(EventReport(report_id=1, product_code="02000001", status="active_confirmed", report_type="shortage"))
        session.commit()
        session.close()

        asyncio.run(make_job(session_factory, tmp_path, FakeCatalogProvider(make_listing(1))).run(force=True))

        entry = entries(session_factory)["02000001"]
        assert entry.common_name == "atorvastatin"
        assert entry.brand_name == "BRANDOL"
        assert entry.current_status == "in_shortage"

    def test_open_circuit_aborts(self, session_factory, tmp_path):
        breaker = pybreaker.CircuitBreaker(fail_max=1, reset_timeout=60, name="catalog-provider")
        breaker.open()
        job = CatalogSyncJob(
            session_factory,
            settings=make_settings(tmp_path),
            transport=httpx.MockTransport(FakeCatalogProvider(make_listing(1))),
            breaker=breaker,
        )

        with pytest.raises(UpstreamUnavailableError):
            asyncio.run(job.run())

        assert entries(session_factory) == {}


class TestBackfill:

    def test_resumes_after_cached_products(self, session_factory, tmp_path):
        listing = make_listing(5)
        settings = make_settings(tmp_path)
        cache = CatalogCacheStore(settings.catalog_cache_dir, settings.cache_batch_size)
        cache.save_listing(listing)
        cache.save_batch({item["drug_identification_number"]: cached_record(item) for item in listing[:2]})
        provider = FakeCatalogProvider(listing)

        job = CatalogSyncJob(session_factory, settings=settings, transport=httpx.MockTransport(provider), cache_store=cache)
        outcome = asyncio.run(job.run(mode="backfill"))

        assert sorted(provider.detail_calls("status")) == [3, 4, 5]
        assert provider.listing_calls() == 0
        assert outcome.stats["imported_from_cache"] == 2
        assert outcome.stats["cached"] == 5
        assert len(entries(session_factory)) == 5
        cache.close()

    def test_backfill_forces_next_incremental(self, session_factory, tmp_path):
        provider = FakeCatalogProvider(make_listing(2))
        asyncio.run(make_job(session_factory, tmp_path, provider).run(mode="backfill"))

        outcome = asyncio.run(make_job(session_factory, tmp_path, provider).run())

        assert outcome.status == SUCCEEDED
        assert outcome.stats["reason"] == "no_fingerprint"
        assert outcome.stats["to_update"] == 0


class TestFromCache:

    def test_imports_without_network(self, session_factory, tmp_path):
        settings = make_settings(tmp_path)
        cache = CatalogCacheStore(settings.catalog_cache_dir, settings.cache_batch_size)
        listing = make_listing(3)
        cache.save_batch({item["drug_identification_number"]: cached_record(item) for item in listing})
        cache.close()

        def no_network(request):
            raise AssertionError(f"unexpected request to {request.url}")

        job = CatalogSyncJob(session_factory, settings=settings, transport=httpx.MockTransport(no_network))
        outcome = asyncio.run(job.run(mode="from_cache"))

        assert outcome.stats["imported"] == 3
        assert set(entries(session_factory)) == {"02000001", "02000002", "02000003"}

    def test_empty_cache(self, session_factory, tmp_path):
        outcome = asyncio.run(make_job(session_factory, tmp_path, None).run(mode="from_cache"))

        assert outcome.status == SUCCEEDED
        assert outcome.stats["imported"] == 0
