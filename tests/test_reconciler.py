"""
Tests for record mapping and dedupe
"""

from datetime import datetime, timezone

from shortage_sync.services.reconciler import (
    dedupe_by_key,
    filter_listing,
    map_catalog_entry,
    map_report,
    map_report_entry,
    parse_datetime,
    valid_product_code,
)
from payloads import details_payloads, listing_item, report_payload


class TestParseDatetime:

    def test_parses_to_utc_aware(self):
        assert parse_datetime("2026-10-01T12:00:00Z") == datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
        assert parse_datetime("2026-10-01T08:00:00-04:00") == datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
        assert parse_datetime("2026-09-15") == datetime(2026, 9, 15, tzinfo=timezone.utc)

    def test_unparseable_becomes_none(self):
        assert parse_datetime(None) is None
        assert parse_datetime("") is None
        assert parse_datetime("not a date") is None


class TestMapReport:

    def test_shortage_report(self):
        row = map_report(report_payload(101))

        assert row["report_id"] == 101
        assert row["product_code"] == "02345678"
        assert row["report_type"] == "shortage"
        assert row["status"] == "active_confirmed"
        assert row["reason_en"] == "Demand increase for the drug."
        assert row["api_updated_date"] == datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
        assert row["tier3"] is False
        assert row["raw_json"]["id"] == 101

    def test_discontinuance_label_and_reason(self):
        payload = report_payload(
            102,
            status="to_be_discontinued",
            type_label="discontinuance",
            discontinuance_reason={"en_reason": "Business decision", "fr_reason": "Décision d'affaires"},
        )

        row = map_report(payload)

        assert row["report_type"] == "discontinuation"
        assert row["reason_en"] == "Business decision"
        assert row["reason_fr"] == "Décision d'affaires"

    def test_unknown_status_maps_to_resolved(self):
        assert map_report(report_payload(103, status="pending_review"))["status"] == "resolved"

    def test_missing_flags_default_false(self):
        payload = report_payload(104)
        del payload["tier_3"]
        payload["late_submission"] = None

        row = map_report(payload)

        assert row["tier3"] is False
        assert row["late_submission"] is False


class TestMapReportEntry:

    def test_nested_drug_wins(self):
        row = map_report_entry(report_payload(101))

        assert row["product_code"] == "02345678"
        assert row["drug_code"] == 90001
        assert row["active_ingredient"] == "ACETAMINOPHEN"
        assert row["active_ingredient_fr"] == "ACÉTAMINOPHÈNE"
        assert row["common_name_fr"] == "acétaminophène"
        assert row["market_status"] == "MARKETED"
        assert row["has_reports"] is True

    def test_falls_back_to_report_fields(self):
        payload = report_payload(101, drug=None)

        row = map_report_entry(payload)

        assert row["brand_name"] == "ACMEDOL"
        assert row["company"] == "ACME PHARMA INC"
        assert row["drug_code"] is None

    def test_no_product_code_returns_none(self):
        assert map_report_entry(report_payload(101, din=None, drug=None)) is None


class TestMapCatalogEntry:

    def test_first_sub_resource_values(self):
        details = details_payloads(555)
        row = map_catalog_entry(
            listing_item("02000001", 555),
            {
                "ingredients": details["activeingredient"],
                "forms": details["form"],
                "routes": details["route"],
                "therapeutics": details["therapeuticclass"],
                "status": "CANCELLED POST MARKET",
            },
        )

        assert row["product_code"] == "02000001"
        assert row["active_ingredient"] == "INGREDIENT 555"
        assert row["dosage_form"] == "TABLET"
        assert row["atc_code"] == "C10AA05"
        assert row["market_status"] == "CANCELLED POST MARKET"
        assert row["catalog_last_updated"] == datetime(2026, 9, 15, tzinfo=timezone.utc)
        assert "current_status" not in row

    def test_empty_optional_resources(self):
        row = map_catalog_entry(
            listing_item("02000001", 555),
            {"ingredients": [], "forms": [], "routes": [], "therapeutics": [], "status": "MARKETED"},
        )

        assert row["active_ingredient"] is None
        assert row["route"] is None


class TestDedupe:

    def test_keeps_first_occurrence(self):
        records = [{"id": 1, "v": "a"}, {"id": 2, "v": "b"}, {"id": 1, "v": "c"}]

        result = dedupe_by_key(records, lambda record: record["id"])

        assert result == [{"id": 1, "v": "a"}, {"id": 2, "v": "b"}]

    def test_filter_listing_drops_invalid_and_duplicate_codes(self):
        listing = [
            listing_item("02000001", 1),
            listing_item("123", 2),
            listing_item("02000001", 3),
            listing_item("02000002", 4),
        ]

        result = filter_listing(listing)

        assert [item["drug_code"] for item in result] == [1, 4]

    def test_valid_product_code(self):
        assert valid_product_code("02345678")
        assert not valid_product_code("2345678")
        assert not valid_product_code(None)
