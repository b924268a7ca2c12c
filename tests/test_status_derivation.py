"""
Tests for status derivation (pure priority rules and the set-based recompute)
"""

import pytest

from shortage_sync.models import CatalogEntry, EventReport
from shortage_sync.services.status_derivation import derive_status, find_status_mismatches, recompute_statuses


def add_entry(session, product_code, **fields):
    session.add(CatalogEntry(product_code=product_code, **fields))


def add_report(session, report_id, product_code, status, report_type="shortage"):
    session.add(EventReport(report_id=report_id, product_code=product_code, status=status, report_type=report_type))


class TestDeriveStatus:

    @pytest.mark.parametrize("statuses,expected", [
        ([], "available"),
        (["resolved", "avoided_shortage", "reversed"], "available"),
        (["active_confirmed", "resolved"], "in_shortage"),
        (["anticipated_shortage"], "anticipated"),
        (["to_be_discontinued", "discontinued"], "to_be_discontinued"),
        (["discontinued"], "discontinued"),
        (["discontinued", "anticipated_shortage", "active_confirmed"], "in_shortage"),
    ])
    def test_priority(self, statuses, expected):
        assert derive_status(statuses) == expected


class TestRecomputeStatuses:

    def test_matches_pure_derivation(self, session):
        add_entry(session, "02000001")
        add_entry(session, "02000002")
        add_entry(session, "02000003")
        add_entry(session, "02000004", current_status="in_shortage", has_reports=True)
        add_report(session, 1, "02000001", "active_confirmed")
        add_report(session, 2, "02000001", "resolved")
        add_report(session, 3, "02000002", "to_be_discontinued", "discontinuation")
        add_report(session, 4, "02000002", "discontinued", "discontinuation")
        add_report(session, 5, "02000003", "reversed", "discontinuation")
        session.commit()

        changed = recompute_statuses(session)

        entries = {entry.product_code: entry for entry in session.query(CatalogEntry).all()}
        for entry in entries.values():
            session.refresh(entry)
        assert changed == 4
        assert entries["02000001"].current_status == "in_shortage"
        assert entries["02000002"].current_status == "to_be_discontinued"
        assert entries["02000003"].current_status == "available"
        assert entries["02000003"].has_reports is True
        assert entries["02000004"].current_status == "available"
        assert entries["02000004"].has_reports is False

    def test_second_run_is_noop(self, session):
        add_entry(session, "02000001")
        add_report(session, 1, "02000001", "anticipated_shortage")
        session.commit()

        assert recompute_statuses(session) == 1
        assert recompute_statuses(session) == 0

    def test_reports_without_entry_are_ignored(self, session):
        add_report(session, 1, None, "active_confirmed")
        add_report(session, 2, "09999999", "active_confirmed")
        session.commit()

        assert recompute_statuses(session) == 0


class TestFindStatusMismatches:

    def test_reports_then_clears_after_recompute(self, session):
        add_entry(session, "02000001")
        add_entry(session, "02000002")
        add_report(session, 1, "02000001", "active_confirmed")
        session.commit()

        mismatches = find_status_mismatches(session)

        assert mismatches == [{
            "product_code": "02000001",
            "current_status": "available",
            "derived_status": "in_shortage",
            "has_reports": False,
            "derived_has_reports": True,
        }]

        recompute_statuses(session)
        assert find_status_mismatches(session) == []
