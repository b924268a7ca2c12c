"""
Database Models
"""

from shortage_sync.models.catalog_entry import CatalogEntry
from shortage_sync.models.event_report import EventReport
from shortage_sync.models.sync_state import SyncState, REPORTS_SOURCE, CATALOG_SOURCE
from shortage_sync.models.statuses import (
    ReportType,
    ReportStatus,
    CatalogStatus,
    ACTIVE_REPORT_STATUSES,
)

__all__ = [
    "CatalogEntry",
    "EventReport",
    "SyncState",
    "REPORTS_SOURCE",
    "CATALOG_SOURCE",
    "ReportType",
    "ReportStatus",
    "CatalogStatus",
    "ACTIVE_REPORT_STATUSES",
]
