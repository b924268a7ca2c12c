"""
Sync Jobs
"""

from shortage_sync.services.sync.catalog_sync import CatalogSyncJob
from shortage_sync.services.sync.reports_sync import ReportsSyncJob

__all__ = ["CatalogSyncJob", "ReportsSyncJob"]
