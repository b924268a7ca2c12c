"""
SyncState Model
Per-source sync ledger, independent of whether the data itself changed
"""

from sqlalchemy import Column, Integer, String, DateTime, Text
from shortage_sync.database import Base

REPORTS_SOURCE = "reports-provider"
CATALOG_SOURCE = "catalog-provider"


class SyncState(Base):
    """
    Ledger row for one upstream source.

    last_run_at advances on every attempt (including skips), last_success_at
    only on successful runs, so staleness is measurable even when nothing changed.
    """
    __tablename__ = "sync_state"

    source = Column(String(50), primary_key=True)  # reports-provider, catalog-provider

    last_run_at = Column(DateTime(timezone=True), nullable=False)
    last_success_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    consecutive_failures = Column(Integer, nullable=False, default=0)

    # Change detection
    content_fingerprint = Column(String(100), nullable=True)
    last_full_sync_at = Column(DateTime(timezone=True), nullable=True)
    records_seen = Column(Integer, nullable=True)

    def __repr__(self):
        return f"<SyncState(source='{self.source}', last_run_at={self.last_run_at}, failures={self.consecutive_failures})>"
