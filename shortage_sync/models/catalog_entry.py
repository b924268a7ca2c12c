"""
CatalogEntry Model
One row per medication product, keyed by its external product code (DIN)
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index, false
from sqlalchemy.sql import func
from shortage_sync.database import Base
from shortage_sync.models.statuses import CatalogStatus


class CatalogEntry(Base):
    """
    Medication product from the catalog provider, enriched by the reports provider.

    current_status and has_reports are derived from event_reports by the
    status derivation pass and are never written from upstream payloads.
    """
    __tablename__ = "catalog_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_code = Column(String(20), unique=True, nullable=False)
    drug_code = Column(Integer, nullable=True)  # Catalog provider internal id

    # Names (English and French)
    brand_name = Column(String(500), nullable=True)
    brand_name_fr = Column(String(500), nullable=True)
    common_name = Column(String(500), nullable=True)
    common_name_fr = Column(String(500), nullable=True)

    # Primary active ingredient
    active_ingredient = Column(String(500), nullable=True)
    active_ingredient_fr = Column(String(500), nullable=True)
    strength = Column(String(100), nullable=True)
    strength_unit = Column(String(50), nullable=True)
    number_of_ais = Column(Integer, nullable=True)
    ai_group_no = Column(String(50), nullable=True)

    # Formulation
    dosage_form = Column(String(200), nullable=True)
    dosage_form_fr = Column(String(200), nullable=True)
    route = Column(String(200), nullable=True)
    route_fr = Column(String(200), nullable=True)

    # Classification
    atc_code = Column(String(20), nullable=True)
    atc_description = Column(String(500), nullable=True)

    company = Column(String(500), nullable=True)

    # Authoritative: always overwritten by the catalog provider
    market_status = Column(String(50), nullable=True)  # MARKETED, APPROVED, CANCELLED, DORMANT
    catalog_last_updated = Column(DateTime(timezone=True), nullable=True)

    # Derived
    current_status = Column(
        String(30),
        nullable=False,
        default=CatalogStatus.available.value,
        server_default=CatalogStatus.available.value
    )
    has_reports = Column(Boolean, nullable=False, default=False, server_default=false())

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_catalog_entries_current_status", "current_status"),
        Index("ix_catalog_entries_has_reports", "has_reports"),
        Index("ix_catalog_entries_active_ingredient", "active_ingredient"),
        Index("ix_catalog_entries_atc_code", "atc_code"),
        Index("ix_catalog_entries_market_status", "market_status"),
    )

    def __repr__(self):
        return f"<CatalogEntry(product_code='{self.product_code}', current_status='{self.current_status}')>"
