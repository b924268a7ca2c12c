"""
EventReport Model
Shortage and discontinuation reports, many per catalog entry
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, JSON, Index
from sqlalchemy.sql import func
from shortage_sync.database import Base


class EventReport(Base):
    """
    One shortage or discontinuation report from the reports provider.

    Drug info is denormalized as it was at report time. status, dates and
    flags mirror the latest fetch verbatim; raw_json keeps the full payload.
    """
    __tablename__ = "event_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(Integer, unique=True, nullable=False)
    product_code = Column(String(20), nullable=True)  # A few historical reports have none

    # Drug info at time of report (bilingual)
    brand_name = Column(String(500), nullable=True)
    brand_name_fr = Column(String(500), nullable=True)
    common_name = Column(String(500), nullable=True)
    common_name_fr = Column(String(500), nullable=True)
    ingredients = Column(Text, nullable=True)  # Newline-separated
    ingredients_fr = Column(Text, nullable=True)
    drug_strength = Column(String(200), nullable=True)
    dosage_form = Column(String(200), nullable=True)
    dosage_form_fr = Column(String(200), nullable=True)
    route = Column(String(200), nullable=True)
    route_fr = Column(String(200), nullable=True)
    packaging_size = Column(String(200), nullable=True)

    report_type = Column(String(20), nullable=False)  # shortage, discontinuation
    status = Column(String(30), nullable=False)

    reason_en = Column(Text, nullable=True)
    reason_fr = Column(Text, nullable=True)

    atc_code = Column(String(20), nullable=True)
    atc_description = Column(String(500), nullable=True)

    # Shortage dates
    anticipated_start_date = Column(DateTime(timezone=True), nullable=True)
    actual_start_date = Column(DateTime(timezone=True), nullable=True)
    estimated_end_date = Column(DateTime(timezone=True), nullable=True)
    actual_end_date = Column(DateTime(timezone=True), nullable=True)

    # Discontinuation dates
    anticipated_discontinuation_date = Column(DateTime(timezone=True), nullable=True)
    discontinuation_date = Column(DateTime(timezone=True), nullable=True)

    company = Column(String(500), nullable=True)
    tier3 = Column(Boolean, nullable=True)  # Critical shortage tier
    late_submission = Column(Boolean, nullable=True)
    decision_reversal = Column(Boolean, nullable=True)

    # Provider timestamps (api_updated_date drives incremental sync)
    api_created_date = Column(DateTime(timezone=True), nullable=True)
    api_updated_date = Column(DateTime(timezone=True), nullable=True)

    raw_json = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_event_reports_product_code", "product_code"),
        Index("ix_event_reports_status", "status"),
        Index("ix_event_reports_type", "report_type"),
        Index("ix_event_reports_api_updated_date", "api_updated_date"),
        Index("ix_event_reports_tier3", "tier3"),
    )

    def __repr__(self):
        return f"<EventReport(report_id={self.report_id}, product_code='{self.product_code}', status='{self.status}')>"
