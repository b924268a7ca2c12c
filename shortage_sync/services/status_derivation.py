"""
Status Derivation Engine
Computes each catalog entry's current_status and has_reports from its event reports.
"""

from typing import Iterable, List, Optional

import structlog
from sqlalchemy import case, exists, func, literal, or_, select, update
from sqlalchemy.orm import Session

from shortage_sync.models.catalog_entry import CatalogEntry
from shortage_sync.models.event_report import EventReport
from shortage_sync.models.statuses import CatalogStatus, ReportStatus

logger = structlog.get_logger(__name__)

# Lower number wins
STATUS_PRIORITY = {
    ReportStatus.active_confirmed.value: 1,
    ReportStatus.anticipated_shortage.value: 2,
    ReportStatus.to_be_discontinued.value: 3,
    ReportStatus.discontinued.value: 4,
}

STATUS_TO_CATALOG = {
    ReportStatus.active_confirmed.value: CatalogStatus.in_shortage.value,
    ReportStatus.anticipated_shortage.value: CatalogStatus.anticipated.value,
    ReportStatus.to_be_discontinued.value: CatalogStatus.to_be_discontinued.value,
    ReportStatus.discontinued.value: CatalogStatus.discontinued.value,
}


def derive_status(statuses: Iterable[str]) -> str:
    """
    Derive a catalog status from the statuses of an entry's reports.

    Resolved, avoided and reversed reports never influence the result.
    """
    influencing = [status for status in statuses if status in STATUS_PRIORITY]
    if not influencing:
        return CatalogStatus.available.value
    winner = min(influencing, key=STATUS_PRIORITY.__getitem__)
    return STATUS_TO_CATALOG[winner]


def _derived_status_expression():
    priority = case(
        *((EventReport.status == status, rank) for status, rank in STATUS_PRIORITY.items()),
    )
    mapped = case(
        *((EventReport.status == status, literal(catalog)) for status, catalog in STATUS_TO_CATALOG.items()),
    )
    top_report = (
        select(mapped)
        .where(
            EventReport.product_code == CatalogEntry.product_code,
            EventReport.status.in_(list(STATUS_PRIORITY)),
        )
        .order_by(priority)
        .limit(1)
        .correlate(CatalogEntry)
        .scalar_subquery()
    )
    return func.coalesce(top_report, CatalogStatus.available.value)


def _has_reports_expression():
    return exists().where(EventReport.product_code == CatalogEntry.product_code).correlate(CatalogEntry)


def find_status_mismatches(session: Session, limit: Optional[int] = None) -> List[dict]:
    """
    Entries whose stored current_status or has_reports disagree with the derivation.

    Read-only; an empty list means the store is consistent.
    """
    derived_status = _derived_status_expression()
    has_reports = _has_reports_expression()
    query = (
        select(
            CatalogEntry.product_code,
            CatalogEntry.current_status,
            derived_status.label("derived_status"),
            CatalogEntry.has_reports,
            has_reports.label("derived_has_reports"),
        )
        .where(
            or_(
                CatalogEntry.current_status.is_distinct_from(derived_status),
                CatalogEntry.has_reports.is_distinct_from(has_reports),
            )
        )
        .order_by(CatalogEntry.product_code)
    )
    if limit is not None:
        query = query.limit(limit)

    return [
        {
            "product_code": row.product_code,
            "current_status": row.current_status,
            "derived_status": row.derived_status,
            "has_reports": bool(row.has_reports),
            "derived_has_reports": bool(row.derived_has_reports),
        }
        for row in session.execute(query)
    ]


def recompute_statuses(session: Session) -> int:
    """
    One set-based UPDATE over the whole store.

    Only rows whose derived values differ are written, so a second run with
    unchanged reports changes nothing. Commits and returns the row count.
    """
    derived_status = _derived_status_expression()
    has_reports = _has_reports_expression()

    statement = (
        update(CatalogEntry)
        .where(
            or_(
                CatalogEntry.current_status.is_distinct_from(derived_status),
                CatalogEntry.has_reports.is_distinct_from(has_reports),
            )
        )
        .values(
            current_status=derived_status,
            has_reports=has_reports,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    result = session.execute(statement)
    session.commit()

    changed = result.rowcount or 0
    logger.info("statuses_recomputed", changed=changed)
    return changed
