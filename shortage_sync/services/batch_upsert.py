"""
Batch Upsert Layer
Keyed INSERT ... ON CONFLICT DO UPDATE in bounded, independently committed batches.
"""

from dataclasses import dataclass
from typing import Callable, List, Sequence

import structlog
from sqlalchemy import func, or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shortage_sync.errors import UnsupportedDialectError
from shortage_sync.models.catalog_entry import CatalogEntry
from shortage_sync.models.event_report import EventReport
from shortage_sync.services.reconciler import (
    CATALOG_AUTHORITATIVE_FIELDS,
    CATALOG_MERGE_FIELDS,
    REPORT_AUTHORITATIVE_FIELDS,
    REPORT_ENTRY_MERGE_FIELDS,
    REPORT_MERGE_FIELDS,
    dedupe_by_key,
)

logger = structlog.get_logger(__name__)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass
class UpsertStats:
    batches: int = 0
    records: int = 0
    failed_batches: int = 0
    failed_records: int = 0

    def add(self, other: "UpsertStats") -> "UpsertStats":
        self.batches += other.batches
        self.records += other.records
        self.failed_batches += other.failed_batches
        self.failed_records += other.failed_records
        return self

    def as_dict(self) -> dict:
        return {
            "batches": self.batches,
            "records": self.records,
            "failed_batches": self.failed_batches,
            "failed_records": self.failed_records,
        }


def _insert_for(session: Session):
    dialect = session.get_bind().dialect.name
    try:
        return _INSERTS[dialect]
    except KeyError:
        raise UnsupportedDialectError(f"Upserts are not implemented for the {dialect} dialect")


def _merge_set(stmt, table, merge_fields: Sequence[str], authoritative_fields: Sequence[str]) -> dict:
    values = {name: func.coalesce(stmt.excluded[name], table.c[name]) for name in merge_fields}
    values.update({name: stmt.excluded[name] for name in authoritative_fields})
    values["updated_at"] = func.now()
    return values


def _normalize(rows: List[dict]) -> List[dict]:
    # Multi-row VALUES needs the same keys on every row
    keys = set()
    for row in rows:
        keys.update(row)
    return [{key: row.get(key) for key in keys} for row in rows]


class BatchUpserter:
    """
    Writes mapped rows in batches of `batch_size`.

    Every batch is its own transaction. A failed batch is rolled back and
    retried once; a second failure is counted and skipped while earlier
    batches stay committed.
    """

    def __init__(self, session_factory: Callable[[], Session], batch_size: int = 500):
        self.session_factory = session_factory
        self.batch_size = max(1, batch_size)

    def _catalog_statement(self, session: Session, rows: List[dict]):
        insert = _insert_for(session)
        table = CatalogEntry.__table__
        stmt = insert(table).values(rows)
        return stmt.on_conflict_do_update(
            index_elements=[table.c.product_code],
            set_=_merge_set(stmt, table, CATALOG_MERGE_FIELDS, CATALOG_AUTHORITATIVE_FIELDS),
        )

    def _report_entry_statement(self, session: Session, rows: List[dict]):
        insert = _insert_for(session)
        table = CatalogEntry.__table__
        stmt = insert(table).values(rows)
        set_ = _merge_set(stmt, table, REPORT_ENTRY_MERGE_FIELDS, ())
        set_["has_reports"] = True
        return stmt.on_conflict_do_update(index_elements=[table.c.product_code], set_=set_)

    def _report_statement(self, session: Session, rows: List[dict]):
        insert = _insert_for(session)
        table = EventReport.__table__
        stmt = insert(table).values(rows)
        return stmt.on_conflict_do_update(
            index_elements=[table.c.report_id],
            set_=_merge_set(stmt, table, REPORT_MERGE_FIELDS, REPORT_AUTHORITATIVE_FIELDS),
            where=or_(
                table.c.api_updated_date.is_(None),
                stmt.excluded.api_updated_date > table.c.api_updated_date,
            ),
        )

    def _write(self, kind: str, rows: List[dict], build_statement) -> UpsertStats:
        stats = UpsertStats()
        for start in range(0, len(rows), self.batch_size):
            batch = _normalize(rows[start:start + self.batch_size])
            batch_number = start // self.batch_size + 1

            for attempt in (1, 2):
                session = self.session_factory()
                try:
                    session.execute(build_statement(session, batch))
                    session.commit()
                except UnsupportedDialectError:
                    session.rollback()
                    raise
                except SQLAlchemyError as e:
                    session.rollback()
                    if attempt == 1:
                        logger.warning("upsert_batch_retry", kind=kind, batch=batch_number, error=str(e))
                        continue
                    logger.error(
                        "upsert_batch_failed",
                        kind=kind,
                        batch=batch_number,
                        records=len(batch),
                        error=str(e),
                    )
                    stats.failed_batches += 1
                    stats.failed_records += len(batch)
                else:
                    stats.batches += 1
                    stats.records += len(batch)
                    break
                finally:
                    session.close()

        logger.info("upsert_complete", kind=kind, **stats.as_dict())
        return stats

    def upsert_catalog_entries(self, rows: List[dict]) -> UpsertStats:
        """Catalog job rows; market status and last-updated are authoritative"""
        rows = dedupe_by_key(rows, lambda row: row["product_code"], label="catalog_entries")
        return self._write("catalog_entries", rows, self._catalog_statement)

    def upsert_report_entries(self, rows: List[dict]) -> UpsertStats:
        """Entries first seen from reports; on conflict only fills reports-owned fields"""
        rows = dedupe_by_key(rows, lambda row: row["product_code"], label="report_entries")
        return self._write("report_entries", rows, self._report_entry_statement)

    def upsert_reports(self, rows: List[dict]) -> UpsertStats:
        """Event reports; only rewritten when the incoming update is newer"""
        rows = dedupe_by_key(rows, lambda row: row["report_id"], label="event_reports")
        return self._write("event_reports", rows, self._report_statement)
