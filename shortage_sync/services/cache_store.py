"""
Disk Cache Store
Identifier-indexed embedded store for catalog detail fetches.

Lets a long backfill resume without refetching what it already has. Backed by
a SQLite file accessed through SQLAlchemy Core; records are keyed by product
code and written in bounded transactions.
"""

import os
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

import structlog
from sqlalchemy import JSON, Column, DateTime, Integer, MetaData, String, Table, create_engine, func, select
from sqlalchemy.dialects.sqlite import insert

logger = structlog.get_logger(__name__)

CACHE_FILENAME = "catalog-cache.sqlite3"
LISTING_SNAPSHOT = "listing"

metadata = MetaData()

cached_details = Table(
    "cached_details",
    metadata,
    Column("product_code", String(20), primary_key=True),
    Column("payload", JSON, nullable=False),
    Column("batch_index", Integer, nullable=False),
    Column("cached_at", DateTime(timezone=True), nullable=False),
)

snapshots = Table(
    "snapshots",
    metadata,
    Column("name", String(50), primary_key=True),
    Column("payload", JSON, nullable=False),
    Column("saved_at", DateTime(timezone=True), nullable=False),
)


class CatalogCacheStore:
    """
    Cache of the raw listing snapshot and per-product records.

    A record is {"listing": <listing item>, "details": <sub-resources>}.
    """

    def __init__(self, directory: str, batch_size: int = 1000):
        self.directory = directory
        self.batch_size = max(1, batch_size)
        os.makedirs(directory, exist_ok=True)
        self.path = os.path.join(directory, CACHE_FILENAME)
        self.engine = create_engine(f"sqlite:///{self.path}")
        metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    def save_listing(self, listing: List[dict]) -> None:
        stmt = insert(snapshots).values(name=LISTING_SNAPSHOT, payload=listing, saved_at=datetime.now(timezone.utc))
        stmt = stmt.on_conflict_do_update(
            index_elements=[snapshots.c.name],
            set_={"payload": stmt.excluded.payload, "saved_at": stmt.excluded.saved_at},
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)
        logger.info("cache_listing_saved", products=len(listing))

    def load_listing(self) -> Optional[List[dict]]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(snapshots.c.payload).where(snapshots.c.name == LISTING_SNAPSHOT)
            ).first()
        return row.payload if row is not None else None

    def _next_batch_index(self, conn) -> int:
        current = conn.execute(select(func.max(cached_details.c.batch_index))).scalar()
        return 0 if current is None else current + 1

    def save_batch(self, records: Dict[str, dict]) -> int:
        """
        Persist product_code -> record, committing every `batch_size` records.

        Returns the number of records written.
        """
        items = list(records.items())
        written = 0
        for start in range(0, len(items), self.batch_size):
            chunk = items[start:start + self.batch_size]
            now = datetime.now(timezone.utc)
            with self.engine.begin() as conn:
                batch_index = self._next_batch_index(conn)
                stmt = insert(cached_details).values([
                    {"product_code": code, "payload": record, "batch_index": batch_index, "cached_at": now}
                    for code, record in chunk
                ])
                stmt = stmt.on_conflict_do_update(
                    index_elements=[cached_details.c.product_code],
                    set_={
                        "payload": stmt.excluded.payload,
                        "batch_index": stmt.excluded.batch_index,
                        "cached_at": stmt.excluded.cached_at,
                    },
                )
                conn.execute(stmt)
            written += len(chunk)
            logger.info("cache_batch_saved", batch_index=batch_index, records=len(chunk))
        return written

    def load_all(self) -> Dict[str, dict]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(cached_details.c.product_code, cached_details.c.payload)).all()
        return {row.product_code: row.payload for row in rows}

    def cached_codes(self) -> Set[str]:
        with self.engine.connect() as conn:
            return set(conn.execute(select(cached_details.c.product_code)).scalars())

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(cached_details)).scalar() or 0
