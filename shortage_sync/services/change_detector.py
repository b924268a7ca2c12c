"""
Change Detector
Decides whether a run needs to fetch anything at all.

Catalog: a metadata-only probe of the listing's Content-Length is compared to
the fingerprint file; an unchanged fingerprint with a recent full sync skips
the run. Reports: the incremental window starts at the last success minus an
overlap, or falls back to a full refresh.
"""

import json
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import structlog

from shortage_sync.models.sync_state import SyncState
from shortage_sync.services.reconciler import as_utc, parse_datetime

logger = structlog.get_logger(__name__)

SKIP = "skip"
PROCEED = "proceed"

INCREMENTAL = "incremental"
FULL = "full"


class FingerprintFile:
    """
    Small JSON file remembering the last catalog fingerprint.

    Readable without a database connection so the skip decision never
    depends on the store being reachable.
    """

    def __init__(self, path: str):
        self.path = path

    def load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("fingerprint_file_unreadable", path=self.path, error=str(e))
            return {}
        return data if isinstance(data, dict) else {}

    def save(
        self,
        content_length: Optional[int],
        records_seen: int,
        full_sync: bool = True,
        now: Optional[datetime] = None,
    ) -> dict:
        now = now or datetime.now(timezone.utc)
        previous = self.load()
        data = {
            "content_length": content_length,
            "last_sync_at": now.isoformat(),
            "last_full_sync_at": now.isoformat() if full_sync else previous.get("last_full_sync_at"),
            "records_seen": records_seen,
        }

        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)
        return data


@dataclass
class ChangeDecision:
    action: str
    reason: str
    fingerprint: Optional[int] = None

    @property
    def should_skip(self) -> bool:
        return self.action == SKIP


class CatalogChangeDetector:
    """Skip/proceed decision for the catalog job"""

    def __init__(self, fingerprint_file: FingerprintFile, max_age_days: int = 30):
        self.fingerprint_file = fingerprint_file
        self.max_age = timedelta(days=max_age_days)

    def decide(
        self,
        current_fingerprint: Optional[int],
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> ChangeDecision:
        now = now or datetime.now(timezone.utc)

        if force:
            return ChangeDecision(PROCEED, "forced", current_fingerprint)
        if current_fingerprint is None:
            return ChangeDecision(PROCEED, "probe_failed", None)

        recorded = self.fingerprint_file.load()
        previous = recorded.get("content_length")
        if previous is None:
            return ChangeDecision(PROCEED, "no_fingerprint", current_fingerprint)
        if previous != current_fingerprint:
            logger.info("catalog_fingerprint_changed", previous=previous, current=current_fingerprint)
            return ChangeDecision(PROCEED, "fingerprint_changed", current_fingerprint)

        last_full_sync = parse_datetime(recorded.get("last_full_sync_at"))
        if last_full_sync is None:
            return ChangeDecision(PROCEED, "no_full_sync", current_fingerprint)

        age = now - last_full_sync
        if age >= self.max_age:
            logger.info("catalog_full_sync_stale", age_days=age.days)
            return ChangeDecision(PROCEED, "full_sync_stale", current_fingerprint)

        return ChangeDecision(SKIP, "unchanged", current_fingerprint)


def reports_window(
    state: Optional[SyncState],
    force: bool = False,
    overlap: timedelta = timedelta(minutes=15),
    now: Optional[datetime] = None,
) -> Tuple[str, Optional[datetime]]:
    """
    (mode, since) for the reports job.

    Incremental from the last success minus the overlap, full otherwise.
    """
    last_success = as_utc(state.last_success_at) if state is not None else None
    if force or last_success is None:
        return FULL, None
    now = now or datetime.now(timezone.utc)
    since = min(last_success, now) - overlap
    return INCREMENTAL, since
