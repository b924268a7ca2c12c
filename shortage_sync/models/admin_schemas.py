"""
Pydantic schemas for the administrative sync endpoints
"""

from enum import Enum
from pydantic import BaseModel, Field
from typing import Dict, Optional


class JobName(str, Enum):
    """Named sync jobs"""
    reports = "reports"
    catalog = "catalog"


class CatalogMode(str, Enum):
    """Catalog job run modes"""
    incremental = "incremental"  # Change detection + diff (default)
    backfill = "backfill"  # Full fetch through the disk cache
    from_cache = "from_cache"  # Import disk cache only, no network


class TriggerRequest(BaseModel):
    """
    Body of POST /api/v1/admin/sync
    """
    job: JobName = Field(..., description="Job to run: reports or catalog")
    mode: CatalogMode = Field(CatalogMode.incremental, description="Catalog run mode (ignored for reports)")
    force: bool = Field(False, description="Bypass change detection / incremental window")

    class Config:
        extra = "forbid"


class TriggerResponse(BaseModel):
    """
    Response returned after a manually triggered run
    """
    job: str
    status: str
    success: bool
    output: str
    error: Optional[str] = None


class SyncStatusResponse(BaseModel):
    """
    Schedules, running state and ledger health per job
    """
    schedules: Dict[str, str]
    running: Dict[str, bool]
    ledger: Dict[str, dict]
