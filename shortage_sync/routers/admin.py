"""
Admin Sync API Router
Schedule/ledger visibility and authenticated manual job triggers
"""

import hmac
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from shortage_sync.config import settings
from shortage_sync.models.admin_schemas import JobName, SyncStatusResponse, TriggerRequest, TriggerResponse
from shortage_sync.scheduler import SyncScheduler
from shortage_sync.services.job_runner import REJECTED

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/admin/sync", tags=["admin"])


def get_sync_scheduler(request: Request) -> SyncScheduler:
    scheduler = getattr(request.app.state, "sync_scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Sync scheduler not initialized")
    return scheduler


def get_admin_secret() -> Optional[str]:
    return settings.admin_secret


def verify_admin_token(authorization: Optional[str], secret: Optional[str]) -> None:
    """
    Raises:
        HTTPException: 500 when no secret is configured, 401 on a missing or wrong token
    """
    if not secret:
        logger.error("admin_secret_not_configured")
        raise HTTPException(status_code=500, detail="Admin secret not configured")

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
        logger.warning("admin_unauthorized")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("", response_model=SyncStatusResponse)
async def get_sync_status(scheduler: SyncScheduler = Depends(get_sync_scheduler)):
    """
    Schedules, running state and ledger per source
    """
    ledger = await run_in_threadpool(scheduler.ledger.snapshot)
    return SyncStatusResponse(
        schedules=scheduler.get_schedules(),
        running=scheduler.running_state(),
        ledger=ledger,
    )


@router.post("", response_model=TriggerResponse)
async def trigger_sync(
    request: Request,
    authorization: Optional[str] = Header(None),
    scheduler: SyncScheduler = Depends(get_sync_scheduler),
    secret: Optional[str] = Depends(get_admin_secret),
):
    """
    Run a sync job now and wait for it to finish.

    Body: {"job": "reports"|"catalog", "mode"?: "incremental"|"backfill"|"from_cache", "force"?: bool}

    Raises:
        400: Invalid JSON or body
        401: Missing or wrong bearer token
        409: Job already running
        500: Admin secret not configured
    """
    verify_admin_token(authorization, secret)

    body = await request.body()
    try:
        trigger = TriggerRequest.model_validate_json(body)
    except ValidationError as e:
        logger.warning("admin_trigger_invalid_body", error=str(e))
        raise HTTPException(status_code=400, detail=f"Invalid request body: {e}")

    job = trigger.job.value
    if scheduler.runner.registry.is_running(job):
        raise HTTPException(status_code=409, detail=f"{job} sync is already running")

    options = {"force": trigger.force}
    if trigger.job == JobName.catalog:
        options["mode"] = trigger.mode.value

    logger.info("admin_trigger", job=job, **options)
    result = await run_in_threadpool(scheduler.trigger, job, **options)

    if result.status == REJECTED:
        raise HTTPException(status_code=409, detail=f"{job} sync is already running")

    return TriggerResponse(
        job=job,
        status=result.status,
        success=result.success,
        output=result.output[-settings.output_tail_chars:] if result.output else "",
        error=result.error,
    )
