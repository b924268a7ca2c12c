"""
Shortage Sync - Main Application
FastAPI entry point with the in-process sync scheduler
"""

import logging

import structlog
from asgi_correlation_id import CorrelationIdMiddleware
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from shortage_sync.config import settings
from shortage_sync.database import init_db
from shortage_sync.routers.admin import router as admin_router
from shortage_sync.scheduler import build_sync_scheduler
from shortage_sync.services.monitoring.error_tracking import init_sentry
from shortage_sync.services.monitoring.logging import configure_structlog, setup_logging

configure_structlog()
logger = structlog.get_logger()

app = FastAPI(
    title="Shortage Sync",
    description="Medication shortage and drug catalog sync engine",
    version="1.0.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
)

app.add_middleware(CorrelationIdMiddleware)
app.include_router(admin_router)


@app.on_event("startup")
async def startup_event():
    """Application Startup"""
    setup_logging(logging.INFO)
    init_sentry()
    logger.info("startup", environment=settings.environment)

    # Missing DATABASE_URL is fatal
    session_factory = init_db()
    logger.info("database_initialized")

    app.state.sync_scheduler = build_sync_scheduler(session_factory, settings)
    app.state.sync_scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application Shutdown"""
    logger.info("shutdown")
    scheduler = getattr(app.state, "sync_scheduler", None)
    if scheduler is not None:
        scheduler.shutdown()


@app.get("/")
async def root():
    """Root Endpoint"""
    return {
        "message": "Shortage Sync API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """
    Health Check Endpoint
    Scheduler state and per-source sync ledger health
    """
    scheduler = getattr(app.state, "sync_scheduler", None)
    health_status = {
        "status": "healthy",
        "environment": settings.environment,
        "services": {
            "api": "running",
            "scheduler": "running" if scheduler is not None and scheduler.running else "stopped"
        },
        "sources": {},
    }

    if scheduler is not None:
        ledger = await run_in_threadpool(scheduler.ledger.snapshot)
        health_status["sources"] = {source: state["health"] for source, state in ledger.items()}

    return JSONResponse(
        content=health_status,
        status_code=200
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "shortage_sync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development"
    )
