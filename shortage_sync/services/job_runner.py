"""
Job Runner
Executes one named sync job in-process: lock, run, record, notify.

Each run drives the async job with its own event loop in the calling thread
(scheduler worker or API threadpool) and captures the job's structured log
events as its output.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from shortage_sync.services.job_registry import JobRegistry
from shortage_sync.services.monitoring.error_tracking import add_breadcrumb, capture_job_exception, set_job_context
from shortage_sync.services.monitoring.logging import capture_job_output
from shortage_sync.services.sync_state import SyncStateLedger

logger = structlog.get_logger(__name__)

SUCCEEDED = "succeeded"
FAILED = "failed"
SKIPPED = "skipped"
PARTIAL = "partial"
REJECTED = "rejected"


@dataclass
class JobOutcome:
    """What a sync job reports back to the runner"""
    status: str = SUCCEEDED
    stats: dict = field(default_factory=dict)
    fingerprint: Optional[str] = None
    full_sync: bool = False
    records_seen: Optional[int] = None
    # Set on a partial outcome: why the sync position was not advanced
    error: Optional[str] = None


@dataclass
class JobResult:
    job: str
    status: str
    success: bool
    stats: dict = field(default_factory=dict)
    error: Optional[str] = None
    output: str = ""
    duration_seconds: float = 0.0

    def as_dict(self) -> dict:
        return {
            "job": self.job,
            "status": self.status,
            "success": self.success,
            "stats": self.stats,
            "error": self.error,
            "output": self.output,
            "duration_seconds": self.duration_seconds,
        }


class JobRunner:
    """
    Runs jobs built by `job_factories` (name -> zero-arg factory).

    A job object exposes `source` (its ledger key) and an async
    `run(**options)` returning a JobOutcome.
    """

    def __init__(
        self,
        registry: JobRegistry,
        ledger: SyncStateLedger,
        job_factories: Dict[str, Callable[[], object]],
        notifier=None,
        output_lines: int = 500,
        output_chars: int = 2000,
    ):
        self.registry = registry
        self.ledger = ledger
        self.job_factories = job_factories
        self.notifier = notifier
        self.output_lines = output_lines
        self.output_chars = output_chars

    @property
    def job_names(self):
        return list(self.job_factories)

    def run(self, job: str, **options) -> JobResult:
        """
        Run a job to completion.

        Returns a `rejected` result (not an error) when the job is already running.

        Raises:
            ValueError: unknown job name
        """
        if job not in self.job_factories:
            raise ValueError(f"Unknown job: {job}. Must be one of {', '.join(self.job_factories)}")

        if not self.registry.try_acquire(job):
            logger.warning("job_rejected", job=job, reason="already_running")
            return JobResult(job=job, status=REJECTED, success=False, error=f"{job} is already running")

        started = time.monotonic()
        try:
            with capture_job_output(job, self.output_lines) as buffer, \
                    structlog.contextvars.bound_contextvars(job=job):
                result = self._execute(job, options, buffer)
        finally:
            self.registry.release(job)

        result.duration_seconds = round(time.monotonic() - started, 3)
        return result

    def _execute(self, job: str, options: dict, buffer) -> JobResult:
        sync_job = self.job_factories[job]()
        source = sync_job.source
        set_job_context(job, options)
        add_breadcrumb("sync", f"{job} started", data=options)
        logger.info("job_started", options=options)

        try:
            outcome = asyncio.run(sync_job.run(**options))
            if outcome.status == SKIPPED:
                self.ledger.record_skip(source)
            elif outcome.status == PARTIAL:
                self.ledger.record_partial(source, outcome.error, records_seen=outcome.records_seen)
            else:
                self.ledger.record_success(
                    source,
                    fingerprint=outcome.fingerprint,
                    full_sync=outcome.full_sync,
                    records_seen=outcome.records_seen,
                )
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.error("job_failed", error=error, exc_info=True)
            self._record_failure(source, error)
            capture_job_exception(e)
            output = buffer.text(self.output_chars)
            if self.notifier is not None:
                self.notifier.notify_failure(job, error, details=output)
            return JobResult(job=job, status=FAILED, success=False, error=error, output=output)

        if outcome.status == PARTIAL:
            logger.warning("job_partial", error=outcome.error, stats=outcome.stats)
            output = buffer.text(self.output_chars)
            if self.notifier is not None:
                self.notifier.notify_failure(job, outcome.error, details=output)
            return JobResult(job=job, status=PARTIAL, success=False, stats=outcome.stats, error=outcome.error, output=output)

        logger.info("job_finished", status=outcome.status, stats=outcome.stats)
        return JobResult(
            job=job,
            status=outcome.status,
            success=True,
            stats=outcome.stats,
            output=buffer.text(self.output_chars),
        )

    def _record_failure(self, source: str, error: str) -> None:
        try:
            self.ledger.record_failure(source, error)
        except SQLAlchemyError as e:
            logger.error("ledger_write_failed", source=source, error=str(e))
