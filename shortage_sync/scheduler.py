"""
APScheduler Background Jobs

Cron-scheduled reports and catalog syncs inside the FastAPI process.
A failed or partial run, scheduled or triggered manually while the scheduler
is up, is retried once after a short delay with the same options.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from sqlalchemy.orm import Session

from shortage_sync.config import Settings, settings as default_settings
from shortage_sync.models.admin_schemas import JobName
from shortage_sync.services.job_registry import JobRegistry
from shortage_sync.services.job_runner import FAILED, PARTIAL, JobResult, JobRunner
from shortage_sync.services.monitoring.circuit_breakers import CATALOG_PROVIDER, REPORTS_PROVIDER, get_breaker
from shortage_sync.services.sync import CatalogSyncJob, ReportsSyncJob
from shortage_sync.services.sync_state import SyncStateLedger

logger = structlog.get_logger(__name__)

RETRY_STATUSES = (FAILED, PARTIAL)


class SyncScheduler:
    """
    Owns the BackgroundScheduler and the runner shared with the admin endpoint.

    Both paths go through the same JobRunner, so the registry lock covers
    scheduled and manual runs alike.
    """

    def __init__(
        self,
        runner: JobRunner,
        schedules: Dict[str, str],
        timezone_name: str = "America/Toronto",
        retry_delay_minutes: int = 5,
        environment: str = "production",
    ):
        self.runner = runner
        self.schedules = dict(schedules)
        self.timezone_name = timezone_name
        self.retry_delay = timedelta(minutes=retry_delay_minutes)
        self.environment = environment
        self.scheduler = BackgroundScheduler(timezone=timezone_name)

    @property
    def ledger(self) -> SyncStateLedger:
        return self.runner.ledger

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        if self.environment == "testing":
            logger.info("scheduler_skipped", reason="testing_environment")
            return

        for job, crontab in self.schedules.items():
            self.scheduler.add_job(
                self.run_scheduled,
                trigger=CronTrigger.from_crontab(crontab, timezone=self.timezone_name),
                args=[job],
                id=f"{job}_sync",
                name=f"{job.capitalize()} Sync",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            logger.info("job_registered", job=job, schedule=crontab)

        self.scheduler.start()
        logger.info("scheduler_started", jobs=list(self.schedules), timezone=self.timezone_name)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("scheduler_stopped")

    def run_scheduled(self, job: str, retry: bool = False, **options) -> Optional[JobResult]:
        """
        Scheduler entry point. Never raises into APScheduler.
        """
        try:
            result = self.runner.run(job, **options)
        except Exception as e:
            logger.error("scheduled_job_crashed", job=job, error=str(e), exc_info=True)
            return None

        if result.status in RETRY_STATUSES and not retry:
            self.schedule_retry(job, **options)
        return result

    def schedule_retry(self, job: str, **options) -> None:
        run_at = datetime.now(timezone.utc) + self.retry_delay
        self.scheduler.add_job(
            self.run_scheduled,
            trigger=DateTrigger(run_date=run_at),
            args=[job],
            kwargs={"retry": True, **options},
            id=f"{job}_sync_retry",
            name=f"{job.capitalize()} Sync Retry",
            replace_existing=True,
        )
        logger.warning("job_retry_scheduled", job=job, run_at=run_at.isoformat())

    def trigger(self, job: str, **options) -> JobResult:
        """
        Run a job now in the calling thread.

        A failure is retried through the scheduler when it is running; the
        command-line runner has no scheduler and reports the failure instead.
        """
        result = self.runner.run(job, **options)
        if result.status in RETRY_STATUSES and self.running:
            self.schedule_retry(job, **options)
        return result

    def get_schedules(self) -> Dict[str, str]:
        return dict(self.schedules)

    def running_state(self) -> Dict[str, bool]:
        return {job: self.runner.registry.is_running(job) for job in self.runner.job_names}


def build_job_factories(
    session_factory: Callable[[], Session],
    ledger: SyncStateLedger,
    settings: Settings = default_settings,
) -> Dict[str, Callable[[], object]]:
    """Fresh job objects per run, sharing the per-provider circuit breakers"""
    return {
        JobName.reports.value: lambda: ReportsSyncJob(
            session_factory,
            ledger=ledger,
            settings=settings,
            breaker=get_breaker(REPORTS_PROVIDER),
        ),
        JobName.catalog.value: lambda: CatalogSyncJob(
            session_factory,
            settings=settings,
            breaker=get_breaker(CATALOG_PROVIDER),
        ),
    }


def build_sync_scheduler(
    session_factory: Callable[[], Session],
    settings: Settings = default_settings,
    registry: Optional[JobRegistry] = None,
    notifier=None,
) -> SyncScheduler:
    """Wire registry, ledger, runner and scheduler from settings"""
    if notifier is None:
        from shortage_sync.services.failure_notifier import failure_notifier
        notifier = failure_notifier

    ledger = SyncStateLedger(session_factory)
    runner = JobRunner(
        registry or JobRegistry(),
        ledger,
        build_job_factories(session_factory, ledger, settings),
        notifier=notifier,
        output_lines=settings.output_tail_lines,
        output_chars=settings.output_tail_chars,
    )
    return SyncScheduler(
        runner,
        schedules={
            JobName.reports.value: settings.reports_schedule,
            JobName.catalog.value: settings.catalog_schedule,
        },
        timezone_name=settings.scheduler_timezone,
        retry_delay_minutes=settings.retry_delay_minutes,
        environment=settings.environment,
    )


__all__ = [
    "SyncScheduler",
    "build_job_factories",
    "build_sync_scheduler",
]
