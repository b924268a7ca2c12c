"""
Tests for the sync scheduler
"""

from unittest.mock import MagicMock, patch

from shortage_sync.scheduler import SyncScheduler
from shortage_sync.services.job_runner import FAILED, PARTIAL, SUCCEEDED, JobResult

SCHEDULES = {"reports": "*/15 * * * *", "catalog": "0 4 * * *"}


def make_scheduler(status=SUCCEEDED, environment="production"):
    runner = MagicMock()
    runner.run.return_value = JobResult(job="reports", status=status, success=status == SUCCEEDED)
    runner.job_names = ["reports", "catalog"]
    runner.registry.is_running.side_effect = lambda job: job == "catalog"
    return SyncScheduler(runner, SCHEDULES, environment=environment)


class TestSyncScheduler:

    def test_testing_environment_does_not_start(self):
        scheduler = make_scheduler(environment="testing")

        scheduler.start()

        assert scheduler.running is False
        assert scheduler.scheduler.get_jobs() == []

    def test_start_registers_cron_jobs(self):
        scheduler = make_scheduler()
        scheduler.start()
        try:
            jobs = {job.id: job for job in scheduler.scheduler.get_jobs()}
            assert set(jobs) == {"reports_sync", "catalog_sync"}
            assert jobs["reports_sync"].max_instances == 1
            assert jobs["reports_sync"].coalesce is True
            assert scheduler.running is True
        finally:
            scheduler.shutdown()

    def test_failed_run_schedules_one_retry(self):
        scheduler = make_scheduler(status=FAILED)

        result = scheduler.run_scheduled("reports")

        assert result.status == FAILED
        retry = scheduler.scheduler.get_job("reports_sync_retry")
        assert retry is not None
        assert retry.kwargs == {"retry": True}

    def test_failed_retry_is_not_retried_again(self):
        scheduler = make_scheduler(status=FAILED)

        with patch.object(scheduler, "schedule_retry") as schedule_retry:
            scheduler.run_scheduled("reports", retry=True)

        schedule_retry.assert_not_called()

    def test_partial_run_retried_with_options(self):
        scheduler = make_scheduler(status=PARTIAL)

        scheduler.run_scheduled("catalog", mode="incremental")

        retry = scheduler.scheduler.get_job("catalog_sync_retry")
        assert retry.kwargs == {"retry": True, "mode": "incremental"}

    def test_failed_manual_trigger_retried_while_running(self):
        scheduler = make_scheduler(status=FAILED)
        scheduler.start()
        try:
            result = scheduler.trigger("reports", force=True)

            assert result.status == FAILED
            scheduler.runner.run.assert_called_once_with("reports", force=True)
            retry = scheduler.scheduler.get_job("reports_sync_retry")
            assert retry.kwargs == {"retry": True, "force": True}
        finally:
            scheduler.shutdown()

    def test_failed_manual_trigger_without_scheduler_not_retried(self):
        scheduler = make_scheduler(status=FAILED)

        with patch.object(scheduler, "schedule_retry") as schedule_retry:
            scheduler.trigger("reports")

        schedule_retry.assert_not_called()

    def test_successful_run_not_retried(self):
        scheduler = make_scheduler()

        scheduler.run_scheduled("catalog")

        assert scheduler.scheduler.get_job("catalog_sync_retry") is None

    def test_runner_crash_never_raises(self):
        scheduler = make_scheduler()
        scheduler.runner.run.side_effect = RuntimeError("boom")

        assert scheduler.run_scheduled("reports") is None

    def test_schedules_and_running_state(self):
        scheduler = make_scheduler()

        assert scheduler.get_schedules() == SCHEDULES
        assert scheduler.running_state() == {"reports": False, "catalog": True}
