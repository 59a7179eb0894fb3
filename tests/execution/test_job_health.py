"""Tests for check_job_health."""

from datetime import UTC, datetime, timedelta

from relay.execution.health import check_job_health
from relay.execution.jobs import JobStore
from relay.execution.models import Job, JobGroup

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


def add_running(jobs, started, group=JobGroup.IMMEDIATE):
    job = jobs.insert(Job(hook="h", group=group, not_before=started, queued_at=started))
    jobs.claim(job.id, started)
    return job


class TestCheckJobHealth:
    def test_empty_queue_is_healthy(self, conn):
        report = check_job_health(JobStore(conn), NOW)
        assert report.healthy
        assert set(report.groups) == {"relay_immediate", "relay_scheduled", "relay_retry"}

    def test_stuck_job_makes_group_unhealthy(self, conn):
        jobs = JobStore(conn)
        stuck = add_running(jobs, NOW - timedelta(minutes=45), JobGroup.RETRY)
        add_running(jobs, NOW - timedelta(minutes=5), JobGroup.RETRY)

        report = check_job_health(jobs, NOW)
        assert not report.healthy
        retry = report.groups["relay_retry"]
        assert retry.stuck == 1
        assert retry.stuck_job_ids == [stuck.id]
        assert report.groups["relay_immediate"].healthy

    def test_in_progress_saturation(self, conn):
        jobs = JobStore(conn)
        for _ in range(4):
            add_running(jobs, NOW)
        report = check_job_health(jobs, NOW, in_progress_threshold=3)
        assert not report.healthy
        assert "4 jobs in progress" in report.errors[0]

    def test_half_threshold_is_a_warning(self, conn):
        jobs = JobStore(conn)
        for _ in range(3):
            add_running(jobs, NOW)
        report = check_job_health(jobs, NOW, in_progress_threshold=4)
        assert report.healthy
        assert report.warnings == ["relay_immediate: 3 jobs in progress"]

    def test_to_dict(self, conn):
        data = check_job_health(JobStore(conn), NOW).to_dict()
        assert data["healthy"] is True
        assert data["checked_at"] == NOW.isoformat()
        assert data["total_stuck"] == 0
