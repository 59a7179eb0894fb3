"""Job queue health checks.

┌──────────────────────────────────────────────────────────────────────┐
│  JOB HEALTH MONITORING                                               │
│                                                                      │
│  Per group (relay_immediate / relay_scheduled / relay_retry):        │
│  1. Stuck:        in_progress for > 30 min (worker died)   → error   │
│  2. Failed:       > 10 failed jobs                          → error  │
│  3. In progress:  > 50 in_progress jobs (workers saturated) → error  │
│                                                                      │
│  "Stuck" and "failed" are reported separately: a failed job ran and  │
│  returned an error, a stuck job never finished at all.               │
└──────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from relay.execution.jobs import JobStore
from relay.execution.models import JobGroup, JobStatus

FAILED_THRESHOLD = 10
IN_PROGRESS_THRESHOLD = 50
STUCK_AFTER_SECONDS = 30 * 60


@dataclass
class GroupHealth:
    """Health of one job group."""

    group: str
    healthy: bool = True
    counts: dict[str, int] = field(default_factory=dict)
    stuck: int = 0
    stuck_job_ids: list[str] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "group": self.group,
            "healthy": self.healthy,
            "counts": self.counts,
            "stuck": self.stuck,
            "stuck_job_ids": self.stuck_job_ids,
            "issues": self.issues,
        }


@dataclass
class JobHealthReport:
    """Complete job queue health report."""

    healthy: bool
    checked_at: datetime
    groups: dict[str, GroupHealth] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def total_stuck(self) -> int:
        return sum(g.stuck for g in self.groups.values())

    @property
    def total_failed(self) -> int:
        return sum(g.counts.get(JobStatus.FAILED.value, 0) for g in self.groups.values())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "healthy": self.healthy,
            "checked_at": self.checked_at.isoformat(),
            "total_stuck": self.total_stuck,
            "total_failed": self.total_failed,
            "groups": {name: g.to_dict() for name, g in self.groups.items()},
            "warnings": self.warnings,
            "errors": self.errors,
        }


def check_job_health(
    store: JobStore,
    now: datetime,
    *,
    stuck_after_seconds: int = STUCK_AFTER_SECONDS,
    failed_threshold: int = FAILED_THRESHOLD,
    in_progress_threshold: int = IN_PROGRESS_THRESHOLD,
) -> JobHealthReport:
    """Evaluate every relay job group.

    Args:
        store: Job store to inspect
        now: Reference time for the stuck check
        stuck_after_seconds: In-progress age after which a job is stuck
        failed_threshold: Failed jobs in a group above which it is unhealthy
        in_progress_threshold: In-progress jobs above which a group is unhealthy

    Returns:
        JobHealthReport, unhealthy if any group is
    """
    report = JobHealthReport(healthy=True, checked_at=now)
    all_counts = store.counts()
    cutoff = now - timedelta(seconds=stuck_after_seconds)

    for group in JobGroup:
        health = GroupHealth(group=group.value)
        counts = {status.value: 0 for status in JobStatus}
        counts.update(all_counts.get(group.value, {}))
        health.counts = counts

        stuck_jobs = store.stuck(cutoff, group=group)
        health.stuck = len(stuck_jobs)
        health.stuck_job_ids = [job.id for job in stuck_jobs]

        if health.stuck:
            health.issues.append(f"{health.stuck} job(s) stuck in progress for over {stuck_after_seconds // 60} minutes")
        failed = counts[JobStatus.FAILED.value]
        if failed > failed_threshold:
            health.issues.append(f"{failed} failed jobs (threshold {failed_threshold})")
        in_progress = counts[JobStatus.IN_PROGRESS.value]
        if in_progress > in_progress_threshold:
            health.issues.append(f"{in_progress} jobs in progress (threshold {in_progress_threshold})")
        elif in_progress > in_progress_threshold // 2:
            report.warnings.append(f"{group.value}: {in_progress} jobs in progress")

        if health.issues:
            health.healthy = False
            report.healthy = False
            report.errors.extend(f"{group.value}: {issue}" for issue in health.issues)

        report.groups[group.value] = health

    return report


__all__ = ["GroupHealth", "JobHealthReport", "check_job_health"]
