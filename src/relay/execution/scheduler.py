"""Retry Scheduler — enqueue, backoff, dispatch and maintenance of jobs.

WHY
───
Delivery must never run inline inside the storefront's request cycle and
a failing destination must not be retried in a tight loop.  Work is
queued as rows, dispatched by an external recurring trigger (cron,
``relay tick``), and failed sends come back later on a doubling delay in a
low-priority group so fresh orders are never starved by retries.

ARCHITECTURE
────────────
::

    RetryScheduler(JobStore)
      ├── .enqueue_now(hook, payload)        ─ relay_immediate, NORMAL
      ├── .enqueue_at(ts, hook, payload)     ─ relay_scheduled, NORMAL
      ├── .schedule_retry(hook, payload, n)  ─ relay_retry, LOW, backoff(n)
      ├── .tick(limit)                       ─ claim due jobs, run handlers
      ├── .cancel_job(id) / .cancel_jobs()   ─ pending only
      ├── .get_status() / .get_jobs()        ─ monitoring
      ├── .monitor_health()                  ─ stuck / failed / saturation
      └── .cleanup(days)                     ─ bounded batch deletes

BEST PRACTICES
──────────────
- Run ``tick()`` every minute; run ``check_stuck_jobs()`` hourly.
- Handlers must be idempotent: dispatch is at-least-once.
- Never cancel in-progress jobs; let them finish or fail.

Example::

    scheduler = RetryScheduler(JobStore(conn))
    scheduler.register_handler("relay_send_order", handle_send)
    scheduler.enqueue_now("relay_send_order", {"order_id": 42})
    scheduler.tick()
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from relay.alerts import AlertRegistry, AlertSeverity
from relay.core.logging import LogContext, get_logger
from relay.execution.health import (
    FAILED_THRESHOLD,
    IN_PROGRESS_THRESHOLD,
    STUCK_AFTER_SECONDS,
    JobHealthReport,
    check_job_health,
)
from relay.execution.jobs import JobStore
from relay.execution.models import Job, JobGroup, JobPriority, JobStatus
from relay.execution.retry import ExponentialBackoff, RetryStrategy

logger = get_logger(__name__)

JobHandler = Callable[[dict[str, Any], Job], Any]

HEALTH_ALERT_THROTTLE = 3600


@dataclass
class JobStatusCounts:
    """Counts by state for a hook and/or group."""

    counts: dict[str, int]
    total: int
    stuck: int
    recent_failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "counts": self.counts,
            "total": self.total,
            "stuck": self.stuck,
            "recent_failures": self.recent_failures,
        }


@dataclass
class JobPage:
    jobs: list[Job]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return max(1, -(-self.total // self.per_page))

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobs": [job.to_dict() for job in self.jobs],
            "total": self.total,
            "page": self.page,
            "per_page": self.per_page,
            "pages": self.pages,
        }


@dataclass
class TickResult:
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    job_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "claimed": self.claimed,
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
        }


@dataclass
class CleanupResult:
    deleted: int = 0
    batches: int = 0
    cutoff: datetime | None = None


class RetryScheduler:
    """Durable job scheduler with exponential retry backoff.

    Args:
        store: Job persistence
        backoff: Retry delay strategy (60s doubling, capped at 960s)
        max_retries: ``schedule_retry`` refuses counts above this
        alerts: Registry for stuck/failed job alerts
        clock: Seconds-since-epoch source
    """

    def __init__(
        self,
        store: JobStore,
        *,
        backoff: RetryStrategy | None = None,
        max_retries: int = 5,
        alerts: AlertRegistry | None = None,
        clock: Callable[[], float] = time.time,
        tick_batch_size: int = 25,
        retention_days: int = 7,
        cleanup_batch_size: int = 1000,
        stuck_after_seconds: int = STUCK_AFTER_SECONDS,
    ):
        self._store = store
        self._backoff = backoff or ExponentialBackoff(max_retries=max_retries)
        self._max_retries = max_retries
        self._alerts = alerts
        self._clock = clock
        self._tick_batch_size = tick_batch_size
        self._retention_days = retention_days
        self._cleanup_batch_size = cleanup_batch_size
        self._stuck_after_seconds = stuck_after_seconds
        self._handlers: dict[str, JobHandler] = {}

    @property
    def store(self) -> JobStore:
        return self._store

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), UTC)

    # ── Enqueue ──────────────────────────────────────────────────

    def _enqueue(
        self,
        hook: str,
        payload: dict[str, Any],
        not_before: datetime,
        group: JobGroup,
        priority: int,
        retry_count: int = 0,
    ) -> Job:
        job = Job(
            hook=hook,
            payload=dict(payload),
            group=group,
            priority=priority,
            retry_count=retry_count,
            not_before=not_before,
            queued_at=self.now(),
        )
        self._store.insert(job)
        logger.info(
            "job.enqueued",
            job_id=job.id,
            hook=hook,
            group=group.value,
            priority=int(priority),
            not_before=not_before.isoformat(),
        )
        return job

    def enqueue_now(
        self,
        hook: str,
        payload: dict[str, Any],
        group: JobGroup = JobGroup.IMMEDIATE,
        priority: int = JobPriority.NORMAL,
    ) -> Job:
        return self._enqueue(hook, payload, self.now(), group, priority)

    def enqueue_at(
        self,
        timestamp: datetime | float,
        hook: str,
        payload: dict[str, Any],
        group: JobGroup = JobGroup.SCHEDULED,
        priority: int = JobPriority.NORMAL,
    ) -> Job:
        if not isinstance(timestamp, datetime):
            timestamp = datetime.fromtimestamp(timestamp, UTC)
        return self._enqueue(hook, payload, timestamp, group, priority)

    def retry_delay(self, retry_count: int) -> int:
        """Backoff for the given 1-based retry count."""
        return self._backoff.delay_for_retry(retry_count)

    def schedule_retry(
        self,
        hook: str,
        payload: dict[str, Any],
        retry_count: int,
        min_delay: int = 0,
    ) -> Job | None:
        """Requeue work after a failure.

        Args:
            hook: Handler name
            payload: Handler argument
            retry_count: Failures so far (1 for the first retry)
            min_delay: Lower bound on the delay, e.g. a rate-limit wait hint

        Returns:
            The queued job, or None when ``retry_count`` exceeds ``max_retries``
        """
        if retry_count > self._max_retries:
            logger.warning(
                "job.retry_refused",
                hook=hook,
                retry_count=retry_count,
                max_retries=self._max_retries,
            )
            return None

        delay = max(self.retry_delay(retry_count), int(min_delay))
        job = self._enqueue(
            hook,
            payload,
            self.now() + timedelta(seconds=delay),
            JobGroup.RETRY,
            JobPriority.LOW,
            retry_count=retry_count,
        )
        logger.info("job.retry_scheduled", job_id=job.id, hook=hook, retry_count=retry_count, delay=delay)
        return job

    def has_active(self, hook: str, payload: dict[str, Any]) -> bool:
        """True if a pending or in-progress job exists for exactly this payload."""
        return self._store.has_active(hook, payload)

    # ── Cancellation ─────────────────────────────────────────────

    def cancel_job(self, job_id: str) -> bool:
        """Cancel a pending job. In-progress jobs can't be canceled."""
        canceled = self._store.cancel(job_id, self.now())
        if canceled:
            logger.info("job.canceled", job_id=job_id)
        else:
            logger.debug("job.cancel_refused", job_id=job_id)
        return canceled

    def cancel_jobs(
        self,
        hook: str,
        payload: dict[str, Any] | None = None,
        group: JobGroup | None = None,
    ) -> int:
        """Cancel pending jobs matching a (hook, payload, group) pattern."""
        count = self._store.cancel_matching(hook, self.now(), payload=payload, group=group)
        if count:
            logger.info("job.canceled_matching", hook=hook, group=group.value if group else None, count=count)
        return count

    # ── Dispatch ─────────────────────────────────────────────────

    def register_handler(self, hook: str, handler: JobHandler) -> None:
        self._handlers[hook] = handler

    def tick(self, limit: int | None = None) -> TickResult:
        """Run due jobs once.

        Each due job is claimed with a conditional update; a job claimed by
        another worker is skipped.  Handler exceptions mark the job failed
        and never escape.
        """
        result = TickResult()
        for job in self._store.due(self.now(), limit or self._tick_batch_size):
            if not self._store.claim(job.id, self.now()):
                result.skipped += 1
                continue
            result.claimed += 1
            result.job_ids.append(job.id)
            if self._run(job):
                result.completed += 1
            else:
                result.failed += 1

        if result.claimed or result.skipped:
            logger.info("scheduler.tick", **result.to_dict())
        return result

    def _run(self, job: Job) -> bool:
        handler = self._handlers.get(job.hook)
        with LogContext(job_id=job.id, hook=job.hook):
            if handler is None:
                logger.error("job.no_handler")
                self._store.fail(job.id, f"No handler registered for hook {job.hook!r}", self.now())
                return False
            try:
                handler(job.payload, job)
            except Exception as e:
                logger.exception("job.failed", error=str(e))
                self._store.fail(job.id, f"{type(e).__name__}: {e}", self.now())
                return False
            self._store.complete(job.id, self.now())
            logger.debug("job.complete")
            return True

    # ── Monitoring ───────────────────────────────────────────────

    def get_status(self, hook: str | None = None, group: JobGroup | None = None) -> JobStatusCounts:
        grouped = self._store.counts(hook=hook, group=group)
        counts = {status.value: 0 for status in JobStatus}
        for per_group in grouped.values():
            for status, count in per_group.items():
                counts[status] = counts.get(status, 0) + count
        cutoff = self.now() - timedelta(seconds=self._stuck_after_seconds)
        stuck = self._store.stuck(cutoff, hook=hook, group=group)
        failures = self._store.recent_failures(10, hook=hook, group=group)
        return JobStatusCounts(
            counts=counts,
            total=sum(counts.values()),
            stuck=len(stuck),
            recent_failures=[
                {
                    "id": j.id,
                    "hook": j.hook,
                    "error": j.last_error,
                    "finished_at": j.finished_at.isoformat() if j.finished_at else None,
                }
                for j in failures
            ],
        )

    def get_jobs(
        self,
        status: JobStatus | None = None,
        hook: str | None = None,
        group: JobGroup | None = None,
        per_page: int = 20,
        page: int = 1,
    ) -> JobPage:
        per_page = max(1, per_page)
        page = max(1, page)
        jobs, total = self._store.page(
            status=status,
            hook=hook,
            group=group,
            limit=per_page,
            offset=(page - 1) * per_page,
        )
        return JobPage(jobs=jobs, total=total, page=page, per_page=per_page)

    def monitor_health(self, log_stats: bool = True) -> JobHealthReport:
        """Check every group; alert on stuck jobs and threshold breaches."""
        report = check_job_health(
            self._store,
            self.now(),
            stuck_after_seconds=self._stuck_after_seconds,
            failed_threshold=FAILED_THRESHOLD,
            in_progress_threshold=IN_PROGRESS_THRESHOLD,
        )

        if log_stats:
            for name, group in report.groups.items():
                logger.info("scheduler.group_stats", group=name, stuck=group.stuck, **group.counts)

        if self._alerts is not None:
            for name, group in report.groups.items():
                if group.stuck:
                    self._alerts.alert(
                        AlertSeverity.ERROR,
                        "Stuck jobs detected",
                        f"{group.stuck} job(s) in {name} have been in progress for over "
                        f"{self._stuck_after_seconds // 60} minutes",
                        source="scheduler",
                        resource=name,
                        metadata={"job_ids": group.stuck_job_ids},
                        throttle_seconds=HEALTH_ALERT_THROTTLE,
                    )
                other_issues = [issue for issue in group.issues if "stuck" not in issue]
                if other_issues:
                    self._alerts.alert(
                        AlertSeverity.WARNING,
                        "Job group unhealthy",
                        "; ".join(other_issues),
                        source="scheduler",
                        resource=name,
                        metadata={"counts": group.counts},
                        throttle_seconds=HEALTH_ALERT_THROTTLE,
                    )

        if not report.healthy:
            logger.warning("scheduler.unhealthy", errors=report.errors)
        return report

    # ── Maintenance ──────────────────────────────────────────────

    def cleanup(self, older_than_days: int | None = None, batch_size: int | None = None) -> CleanupResult:
        """Delete terminal jobs older than the retention window, in batches."""
        days = older_than_days if older_than_days is not None else self._retention_days
        size = batch_size or self._cleanup_batch_size
        result = CleanupResult(cutoff=self.now() - timedelta(days=days))
        while True:
            deleted = self._store.delete_terminal_before(result.cutoff, size)
            if deleted <= 0:
                break
            result.deleted += deleted
            result.batches += 1
            if deleted < size:
                break
        if result.deleted:
            logger.info("scheduler.cleanup", deleted=result.deleted, batches=result.batches, older_than_days=days)
        return result

    def check_stuck_jobs(self) -> dict[str, Any]:
        """Hourly maintenance: health check, then retention cleanup."""
        report = self.monitor_health()
        cleaned = self.cleanup()
        return {"health": report.to_dict(), "deleted": cleaned.deleted}


__all__ = [
    "JobHandler",
    "JobStatusCounts",
    "JobPage",
    "TickResult",
    "CleanupResult",
    "RetryScheduler",
]
