"""Execution layer: rate limiting, circuit breaking, retry backoff and the job queue.

Architecture::

    models.py           Job, JobStatus, JobGroup, JobPriority, DeliveryAttempt
    rate_limit.py       TokenBucketLimiter (per resource, shared store)
    circuit_breaker.py  CircuitBreaker (per resource, shared store)
    retry.py            ExponentialBackoff (60s doubling, 960s cap)
    jobs.py             JobStore (relay_jobs table)
    scheduler.py        RetryScheduler (enqueue, tick, cancel, cleanup)
    health.py           check_job_health / JobHealthReport
"""

from relay.execution.circuit_breaker import CircuitBreaker, CircuitSnapshot, CircuitState
from relay.execution.health import JobHealthReport, check_job_health
from relay.execution.jobs import JobStore
from relay.execution.models import (
    DeliveryAttempt,
    Job,
    JobGroup,
    JobPriority,
    JobStatus,
)
from relay.execution.rate_limit import BucketCheck, TokenBucketLimiter
from relay.execution.retry import ExponentialBackoff, RetryStrategy
from relay.execution.scheduler import RetryScheduler, TickResult

__all__ = [
    "BucketCheck",
    "CircuitBreaker",
    "CircuitSnapshot",
    "CircuitState",
    "DeliveryAttempt",
    "ExponentialBackoff",
    "Job",
    "JobGroup",
    "JobHealthReport",
    "JobPriority",
    "JobStatus",
    "JobStore",
    "RetryScheduler",
    "RetryStrategy",
    "TickResult",
    "TokenBucketLimiter",
    "check_job_health",
]
