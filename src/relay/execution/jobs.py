"""Job Store — durable queue rows for the retry scheduler.

ARCHITECTURE
────────────
::

    JobStore(conn)
      ├── .insert(job)                   ─ enqueue
      ├── .due(now, limit)               ─ pending & not_before <= now
      ├── .claim(job_id, now)            ─ pending → in_progress (atomic)
      ├── .complete(job_id) / .fail()    ─ in_progress → terminal
      ├── .cancel(job_id)                ─ pending → canceled
      ├── .cancel_matching(hook, ...)    ─ pattern cancel, pending only
      ├── .counts() / .stuck() / .page() ─ monitoring
      └── .delete_terminal_before()      ─ bounded retention cleanup

Every transition is a single ``UPDATE ... WHERE status = <expected>``, so
two workers racing on one row see exactly one ``rowcount == 1`` and
terminal rows are never modified again.

Timestamps are stored as fixed-width UTC ISO-8601 text and compared as
strings.
"""

import json
from datetime import UTC, datetime
from typing import Any

from relay.core.protocols import Connection
from relay.execution.models import Job, JobGroup, JobStatus

_COLUMNS = """
    id, hook, payload, job_group, priority, retry_count, status,
    not_before, queued_at, started_at, finished_at, last_error
"""

_TERMINAL = (JobStatus.COMPLETE.value, JobStatus.FAILED.value, JobStatus.CANCELED.value)


def to_db_time(value: datetime) -> str:
    """Fixed-width UTC text, so lexical order equals time order."""
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def payload_key(payload: dict[str, Any]) -> str:
    """Canonical JSON used for pattern matching on payloads."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


class JobStore:
    """SQL-backed job queue over a DB-API connection."""

    def __init__(self, conn: Connection):
        """Initialize with a database connection.

        Args:
            conn: Connection with the ``relay_jobs`` table created
        """
        self._conn = conn

    # ── Writes ───────────────────────────────────────────────────

    def insert(self, job: Job) -> Job:
        self._conn.execute(
            """
            INSERT INTO relay_jobs (
                id, hook, payload, payload_key, job_group, priority,
                retry_count, status, not_before, queued_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.id,
                job.hook,
                json.dumps(job.payload, default=str),
                payload_key(job.payload),
                job.group.value,
                int(job.priority),
                job.retry_count,
                job.status.value,
                to_db_time(job.not_before),
                to_db_time(job.queued_at),
            ),
        )
        self._conn.commit()
        return job

    def claim(self, job_id: str, now: datetime) -> bool:
        """Move a pending job to in_progress. False if someone else got it."""
        cursor = self._conn.execute(
            """
            UPDATE relay_jobs SET status = ?, started_at = ?
            WHERE id = ? AND status = ?
            """,
            (JobStatus.IN_PROGRESS.value, to_db_time(now), job_id, JobStatus.PENDING.value),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def _finish(self, job_id: str, status: JobStatus, now: datetime, error: str | None) -> bool:
        cursor = self._conn.execute(
            """
            UPDATE relay_jobs SET status = ?, finished_at = ?, last_error = ?
            WHERE id = ? AND status = ?
            """,
            (status.value, to_db_time(now), error, job_id, JobStatus.IN_PROGRESS.value),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def complete(self, job_id: str, now: datetime) -> bool:
        return self._finish(job_id, JobStatus.COMPLETE, now, None)

    def fail(self, job_id: str, error: str, now: datetime) -> bool:
        return self._finish(job_id, JobStatus.FAILED, now, error[:1000])

    def cancel(self, job_id: str, now: datetime) -> bool:
        """Cancel a pending job. In-progress and terminal jobs are left alone."""
        cursor = self._conn.execute(
            """
            UPDATE relay_jobs SET status = ?, finished_at = ?
            WHERE id = ? AND status = ?
            """,
            (JobStatus.CANCELED.value, to_db_time(now), job_id, JobStatus.PENDING.value),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def cancel_matching(
        self,
        hook: str,
        now: datetime,
        payload: dict[str, Any] | None = None,
        group: JobGroup | None = None,
    ) -> int:
        query = "UPDATE relay_jobs SET status = ?, finished_at = ? WHERE hook = ? AND status = ?"
        params: list[Any] = [JobStatus.CANCELED.value, to_db_time(now), hook, JobStatus.PENDING.value]
        if payload is not None:
            query += " AND payload_key = ?"
            params.append(payload_key(payload))
        if group is not None:
            query += " AND job_group = ?"
            params.append(group.value)
        cursor = self._conn.execute(query, params)
        self._conn.commit()
        return cursor.rowcount

    def delete_terminal_before(self, cutoff: datetime, batch_size: int) -> int:
        """Delete up to ``batch_size`` terminal jobs finished before ``cutoff``."""
        cursor = self._conn.execute(
            """
            DELETE FROM relay_jobs WHERE id IN (
                SELECT id FROM relay_jobs
                WHERE status IN (?, ?, ?) AND finished_at < ?
                LIMIT ?
            )
            """,
            (*_TERMINAL, to_db_time(cutoff), batch_size),
        )
        self._conn.commit()
        return cursor.rowcount

    # ── Reads ────────────────────────────────────────────────────

    def get(self, job_id: str) -> Job | None:
        row = self._conn.execute(f"SELECT {_COLUMNS} FROM relay_jobs WHERE id = ?", (job_id,)).fetchone()
        return None if row is None else self._row_to_job(row)

    def due(self, now: datetime, limit: int) -> list[Job]:
        rows = self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM relay_jobs
            WHERE status = ? AND not_before <= ?
            ORDER BY priority, not_before
            LIMIT ?
            """,
            (JobStatus.PENDING.value, to_db_time(now), limit),
        ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def has_active(self, hook: str, payload: dict[str, Any]) -> bool:
        row = self._conn.execute(
            """
            SELECT 1 FROM relay_jobs
            WHERE hook = ? AND payload_key = ? AND status IN (?, ?)
            LIMIT 1
            """,
            (hook, payload_key(payload), JobStatus.PENDING.value, JobStatus.IN_PROGRESS.value),
        ).fetchone()
        return row is not None

    @staticmethod
    def _filters(hook: str | None, group: JobGroup | None, status: JobStatus | None = None) -> tuple[str, list[Any]]:
        clause = " WHERE 1=1"
        params: list[Any] = []
        if hook:
            clause += " AND hook = ?"
            params.append(hook)
        if group is not None:
            clause += " AND job_group = ?"
            params.append(group.value)
        if status is not None:
            clause += " AND status = ?"
            params.append(status.value)
        return clause, params

    def counts(self, hook: str | None = None, group: JobGroup | None = None) -> dict[str, dict[str, int]]:
        """Counts keyed by group, then status."""
        clause, params = self._filters(hook, group)
        rows = self._conn.execute(
            f"SELECT job_group, status, COUNT(*) FROM relay_jobs{clause} GROUP BY job_group, status",
            params,
        ).fetchall()
        result: dict[str, dict[str, int]] = {}
        for job_group, status, count in rows:
            result.setdefault(job_group, {})[status] = count
        return result

    def stuck(self, started_before: datetime, hook: str | None = None, group: JobGroup | None = None) -> list[Job]:
        clause, params = self._filters(hook, group, JobStatus.IN_PROGRESS)
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM relay_jobs{clause} AND started_at < ? ORDER BY started_at",
            [*params, to_db_time(started_before)],
        ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def recent_failures(self, limit: int = 10, hook: str | None = None, group: JobGroup | None = None) -> list[Job]:
        clause, params = self._filters(hook, group, JobStatus.FAILED)
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM relay_jobs{clause} ORDER BY finished_at DESC LIMIT ?",
            [*params, limit],
        ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def page(
        self,
        *,
        status: JobStatus | None = None,
        hook: str | None = None,
        group: JobGroup | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        """One page of jobs, newest first, plus the total matching count."""
        clause, params = self._filters(hook, group, status)
        total = self._conn.execute(f"SELECT COUNT(*) FROM relay_jobs{clause}", params).fetchone()[0]
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM relay_jobs{clause} ORDER BY queued_at DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        ).fetchall()
        return [self._row_to_job(row) for row in rows], total

    @staticmethod
    def _row_to_job(row: Any) -> Job:
        return Job(
            id=row[0],
            hook=row[1],
            payload=json.loads(row[2]) if row[2] else {},
            group=JobGroup(row[3]),
            priority=row[4],
            retry_count=row[5],
            status=JobStatus(row[6]),
            not_before=from_db_time(row[7]),
            queued_at=from_db_time(row[8]),
            started_at=from_db_time(row[9]),
            finished_at=from_db_time(row[10]),
            last_error=row[11],
        )


__all__ = ["JobStore", "payload_key", "to_db_time", "from_db_time"]
