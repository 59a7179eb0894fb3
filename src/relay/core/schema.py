"""
Relay infrastructure tables.

Table Registry (RELAY_TABLES):
    jobs   → relay_jobs    durable job queue (pending → in_progress → terminal)
    locks  → relay_locks   TTL advisory locks (one active job per order)

Indexes cover the two hot paths: the dispatch tick
(``status, not_before, priority``) and retention cleanup
(``status, finished_at``).
"""

from __future__ import annotations

from relay.core.protocols import Connection

RELAY_TABLES = {
    "jobs": "relay_jobs",
    "locks": "relay_locks",
}


RELAY_DDL = {
    "jobs": """
        CREATE TABLE IF NOT EXISTS relay_jobs (
            id TEXT PRIMARY KEY,
            hook TEXT NOT NULL,             -- e.g. "relay_send_order"
            payload TEXT NOT NULL DEFAULT '{}',
            payload_key TEXT,               -- canonical JSON of payload, for pattern cancel
            job_group TEXT NOT NULL,        -- relay_immediate / relay_scheduled / relay_retry
            priority INTEGER NOT NULL DEFAULT 20,
            retry_count INTEGER NOT NULL DEFAULT 0,
            status TEXT NOT NULL,           -- pending, in_progress, complete, failed, canceled
            not_before TEXT NOT NULL,
            queued_at TEXT NOT NULL,
            started_at TEXT,
            finished_at TEXT,
            last_error TEXT
        )
    """,
    "jobs_due_index": """
        CREATE INDEX IF NOT EXISTS idx_relay_jobs_due
        ON relay_jobs (status, not_before, priority)
    """,
    "jobs_retention_index": """
        CREATE INDEX IF NOT EXISTS idx_relay_jobs_finished
        ON relay_jobs (status, finished_at)
    """,
    "locks": """
        CREATE TABLE IF NOT EXISTS relay_locks (
            lock_id TEXT PRIMARY KEY,       -- e.g. "order:42"
            locked_by TEXT NOT NULL,
            locked_at TEXT NOT NULL,
            expires_at TEXT NOT NULL
        )
    """,
}


def create_core_tables(conn: Connection) -> None:
    """Create all relay tables. Safe to call repeatedly."""
    for _name, ddl in RELAY_DDL.items():
        conn.execute(ddl)
    conn.commit()


__all__ = ["RELAY_TABLES", "RELAY_DDL", "create_core_tables"]
