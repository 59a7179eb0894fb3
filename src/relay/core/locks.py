"""Advisory lock manager for order processing.

Manifesto:
    Two events for the same order (e.g. "processing" then "completed"
    seconds apart) must never produce two concurrent delivery jobs.  The
    lock manager provides atomic acquire/release with TTL-based auto-expiry
    so a crashed worker doesn't block an order forever.  INSERT-or-ignore
    semantics give O(1) conflict detection.

Tags:
    relay-core, distributed-locks, TTL, concurrency, orders

    Lock Flow::

        adapter: acquire("order:42") ── ok ──► enqueue job
                                     └─ held ─► skip (already queued)
        processor: terminal result ──► release("order:42", any_holder=True)
        TTL: locks auto-expire after ttl_seconds (default 600).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from relay.core.protocols import Connection

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL = 600


def order_lock_id(order_id: object) -> str:
    """Lock name for an order: ``order:<id>``."""
    return f"order:{order_id}"


class LockManager:
    """Database-backed TTL locks.

    Example:
        >>> manager = LockManager(conn, instance_id="worker-1")
        >>> if manager.acquire(order_lock_id(42)):
        ...     try:
        ...         pass  # enqueue / process
        ...     finally:
        ...         manager.release(order_lock_id(42))
    """

    def __init__(
        self,
        conn: Connection,
        instance_id: str | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize lock manager.

        Args:
            conn: Database connection holding ``relay_locks``
            instance_id: Unique identifier for this worker. Auto-generated
                         if not provided.
            clock: Seconds-since-epoch source
        """
        self.conn = conn
        self.instance_id = instance_id or str(uuid4())
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), UTC)

    def acquire(self, lock_id: str, ttl_seconds: int = DEFAULT_LOCK_TTL) -> bool:
        """Acquire an exclusive lock.

        A live lock refuses every acquire, including one from the instance
        that already holds it.

        Returns:
            True if this call took the lock, False if it is held
        """
        now = self._now()
        expires = now + timedelta(seconds=ttl_seconds)

        self.conn.execute(
            "DELETE FROM relay_locks WHERE lock_id = ? AND expires_at <= ?",
            (lock_id, now.isoformat(timespec="microseconds")),
        )
        cursor = self.conn.execute(
            """
            INSERT OR IGNORE INTO relay_locks (lock_id, locked_by, locked_at, expires_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                lock_id,
                self.instance_id,
                now.isoformat(timespec="microseconds"),
                expires.isoformat(timespec="microseconds"),
            ),
        )
        self.conn.commit()

        if cursor.rowcount > 0:
            logger.debug("Acquired lock %s", lock_id)
            return True

        logger.debug("Lock %s already held", lock_id)
        return False

    def release(self, lock_id: str, *, any_holder: bool = False) -> bool:
        """Release a lock.

        Args:
            lock_id: Lock to release
            any_holder: Release even if another instance took it. Order locks
                        are taken by the enqueuing worker and released by
                        whichever worker runs the job.

        Returns:
            True if a lock row was removed
        """
        if any_holder:
            cursor = self.conn.execute("DELETE FROM relay_locks WHERE lock_id = ?", (lock_id,))
        else:
            cursor = self.conn.execute(
                "DELETE FROM relay_locks WHERE lock_id = ? AND locked_by = ?",
                (lock_id, self.instance_id),
            )
        self.conn.commit()
        if cursor.rowcount > 0:
            logger.debug("Released lock %s", lock_id)
            return True
        return False

    def is_locked(self, lock_id: str) -> bool:
        """Check if a lock is held (by any instance) and not expired."""
        cursor = self.conn.execute(
            "SELECT 1 FROM relay_locks WHERE lock_id = ? AND expires_at > ?",
            (lock_id, self._now().isoformat(timespec="microseconds")),
        )
        return cursor.fetchone() is not None

    def get_lock_holder(self, lock_id: str) -> str | None:
        cursor = self.conn.execute(
            "SELECT locked_by FROM relay_locks WHERE lock_id = ? AND expires_at > ?",
            (lock_id, self._now().isoformat(timespec="microseconds")),
        )
        row = cursor.fetchone()
        return row[0] if row else None

    def cleanup_expired_locks(self) -> int:
        """Remove all expired locks.

        Returns:
            Number of locks removed
        """
        cursor = self.conn.execute(
            "DELETE FROM relay_locks WHERE expires_at <= ?",
            (self._now().isoformat(timespec="microseconds"),),
        )
        self.conn.commit()
        count = cursor.rowcount
        if count > 0:
            logger.info("Cleaned up %d expired locks", count)
        return count

    def list_active_locks(self) -> list[dict]:
        """List all active (non-expired) locks."""
        cursor = self.conn.execute(
            """
            SELECT lock_id, locked_by, locked_at, expires_at
            FROM relay_locks
            WHERE expires_at > ?
            ORDER BY locked_at
            """,
            (self._now().isoformat(timespec="microseconds"),),
        )
        return [
            {
                "lock_id": row[0],
                "locked_by": row[1],
                "locked_at": row[2],
                "expires_at": row[3],
            }
            for row in cursor.fetchall()
        ]


__all__ = ["DEFAULT_LOCK_TTL", "LockManager", "order_lock_id"]
