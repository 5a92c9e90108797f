"""Durable FIFO queue of local writes awaiting push to the remote store.

Entries are keyed by a monotonic sequence assigned by SQLite, so a batch
read is a range scan in creation order, an ack is a delete by key and a
retry is a counter increment.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from ..errors import LocalStoreError
from ..models import Operation, Table, now_millis

logger = logging.getLogger(__name__)

QUEUE_SCHEMA = """
CREATE TABLE IF NOT EXISTS mutation_queue (
    sequence_id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL,
    record_id TEXT NOT NULL,
    operation TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    retry_count INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_queue_retry ON mutation_queue(retry_count);
CREATE INDEX IF NOT EXISTS idx_queue_table ON mutation_queue(table_name);
"""


@dataclass
class MutationQueueEntry:
    """A pending local write."""

    sequence_id: int
    table: str
    record_id: str
    operation: Operation
    payload: str
    created_at: int
    retry_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for status output."""
        return {
            "sequence_id": self.sequence_id,
            "table": self.table,
            "record_id": self.record_id,
            "operation": self.operation.value,
            "payload": self.payload,
            "created_at": self.created_at,
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MutationQueueEntry":
        return cls(
            sequence_id=row["sequence_id"],
            table=row["table_name"],
            record_id=row["record_id"],
            operation=Operation(row["operation"]),
            payload=row["payload"],
            created_at=row["created_at"],
            retry_count=row["retry_count"],
        )


class MutationQueue:
    """SQLite-backed mutation queue."""

    def __init__(self, db_path: str | Path):
        """Initialize the queue.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(QUEUE_SCHEMA)
        self._conn.commit()

        logger.info(f"MutationQueue connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database connection exists."""
        if self._conn is None:
            self.connect()
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements atomically, surfacing SQLite errors as LocalStoreError."""
        conn = self._ensure_connected()
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise LocalStoreError(str(e)) from e

    def enqueue(
        self,
        table: Table | str,
        record_id: str,
        operation: Operation | str,
        payload: str | dict[str, Any] | None = None,
    ) -> MutationQueueEntry:
        """Append a pending write.

        Args:
            table: Table the write touched.
            record_id: Key of the written record (composite keys encoded).
            operation: INSERT, UPDATE or DELETE.
            payload: Opaque snapshot; dicts are serialized to JSON. Defaults
                to ``{"id": record_id}``.

        Returns:
            The stored entry with its assigned sequence id.
        """
        table_name = Table(table).value
        operation = Operation(operation)
        if payload is None:
            payload = {"id": record_id}
        if not isinstance(payload, str):
            payload = json.dumps(payload)
        created_at = now_millis()

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO mutation_queue (
                    table_name, record_id, operation, payload, created_at, retry_count
                ) VALUES (?, ?, ?, ?, ?, 0)
                """,
                (table_name, record_id, operation.value, payload, created_at),
            )

        entry = MutationQueueEntry(
            sequence_id=cursor.lastrowid,
            table=table_name,
            record_id=record_id,
            operation=operation,
            payload=payload,
            created_at=created_at,
        )
        logger.debug(
            f"Enqueued #{entry.sequence_id} {table_name}:{operation.value} {record_id}"
        )
        return entry

    def dequeue_batch(self, limit: int = 50) -> list[MutationQueueEntry]:
        """Read the oldest entries without removing them.

        Args:
            limit: Maximum entries to return.

        Returns:
            Entries in sequence order, oldest first.
        """
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT sequence_id, table_name, record_id, operation, payload,
                       created_at, retry_count
                FROM mutation_queue
                ORDER BY sequence_id ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [MutationQueueEntry.from_row(row) for row in rows]

    def has_later_entry(self, table: Table | str, record_id: str, sequence_id: int) -> bool:
        """Whether a record has another entry queued after ``sequence_id``."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM mutation_queue
                WHERE table_name = ? AND record_id = ? AND sequence_id > ?
                LIMIT 1
                """,
                (Table(table).value, record_id, sequence_id),
            ).fetchone()
        return row is not None

    def ack(self, sequence_id: int) -> bool:
        """Delete an entry after a successful push.

        Returns:
            True if the entry existed.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM mutation_queue WHERE sequence_id = ?", (sequence_id,)
            )
        return cursor.rowcount > 0

    def mark_retry(self, sequence_id: int) -> int | None:
        """Increment an entry's retry counter.

        Returns:
            The new retry count, or None if the entry no longer exists.
        """
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE mutation_queue SET retry_count = retry_count + 1
                WHERE sequence_id = ?
                """,
                (sequence_id,),
            )
            row = conn.execute(
                "SELECT retry_count FROM mutation_queue WHERE sequence_id = ?",
                (sequence_id,),
            ).fetchone()
        return row[0] if row else None

    def mark_exhausted(self, sequence_id: int, max_retries: int = 3) -> bool:
        """Raise an entry's retry counter to the limit so the next prune drops it.

        Returns:
            True if the entry exists.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE mutation_queue SET retry_count = MAX(retry_count, ?)
                WHERE sequence_id = ?
                """,
                (max_retries, sequence_id),
            )
        return cursor.rowcount > 0

    def prune_exhausted(self, max_retries: int = 3) -> list[MutationQueueEntry]:
        """Delete entries whose retry count reached ``max_retries``.

        Returns:
            The removed entries, so callers can surface the dropped writes.
        """
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT sequence_id, table_name, record_id, operation, payload,
                       created_at, retry_count
                FROM mutation_queue
                WHERE retry_count >= ?
                ORDER BY sequence_id ASC
                """,
                (max_retries,),
            ).fetchall()
            pruned = [MutationQueueEntry.from_row(row) for row in rows]
            if pruned:
                placeholders = ",".join("?" * len(pruned))
                conn.execute(
                    f"DELETE FROM mutation_queue WHERE sequence_id IN ({placeholders})",
                    [e.sequence_id for e in pruned],
                )

        if pruned:
            logger.warning(
                f"Pruned {len(pruned)} queue entries after {max_retries} failed attempts"
            )
        return pruned

    def pending_count(self) -> int:
        """Number of entries awaiting push."""
        with self._transaction() as conn:
            return conn.execute("SELECT COUNT(*) FROM mutation_queue").fetchone()[0]

    def get_stats(self, max_retries: int = 3) -> dict[str, Any]:
        """Get queue statistics.

        Returns:
            Dictionary with pending counts, per-table counts and the age of
            the oldest entry.
        """
        stats: dict[str, Any] = {"pending_entries": self.pending_count()}

        with self._transaction() as conn:
            cursor = conn.execute(
                "SELECT table_name, COUNT(*) FROM mutation_queue GROUP BY table_name"
            )
            stats["entries_by_table"] = {row[0]: row[1] for row in cursor}

            stats["exhausted_entries"] = conn.execute(
                "SELECT COUNT(*) FROM mutation_queue WHERE retry_count >= ?",
                (max_retries,),
            ).fetchone()[0]

            oldest = conn.execute("SELECT MIN(created_at) FROM mutation_queue").fetchone()[0]
            stats["oldest_created_at"] = oldest

        return stats
