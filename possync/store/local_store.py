"""Local SQLite store for tenant-scoped synced records.

Records of every table live in one ``records`` table, keyed by
``(table_name, record_id)`` and serialized as JSON. Alongside the current
version the store keeps ``base_data``: the last version known to match the
remote store, which the inventory merge uses as its common ancestor.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from ..adapters import get_adapter
from ..errors import LocalStoreError
from ..models import SyncStatus, Table

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    table_name TEXT NOT NULL,
    record_id TEXT NOT NULL,
    tenant_id TEXT NOT NULL,
    sync_status TEXT NOT NULL,
    updated_at INTEGER NOT NULL,
    data TEXT NOT NULL,
    base_data TEXT,
    PRIMARY KEY (table_name, record_id)
);

CREATE INDEX IF NOT EXISTS idx_records_tenant ON records(table_name, tenant_id);
CREATE INDEX IF NOT EXISTS idx_records_status ON records(sync_status);
"""


class LocalStore:
    """Durable, transactional store behind the sync engine.

    Every public method runs in its own transaction, so each individual
    get/upsert/delete/mark-synced is atomic at single-record granularity.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the local store.

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
        self._conn.executescript(SCHEMA)
        self._conn.commit()

        logger.info(f"LocalStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("LocalStore connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure we have a database connection."""
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

    def _decode(self, table: Table | str, data: str | None) -> Any:
        if data is None:
            return None
        return get_adapter(table).from_local(json.loads(data))

    # ==================== Record Operations ====================

    def get_by_id(self, table: Table | str, key: str) -> Any | None:
        """Load a record by key, or None if absent."""
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT data FROM records WHERE table_name = ? AND record_id = ?",
            (Table(table).value, key),
        ).fetchone()
        return self._decode(table, row["data"]) if row else None

    def upsert(self, table: Table | str, record: Any) -> None:
        """Insert or replace a record by key.

        Writing a SYNCED record also makes it the remote-confirmed base;
        any other status keeps the previous base.
        """
        adapter = get_adapter(table)
        data = json.dumps(adapter.to_local(record))
        status = SyncStatus(record.sync_status).value
        base = data if status == SyncStatus.SYNCED.value else None

        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO records (
                    table_name, record_id, tenant_id, sync_status,
                    updated_at, data, base_data
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (table_name, record_id) DO UPDATE SET
                    tenant_id = excluded.tenant_id,
                    sync_status = excluded.sync_status,
                    updated_at = excluded.updated_at,
                    data = excluded.data,
                    base_data = COALESCE(excluded.base_data, records.base_data)
                """,
                (
                    adapter.table.value,
                    adapter.key(record),
                    record.tenant_id,
                    status,
                    record.updated_at,
                    data,
                    base,
                ),
            )

    def delete_by_id(self, table: Table | str, key: str) -> bool:
        """Delete a record by key.

        Returns:
            True if a record was deleted.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM records WHERE table_name = ? AND record_id = ?",
                (Table(table).value, key),
            )
        return cursor.rowcount > 0

    def set_sync_status(self, table: Table | str, key: str, status: SyncStatus) -> bool:
        """Overwrite a record's sync status.

        Returns:
            True if the record exists.
        """
        status = SyncStatus(status).value
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE records
                SET sync_status = ?, data = json_set(data, '$.sync_status', ?)
                WHERE table_name = ? AND record_id = ?
                """,
                (status, status, Table(table).value, key),
            )
        return cursor.rowcount > 0

    def mark_synced(
        self, table: Table | str, key: str, updated_at: int | None = None
    ) -> bool:
        """Mark a record SYNCED and record it as the remote-confirmed base.

        Args:
            table: Table of the record.
            key: Record key.
            updated_at: Version that was pushed. When given, a record that
                was written again since then is left PENDING.

        Returns:
            True if the record was marked.
        """
        synced = SyncStatus.SYNCED.value
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE records
                SET sync_status = ?,
                    data = json_set(data, '$.sync_status', ?),
                    base_data = json_set(data, '$.sync_status', ?)
                WHERE table_name = ? AND record_id = ?
                  AND (? IS NULL OR updated_at = ?)
                """,
                (synced, synced, synced, Table(table).value, key, updated_at, updated_at),
            )
        return cursor.rowcount > 0

    def get_base(self, table: Table | str, key: str) -> Any | None:
        """Last version of a record known to match the remote store."""
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT base_data FROM records WHERE table_name = ? AND record_id = ?",
            (Table(table).value, key),
        ).fetchone()
        return self._decode(table, row["base_data"]) if row else None

    def set_base(self, table: Table | str, key: str, record: Any) -> bool:
        """Replace the remote-confirmed base of an existing record."""
        data = json.dumps(get_adapter(table).to_local(record))
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE records SET base_data = ?
                WHERE table_name = ? AND record_id = ?
                """,
                (data, Table(table).value, key),
            )
        return cursor.rowcount > 0

    # ==================== Queries ====================

    def _check_column(self, table: Table | str, column: str) -> None:
        if column not in get_adapter(table).fields:
            raise ValueError(f"{Table(table).value} has no column '{column}'")

    def list_children(self, table: Table | str, column: str, value: str) -> list[Any]:
        """Records of ``table`` whose ``column`` equals ``value``.

        Used to load line items by their parent id.
        """
        self._check_column(table, column)
        conn = self._ensure_connected()
        cursor = conn.execute(
            f"""
            SELECT data FROM records
            WHERE table_name = ? AND json_extract(data, '$.{column}') = ?
            ORDER BY record_id
            """,
            (Table(table).value, value),
        )
        return [self._decode(table, row["data"]) for row in cursor]

    def mark_children_synced(self, table: Table | str, column: str, value: str) -> int:
        """Mark every child of a parent SYNCED.

        Returns:
            Number of records updated.
        """
        self._check_column(table, column)
        synced = SyncStatus.SYNCED.value
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE records
                SET sync_status = ?,
                    data = json_set(data, '$.sync_status', ?),
                    base_data = json_set(data, '$.sync_status', ?)
                WHERE table_name = ? AND json_extract(data, '$.{column}') = ?
                """,
                (synced, synced, synced, Table(table).value, value),
            )
        return cursor.rowcount

    def list_by_tenant(self, table: Table | str, tenant_id: str) -> list[Any]:
        """All records of a table belonging to one tenant."""
        conn = self._ensure_connected()
        cursor = conn.execute(
            """
            SELECT data FROM records
            WHERE table_name = ? AND tenant_id = ?
            ORDER BY record_id
            """,
            (Table(table).value, tenant_id),
        )
        return [self._decode(table, row["data"]) for row in cursor]

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics.

        Returns:
            Dictionary with record counts per table and per sync status.
        """
        conn = self._ensure_connected()

        stats: dict[str, Any] = {}
        stats["records_by_table"] = {
            row[0]: row[1]
            for row in conn.execute(
                "SELECT table_name, COUNT(*) FROM records GROUP BY table_name"
            )
        }
        stats["records_by_status"] = {
            row[0]: row[1]
            for row in conn.execute(
                "SELECT sync_status, COUNT(*) FROM records GROUP BY sync_status"
            )
        }
        return stats
