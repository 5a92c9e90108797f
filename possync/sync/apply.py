"""Conflict-aware application of remote rows to the local store.

Both the realtime reconciler and the full pull funnel remote changes
through ``ChangeApplier`` so that the per-table conflict policy decides
every collision with a locally pending version.
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..adapters import get_adapter
from ..models import Operation, SyncStatus, Table
from .conflict import Resolution, merge_inventory, resolve

if TYPE_CHECKING:
    from ..store import LocalStore, MutationQueue

logger = logging.getLogger(__name__)


class ApplyOutcome(str, Enum):
    """What applying one remote change did to the local store."""

    APPLIED = "applied"
    DELETED = "deleted"
    MERGED = "merged"
    KEPT_LOCAL = "kept_local"
    STALE = "stale"
    ABSENT = "absent"


class ChangeApplier:
    """Applies remote upserts and deletes idempotently by primary key."""

    def __init__(self, store: "LocalStore", queue: "MutationQueue | None" = None):
        """Initialize the applier.

        Args:
            store: Local store to write into.
            queue: Mutation queue used to re-enqueue merged records that have
                no pending entry left. Optional.
        """
        self._store = store
        self._queue = queue

    @staticmethod
    def _has_unpushed_changes(record: Any) -> bool:
        return record.sync_status != SyncStatus.SYNCED.value

    def apply_upsert(self, table: Table | str, remote: Any) -> ApplyOutcome:
        """Apply a remote insert or update.

        A local copy without unpushed changes is a cache of the remote row:
        it is replaced unless the incoming row is older. A local copy with
        unpushed changes is a collision, settled by the conflict policy.
        """
        table = Table(table)
        adapter = get_adapter(table)
        key = adapter.key(remote)
        remote.sync_status = SyncStatus.SYNCED.value

        local = self._store.get_by_id(table, key)
        if local is None:
            self._store.upsert(table, remote)
            return ApplyOutcome.APPLIED

        if not self._has_unpushed_changes(local):
            if remote.updated_at < local.updated_at:
                logger.debug(f"Ignoring stale {table.value} {key}")
                return ApplyOutcome.STALE
            self._store.upsert(table, remote)
            return ApplyOutcome.APPLIED

        decision = resolve(table, local.updated_at, remote.updated_at)
        if decision == Resolution.KEEP_LOCAL:
            logger.debug(f"Keeping pending local {table.value} {key}")
            return ApplyOutcome.KEPT_LOCAL

        if decision == Resolution.KEEP_REMOTE:
            logger.info(f"Remote version of {table.value} {key} wins over pending local")
            self._store.upsert(table, remote)
            return ApplyOutcome.APPLIED

        base = self._store.get_base(table, key)
        merged = merge_inventory(local, remote, base)
        # A merge is a new local version, even when the local side was newer.
        merged.updated_at = max(merged.updated_at, local.updated_at + 1)
        self._store.upsert(table, merged)
        self._store.set_base(table, key, remote)
        if self._queue is not None and local.sync_status != SyncStatus.PENDING.value:
            self._queue.enqueue(table, key, Operation.UPDATE)
        logger.info(
            f"Merged {table.value} {key}: local={local.current_qty} "
            f"remote={remote.current_qty} -> {merged.current_qty}"
        )
        return ApplyOutcome.MERGED

    def apply_delete(
        self, table: Table | str, key: str, remote_updated_at: int = 0
    ) -> ApplyOutcome:
        """Apply a remote delete.

        Args:
            table: Table of the deleted row.
            key: Key recovered from the pre-delete snapshot.
            remote_updated_at: Timestamp of the deleted version, if known.
        """
        table = Table(table)
        local = self._store.get_by_id(table, key)
        if local is None:
            return ApplyOutcome.ABSENT

        if self._has_unpushed_changes(local):
            decision = resolve(table, local.updated_at, remote_updated_at)
            if decision == Resolution.KEEP_LOCAL:
                logger.info(f"Keeping pending local {table.value} {key} despite remote delete")
                return ApplyOutcome.KEPT_LOCAL

        self._store.delete_by_id(table, key)
        return ApplyOutcome.DELETED
