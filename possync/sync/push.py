"""Push synchronizer: drains the mutation queue into the remote store.

Each queue entry is pushed through the pusher registered for its table.
Success and failure are tracked per entry: a failing entry is retried on a
later cycle and never aborts the rest of its batch.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ..adapters import ADAPTERS, TableAdapter, get_adapter
from ..context import TenantContext
from ..errors import RemoteError, SyncError
from ..models import Operation, SyncStatus, Table

if TYPE_CHECKING:
    from ..remote import ConnectivityMonitor, RemoteStore
    from ..store import LocalStore, MutationQueue, MutationQueueEntry
    from .pull import Puller

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of one sync cycle."""

    pushed: int = 0
    failed: int = 0
    pruned: int = 0
    deferred: int = 0
    offline: bool = False
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "pushed": self.pushed,
            "failed": self.failed,
            "pruned": self.pruned,
            "deferred": self.deferred,
            "offline": self.offline,
            "timestamp": self.timestamp.isoformat(),
        }


class TablePusher:
    """Pushes one record per entry: a single upsert or delete call."""

    def __init__(self, adapter: TableAdapter, store: "LocalStore", remote: "RemoteStore"):
        self.adapter = adapter
        self.store = store
        self.remote = remote

    @property
    def table(self) -> str:
        return self.adapter.table.value

    @property
    def on_conflict(self) -> str | None:
        if self.adapter.composite:
            return ",".join(self.adapter.key_fields)
        return None

    def scoped_filters(self, ctx: TenantContext, filters: dict[str, str]) -> dict[str, str]:
        """Add the tenant filter, refusing keys that address another tenant."""
        scoped = dict(filters)
        for column, value in self.adapter.tenant_filters(ctx).items():
            if scoped.get(column, value) != value:
                raise SyncError(
                    f"{self.table} {filters} is outside tenant {ctx.tenant_id}"
                )
            scoped[column] = value
        return scoped

    def wire_row(self, ctx: TenantContext, record: Any) -> dict[str, Any]:
        if not record.tenant_id:
            record.tenant_id = ctx.tenant_id
        return self.adapter.to_wire(record, SyncStatus.SYNCED)

    def confirm(self, key: str, pushed: Any) -> bool:
        """Mark a pushed record SYNCED.

        A record rewritten while its push was in flight stays PENDING. The
        pushed copy is what the remote store now holds, so it becomes the
        base the next merge diffs against.

        Returns:
            False if the local record changed since ``pushed`` was read.
        """
        table = self.adapter.table
        if self.store.mark_synced(table, key, pushed.updated_at):
            return True
        if self.store.get_by_id(table, key) is None:
            return True
        pushed.sync_status = SyncStatus.SYNCED.value
        self.store.set_base(table, key, pushed)
        logger.debug(f"{self.table} {key} changed during push, keeping it pending")
        return False

    async def upsert(self, ctx: TenantContext, entry: "MutationQueueEntry") -> bool:
        record = self.store.get_by_id(self.adapter.table, entry.record_id)
        if record is None:
            logger.debug(f"{self.table} {entry.record_id} no longer exists locally")
            return True

        await self.remote.upsert(
            self.table, self.wire_row(ctx, record), on_conflict=self.on_conflict
        )
        return self.confirm(entry.record_id, record)

    async def delete(self, ctx: TenantContext, entry: "MutationQueueEntry") -> None:
        filters = self.scoped_filters(ctx, self.adapter.key_filters(entry.record_id))
        await self.remote.delete(self.table, filters)


class AggregatePusher(TablePusher):
    """Pushes a parent record together with its line items.

    With ``replace_children`` the remote items are deleted and the current
    local items re-inserted on every push, so edits never leave stale or
    duplicate lines behind. Without it, items are only written when the
    parent is first inserted and later updates touch the parent alone.
    """

    def __init__(
        self,
        adapter: TableAdapter,
        store: "LocalStore",
        remote: "RemoteStore",
        child_adapter: TableAdapter,
        parent_column: str,
        replace_children: bool,
    ):
        super().__init__(adapter, store, remote)
        self.child_adapter = child_adapter
        self.parent_column = parent_column
        self.replace_children = replace_children

    async def upsert(self, ctx: TenantContext, entry: "MutationQueueEntry") -> bool:
        parent = self.store.get_by_id(self.adapter.table, entry.record_id)
        if parent is None:
            logger.debug(f"{self.table} {entry.record_id} no longer exists locally")
            return True

        child_table = self.child_adapter.table
        await self.remote.upsert(self.table, self.wire_row(ctx, parent))

        write_children = self.replace_children or entry.operation == Operation.INSERT
        if self.replace_children:
            await self.remote.delete(
                child_table.value,
                self.scoped_filters(ctx, {self.parent_column: parent.id}),
            )

        if write_children:
            children = self.store.list_children(child_table, self.parent_column, parent.id)
            if children:
                rows = [
                    self.child_adapter.to_wire(
                        self._with_tenant(ctx, child), SyncStatus.SYNCED
                    )
                    for child in children
                ]
                await self.remote.upsert(child_table.value, rows)
            self.store.mark_children_synced(child_table, self.parent_column, parent.id)
            logger.debug(f"Pushed {len(children)} {child_table.value} for {parent.id}")

        return self.confirm(entry.record_id, parent)

    async def delete(self, ctx: TenantContext, entry: "MutationQueueEntry") -> None:
        await self.remote.delete(
            self.child_adapter.table.value,
            self.scoped_filters(ctx, {self.parent_column: entry.record_id}),
        )
        await super().delete(ctx, entry)

    @staticmethod
    def _with_tenant(ctx: TenantContext, record: Any) -> Any:
        if not record.tenant_id:
            record.tenant_id = ctx.tenant_id
        return record


def build_pushers(store: "LocalStore", remote: "RemoteStore") -> dict[Table, TablePusher]:
    """Create the pusher registry covering every synced table."""
    pushers: dict[Table, TablePusher] = {
        table: TablePusher(adapter, store, remote) for table, adapter in ADAPTERS.items()
    }
    pushers[Table.GOODS_RECEIVING] = AggregatePusher(
        get_adapter(Table.GOODS_RECEIVING),
        store,
        remote,
        child_adapter=get_adapter(Table.GOODS_RECEIVING_ITEMS),
        parent_column="receiving_id",
        replace_children=True,
    )
    pushers[Table.TRANSACTIONS] = AggregatePusher(
        get_adapter(Table.TRANSACTIONS),
        store,
        remote,
        child_adapter=get_adapter(Table.TRANSACTION_ITEMS),
        parent_column="transaction_id",
        replace_children=False,
    )
    return pushers


class PushSynchronizer:
    """Drains the mutation queue against the remote store in batches."""

    def __init__(
        self,
        queue: "MutationQueue",
        store: "LocalStore",
        remote: "RemoteStore",
        connectivity: "ConnectivityMonitor",
        batch_size: int = 50,
        max_retries: int = 3,
        puller: "Puller | None" = None,
    ):
        """Initialize the push synchronizer.

        Args:
            queue: Queue of pending local writes.
            store: Local store holding the records to push.
            remote: Remote store client.
            connectivity: Gate checked before each cycle.
            batch_size: Maximum entries per cycle.
            max_retries: Failed attempts after which an entry is dropped.
            puller: If set, a full pull runs after each online cycle.
        """
        self.queue = queue
        self.store = store
        self.remote = remote
        self.connectivity = connectivity
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.puller = puller
        self._pushers = build_pushers(store, remote)
        self._last_sync: datetime | None = None

    @staticmethod
    def _entry_tenant(entry: "MutationQueueEntry", record: Any | None) -> str | None:
        if record is not None and record.tenant_id:
            return record.tenant_id
        try:
            payload = json.loads(entry.payload)
        except ValueError:
            return None
        return payload.get("tenant_id") if isinstance(payload, dict) else None

    async def push_entry(self, ctx: TenantContext, entry: "MutationQueueEntry") -> bool:
        """Push a single queue entry. Raises on failure.

        Returns:
            False if the record was written again while its push was in
            flight, so the local version still differs from the remote one.
        """
        pusher = self._pushers[Table(entry.table)]
        if entry.operation == Operation.DELETE:
            await pusher.delete(ctx, entry)
            return True
        return await pusher.upsert(ctx, entry)

    def _requeue_changed(self, entry: "MutationQueueEntry") -> None:
        if self.queue.has_later_entry(entry.table, entry.record_id, entry.sequence_id):
            return
        logger.info(f"Re-queueing {entry.table} {entry.record_id}: changed during push")
        self.queue.enqueue(entry.table, entry.record_id, Operation.UPDATE, entry.payload)

    async def sync_cycle(self, ctx: TenantContext) -> SyncResult:
        """Run one cycle: push a batch, prune exhausted entries, optionally pull.

        Returns:
            SyncResult with per-entry counts. Offline cycles return zero
            counts without issuing any remote call.
        """
        if not await self.connectivity.is_online():
            logger.warning("Network offline, skipping sync")
            return SyncResult(offline=True)

        result = SyncResult()
        batch = self.queue.dequeue_batch(limit=self.batch_size)
        logger.debug(f"Sync started: {len(batch)} items in queue")

        for entry in batch:
            record = None
            if entry.operation != Operation.DELETE:
                record = self.store.get_by_id(entry.table, entry.record_id)
            tenant = self._entry_tenant(entry, record)
            if tenant and tenant != ctx.tenant_id:
                logger.debug(
                    f"Deferring #{entry.sequence_id}: belongs to tenant {tenant}"
                )
                result.deferred += 1
                continue

            try:
                logger.debug(
                    f"Syncing {entry.table}:{entry.operation.value} for {entry.record_id}"
                )
                confirmed = await self.push_entry(ctx, entry)
                self.queue.ack(entry.sequence_id)
                if not confirmed:
                    self._requeue_changed(entry)
                result.pushed += 1
            except RemoteError as e:
                if e.retryable:
                    logger.error(f"Sync failed for {entry.table} {entry.record_id}: {e}")
                    self.queue.mark_retry(entry.sequence_id)
                else:
                    logger.error(
                        f"Remote rejected {entry.table} {entry.record_id}, "
                        f"not retrying: {e}"
                    )
                    self.queue.mark_exhausted(entry.sequence_id, self.max_retries)
                result.failed += 1
            except Exception as e:
                logger.error(
                    f"Sync failed for {entry.table} {entry.record_id}: {e}",
                    exc_info=not isinstance(e, SyncError),
                )
                self.queue.mark_retry(entry.sequence_id)
                result.failed += 1

        result.pruned = len(self.prune_exhausted())
        logger.info(
            f"Sync completed: {result.pushed} pushed, {result.failed} failed, "
            f"{result.pruned} dropped"
        )

        if self.puller is not None:
            await self.puller.pull_all(ctx)

        self._last_sync = result.timestamp
        return result

    def prune_exhausted(self) -> list["MutationQueueEntry"]:
        """Drop exhausted entries and flag their records FAILED."""
        pruned = self.queue.prune_exhausted(self.max_retries)
        for entry in pruned:
            logger.warning(
                f"Dropping {entry.table}:{entry.operation.value} {entry.record_id} "
                f"after {entry.retry_count} failed attempts"
            )
            if entry.operation == Operation.DELETE:
                continue
            record = self.store.get_by_id(entry.table, entry.record_id)
            if record is not None and record.sync_status != SyncStatus.SYNCED.value:
                self.store.set_sync_status(entry.table, entry.record_id, SyncStatus.FAILED)
        return pruned

    @property
    def last_sync(self) -> datetime | None:
        """Get timestamp of last online cycle."""
        return self._last_sync

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with queue and store statistics.
        """
        return {
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "batch_size": self.batch_size,
            "max_retries": self.max_retries,
            "queue": self.queue.get_stats(self.max_retries),
            "store": self.store.get_stats(),
        }
