"""Local-first write path used by the POS screens.

Every write lands in the local store immediately, is recorded in the
mutation queue, and nudges the scheduler to push as soon as it can.
"""

import logging
from typing import TYPE_CHECKING, Any, Iterable

from .adapters import TableAdapter, get_adapter
from .context import TenantContext
from .models import Operation, SyncStatus, Table, now_millis

if TYPE_CHECKING:
    from .store import LocalStore, MutationQueue
    from .sync import SyncScheduler

logger = logging.getLogger(__name__)

# Parent tables whose line items are pushed together with the parent.
AGGREGATE_CHILDREN: dict[Table, tuple[Table, str]] = {
    Table.GOODS_RECEIVING: (Table.GOODS_RECEIVING_ITEMS, "receiving_id"),
    Table.TRANSACTIONS: (Table.TRANSACTION_ITEMS, "transaction_id"),
}

# Aggregates whose items are pushed only with the parent INSERT.
FIXED_CHILDREN = frozenset({Table.TRANSACTIONS})


def _contents(adapter: TableAdapter, records: Iterable[Any]) -> dict[str, dict[str, Any]]:
    """Line items by key, without their tenant and sync bookkeeping."""
    bookkeeping = ("tenant_id", "sync_status", "updated_at")
    return {
        adapter.key(r): {
            k: v for k, v in adapter.to_local(r).items() if k not in bookkeeping
        }
        for r in records
    }


class Repository:
    """Writes records for the active tenant and queues them for sync."""

    def __init__(
        self,
        store: "LocalStore",
        queue: "MutationQueue",
        scheduler: "SyncScheduler | None" = None,
    ):
        self.store = store
        self.queue = queue
        self.scheduler = scheduler

    def _stamp(self, ctx: TenantContext, record: Any, updated_at: int) -> Any:
        if record.tenant_id and record.tenant_id != ctx.tenant_id:
            raise ValueError(
                f"Record belongs to restaurant {record.tenant_id}, "
                f"not {ctx.tenant_id}"
            )
        record.tenant_id = ctx.tenant_id
        record.sync_status = SyncStatus.PENDING.value
        record.updated_at = updated_at
        return record

    def _request_sync(self) -> None:
        if self.scheduler is not None:
            self.scheduler.request_immediate()

    def get(self, table: Table | str, key: str) -> Any | None:
        return self.store.get_by_id(table, key)

    def list(self, ctx: TenantContext, table: Table | str) -> list[Any]:
        return self.store.list_by_tenant(table, ctx.tenant_id)

    def save(
        self,
        ctx: TenantContext,
        table: Table | str,
        record: Any,
        operation: Operation | str | None = None,
    ) -> Any:
        """Write a record locally and queue it for push.

        Args:
            ctx: Active tenant.
            table: Table the record belongs to.
            record: Model instance to write.
            operation: INSERT or UPDATE. Inferred from whether the record
                already exists locally when omitted.

        Returns:
            The stamped record as written.

        Raises:
            ValueError: If the record belongs to another tenant, or the
                operation is DELETE.
        """
        table = Table(table)
        adapter = get_adapter(table)
        key = adapter.key(record)

        if operation is None:
            exists = self.store.get_by_id(table, key) is not None
            operation = Operation.UPDATE if exists else Operation.INSERT
        operation = Operation(operation)
        if operation == Operation.DELETE:
            raise ValueError("Use delete() to remove records")

        self._stamp(ctx, record, now_millis())
        self.store.upsert(table, record)
        self.queue.enqueue(
            table, key, operation, {"id": key, "tenant_id": ctx.tenant_id}
        )
        logger.debug(f"Saved {table.value} {key} ({operation.value})")

        self._request_sync()
        return record

    def save_aggregate(
        self,
        ctx: TenantContext,
        table: Table | str,
        parent: Any,
        children: Iterable[Any],
        operation: Operation | str | None = None,
    ) -> Any:
        """Write a parent record together with its full set of line items.

        Local items of the parent that are not in ``children`` are removed.
        Only the parent is queued; its items travel with it on push.

        Raises:
            ValueError: If the table has no line items, or the items of a
                pushed transaction differ from the stored ones.
        """
        table = Table(table)
        if table not in AGGREGATE_CHILDREN:
            raise ValueError(f"{table.value} has no line items")
        child_table, parent_column = AGGREGATE_CHILDREN[table]
        child_adapter = get_adapter(child_table)

        children = list(children)
        for child in children:
            setattr(child, parent_column, parent.id)
        existing = self.store.list_children(child_table, parent_column, parent.id)

        if table in FIXED_CHILDREN and any(
            c.sync_status == SyncStatus.SYNCED.value for c in existing
        ):
            if _contents(child_adapter, children) != _contents(child_adapter, existing):
                raise ValueError(
                    f"Line items of {table.value} {parent.id} cannot change once pushed"
                )
            return self.save(ctx, table, parent, operation)

        updated_at = now_millis()
        keep: set[str] = set()
        for child in children:
            self._stamp(ctx, child, updated_at)
            self.store.upsert(child_table, child)
            keep.add(child_adapter.key(child))

        for stale in existing:
            stale_key = child_adapter.key(stale)
            if stale_key not in keep:
                self.store.delete_by_id(child_table, stale_key)

        return self.save(ctx, table, parent, operation)

    def delete(self, ctx: TenantContext, table: Table | str, key: str) -> bool:
        """Delete a record locally and queue the remote delete.

        Returns:
            True if a local record was removed.

        Raises:
            ValueError: If the record belongs to another tenant.
        """
        table = Table(table)
        existing = self.store.get_by_id(table, key)
        if existing is not None and existing.tenant_id and existing.tenant_id != ctx.tenant_id:
            raise ValueError(
                f"{table.value} {key} belongs to restaurant {existing.tenant_id}"
            )

        if table in AGGREGATE_CHILDREN:
            child_table, parent_column = AGGREGATE_CHILDREN[table]
            child_adapter = get_adapter(child_table)
            for child in self.store.list_children(child_table, parent_column, key):
                self.store.delete_by_id(child_table, child_adapter.key(child))

        removed = self.store.delete_by_id(table, key)
        self.queue.enqueue(
            table, key, Operation.DELETE, {"id": key, "tenant_id": ctx.tenant_id}
        )
        logger.debug(f"Deleted {table.value} {key}")

        self._request_sync()
        return removed
