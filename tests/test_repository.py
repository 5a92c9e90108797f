"""Tests for the local-first write path."""

import json
from unittest.mock import MagicMock

import pytest

from possync.models import (
    GoodsReceiving,
    GoodsReceivingItem,
    InventoryItem,
    Operation,
    Product,
    Table,
    Transaction,
    TransactionItem,
)
from possync.repository import Repository
from possync.sync import PushSynchronizer


@pytest.fixture
def scheduler():
    """Mock scheduler recording sync requests."""
    return MagicMock()


@pytest.fixture
def repo(store, queue, scheduler):
    """Create a repository over in-memory stores."""
    return Repository(store, queue, scheduler)


def receiving_item(item_id, qty=1):
    return GoodsReceivingItem(
        id=item_id, receiving_id="", product_id="p1", qty=qty, cost_per_unit=100
    )


class TestSave:
    """Tests for Repository.save."""

    def test_save_stamps_and_enqueues(self, repo, store, queue, scheduler, ctx):
        """Test a new record is stamped, stored and queued as INSERT."""
        product = Product(id="p1", name="Tea", price=500)

        repo.save(ctx, Table.PRODUCTS, product)

        stored = store.get_by_id(Table.PRODUCTS, "p1")
        assert stored.tenant_id == "r1"
        assert stored.sync_status == "PENDING"
        assert stored.updated_at > 0

        [entry] = queue.dequeue_batch()
        assert entry.table == "products"
        assert entry.operation == Operation.INSERT
        assert json.loads(entry.payload) == {"id": "p1", "tenant_id": "r1"}
        scheduler.request_immediate.assert_called_once()

    def test_existing_record_is_update(self, repo, queue, ctx):
        """Test saving an existing record queues an UPDATE."""
        repo.save(ctx, Table.PRODUCTS, Product(id="p1", name="Tea", price=500))
        repo.save(ctx, Table.PRODUCTS, Product(id="p1", name="Tea", price=600))

        ops = [e.operation for e in queue.dequeue_batch()]
        assert ops == [Operation.INSERT, Operation.UPDATE]

    def test_composite_key(self, repo, store, queue, ctx):
        """Test inventory records are queued under their encoded key."""
        repo.save(ctx, Table.INVENTORY, InventoryItem(product_id="p1", current_qty=3))

        assert store.get_by_id(Table.INVENTORY, "p1:").current_qty == 3
        assert queue.dequeue_batch()[0].record_id == "p1:"

    def test_foreign_tenant_rejected(self, repo, queue, ctx):
        """Test records of another tenant cannot be written."""
        product = Product(id="p1", name="Tea", price=500, tenant_id="r2")

        with pytest.raises(ValueError):
            repo.save(ctx, Table.PRODUCTS, product)
        assert queue.pending_count() == 0

    def test_delete_operation_rejected(self, repo, ctx):
        """Test save refuses the DELETE operation."""
        with pytest.raises(ValueError):
            repo.save(ctx, Table.PRODUCTS, Product(id="p1", name="Tea", price=1), "DELETE")

    def test_without_scheduler(self, store, queue, ctx):
        """Test writes work when no scheduler is attached."""
        repo = Repository(store, queue)
        repo.save(ctx, Table.PRODUCTS, Product(id="p1", name="Tea", price=500))
        assert queue.pending_count() == 1

    def test_list_is_tenant_scoped(self, repo, store, ctx):
        """Test list returns only the tenant's records."""
        repo.save(ctx, Table.PRODUCTS, Product(id="p1", name="Tea", price=500))
        store.upsert(Table.PRODUCTS, Product(id="p2", name="Jus", price=1, tenant_id="r2"))

        assert [p.id for p in repo.list(ctx, Table.PRODUCTS)] == ["p1"]
        assert repo.get(Table.PRODUCTS, "p2").tenant_id == "r2"


class TestSaveAggregate:
    """Tests for aggregate writes."""

    def test_children_written_and_parent_queued(self, repo, store, queue, ctx):
        """Test line items are stored locally and only the parent is queued."""
        parent = GoodsReceiving(id="g1", date=1)

        repo.save_aggregate(
            ctx, Table.GOODS_RECEIVING, parent, [receiving_item("i1"), receiving_item("i2")]
        )

        items = store.list_children(Table.GOODS_RECEIVING_ITEMS, "receiving_id", "g1")
        assert sorted(i.id for i in items) == ["i1", "i2"]
        assert all(i.tenant_id == "r1" for i in items)
        assert [e.table for e in queue.dequeue_batch()] == ["goods_receiving"]

    def test_missing_children_removed(self, repo, store, ctx):
        """Test resaving with fewer items drops the removed ones locally."""
        parent = GoodsReceiving(id="g1", date=1)
        repo.save_aggregate(
            ctx, Table.GOODS_RECEIVING, parent, [receiving_item("i1"), receiving_item("i2")]
        )

        repo.save_aggregate(ctx, Table.GOODS_RECEIVING, parent, [receiving_item("i2", qty=5)])

        items = store.list_children(Table.GOODS_RECEIVING_ITEMS, "receiving_id", "g1")
        assert [(i.id, i.qty) for i in items] == [("i2", 5)]

    def test_non_aggregate_rejected(self, repo, ctx):
        """Test tables without line items are refused."""
        with pytest.raises(ValueError):
            repo.save_aggregate(ctx, Table.PRODUCTS, Product(id="p1", name="T", price=1), [])


class TestDelete:
    """Tests for Repository.delete."""

    def test_delete_queues_delete(self, repo, store, queue, scheduler, ctx):
        """Test delete removes locally and queues a DELETE."""
        repo.save(ctx, Table.PRODUCTS, Product(id="p1", name="Tea", price=500))

        assert repo.delete(ctx, Table.PRODUCTS, "p1") is True

        assert store.get_by_id(Table.PRODUCTS, "p1") is None
        last = queue.dequeue_batch()[-1]
        assert last.operation == Operation.DELETE
        assert json.loads(last.payload)["tenant_id"] == "r1"
        assert scheduler.request_immediate.call_count == 2

    def test_delete_removes_children(self, repo, store, ctx):
        """Test deleting an aggregate removes its local items."""
        repo.save_aggregate(
            ctx, Table.GOODS_RECEIVING, GoodsReceiving(id="g1", date=1), [receiving_item("i1")]
        )

        repo.delete(ctx, Table.GOODS_RECEIVING, "g1")

        assert store.list_children(Table.GOODS_RECEIVING_ITEMS, "receiving_id", "g1") == []

    def test_delete_missing_still_queued(self, repo, queue, ctx):
        """Test deleting an unknown record still queues the remote delete."""
        assert repo.delete(ctx, Table.VENDORS, "v9") is False
        assert queue.pending_count() == 1

    def test_delete_foreign_tenant_rejected(self, repo, store, queue, ctx):
        """Test records of another tenant cannot be deleted."""
        store.upsert(Table.PRODUCTS, Product(id="p2", name="Jus", price=1, tenant_id="r2"))

        with pytest.raises(ValueError):
            repo.delete(ctx, Table.PRODUCTS, "p2")
        assert store.get_by_id(Table.PRODUCTS, "p2") is not None
        assert queue.pending_count() == 0


def transaction(status="PAID"):
    return Transaction(
        id="t1", user_id="u1", date=1, total=1000, payment_method="cash", status=status
    )


def transaction_item(qty=2):
    return TransactionItem(
        id="ti1", transaction_id="", product_id="p1", product_name="Tea",
        qty=qty, unit_price=500, subtotal=500 * qty,
    )


class TestTransactionItems:
    """Tests for line items of transactions, which are fixed once pushed."""

    @pytest.fixture
    def synchronizer(self, queue, store, remote, connectivity):
        return PushSynchronizer(queue, store, remote, connectivity)

    @pytest.mark.asyncio
    async def test_void_after_push_keeps_items_synced(
        self, repo, store, queue, remote, synchronizer, ctx
    ):
        """Test voiding a pushed transaction leaves its items synced."""
        repo.save_aggregate(ctx, Table.TRANSACTIONS, transaction(), [transaction_item()])
        await synchronizer.sync_cycle(ctx)

        repo.save_aggregate(
            ctx, Table.TRANSACTIONS, transaction("VOIDED"), [transaction_item()]
        )
        await synchronizer.sync_cycle(ctx)

        item = store.get_by_id(Table.TRANSACTION_ITEMS, "ti1")
        assert item.sync_status == "SYNCED"
        assert store.get_by_id(Table.TRANSACTIONS, "t1").sync_status == "SYNCED"
        assert [r["status"] for r in remote.rows("transactions")] == ["VOIDED"]
        assert queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_pushed_items_cannot_change(self, repo, store, synchronizer, ctx):
        """Test editing the items of a pushed transaction is refused."""
        repo.save_aggregate(ctx, Table.TRANSACTIONS, transaction(), [transaction_item()])
        await synchronizer.sync_cycle(ctx)

        with pytest.raises(ValueError):
            repo.save_aggregate(
                ctx, Table.TRANSACTIONS, transaction(), [transaction_item(qty=3)]
            )
        assert store.get_by_id(Table.TRANSACTION_ITEMS, "ti1").qty == 2

    def test_unpushed_items_can_change(self, repo, store, ctx):
        """Test items may still be edited before the first push."""
        repo.save_aggregate(ctx, Table.TRANSACTIONS, transaction(), [transaction_item()])
        repo.save_aggregate(ctx, Table.TRANSACTIONS, transaction(), [transaction_item(qty=3)])

        assert store.get_by_id(Table.TRANSACTION_ITEMS, "ti1").qty == 3
