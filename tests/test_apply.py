"""Tests for conflict-aware application of remote changes."""

import pytest

from possync.models import (
    InventoryItem,
    Operation,
    SyncStatus,
    Table,
    Transaction,
    Vendor,
)
from possync.sync import ApplyOutcome, ChangeApplier


@pytest.fixture
def applier(store, queue):
    """Create an applier that can re-enqueue merges."""
    return ChangeApplier(store, queue)


def vendor(name="Acme", status=SyncStatus.SYNCED, updated_at=100):
    return Vendor(
        id="v1", name=name, tenant_id="r1", sync_status=status.value, updated_at=updated_at
    )


def stock(qty, status=SyncStatus.SYNCED, updated_at=100, min_qty=0):
    return InventoryItem(
        product_id="p1", current_qty=qty, min_qty=min_qty, tenant_id="r1",
        sync_status=status.value, updated_at=updated_at,
    )


class TestApplyUpsert:
    """Tests for apply_upsert()."""

    def test_new_record_inserted(self, applier, store):
        """Test a remote row without local copy is stored as synced."""
        remote = vendor(status=SyncStatus.PENDING)

        assert applier.apply_upsert(Table.VENDORS, remote) == ApplyOutcome.APPLIED

        local = store.get_by_id(Table.VENDORS, "v1")
        assert local.sync_status == "SYNCED"
        assert store.get_base(Table.VENDORS, "v1") == local

    def test_idempotent(self, applier, store):
        """Test applying the same change twice yields the same state."""
        applier.apply_upsert(Table.VENDORS, vendor(name="A", updated_at=200))
        first = store.get_by_id(Table.VENDORS, "v1")
        applier.apply_upsert(Table.VENDORS, vendor(name="A", updated_at=200))
        assert store.get_by_id(Table.VENDORS, "v1") == first

    def test_stale_remote_ignored_for_synced_local(self, applier, store):
        """Test an older remote row does not roll back a synced record."""
        store.upsert(Table.VENDORS, vendor(name="New", updated_at=200))

        outcome = applier.apply_upsert(Table.VENDORS, vendor(name="Old", updated_at=100))

        assert outcome == ApplyOutcome.STALE
        assert store.get_by_id(Table.VENDORS, "v1").name == "New"

    def test_pending_local_newer_kept(self, applier, store):
        """Test last-writer-wins keeps a newer pending local edit."""
        store.upsert(Table.VENDORS, vendor(name="Local", status=SyncStatus.PENDING, updated_at=300))

        outcome = applier.apply_upsert(Table.VENDORS, vendor(name="Remote", updated_at=200))

        assert outcome == ApplyOutcome.KEPT_LOCAL
        local = store.get_by_id(Table.VENDORS, "v1")
        assert local.name == "Local"
        assert local.sync_status == "PENDING"

    def test_pending_local_older_replaced(self, applier, store):
        """Test last-writer-wins takes a newer remote row."""
        store.upsert(Table.VENDORS, vendor(name="Local", status=SyncStatus.PENDING, updated_at=100))

        outcome = applier.apply_upsert(Table.VENDORS, vendor(name="Remote", updated_at=200))

        assert outcome == ApplyOutcome.APPLIED
        assert store.get_by_id(Table.VENDORS, "v1").name == "Remote"

    def test_pending_transaction_never_overwritten(self, applier, store):
        """Test a pending local transaction survives a newer remote row."""
        local = Transaction(
            id="t1", user_id="u1", date=1, total=1000, payment_method="cash",
            status="done", tenant_id="r1", updated_at=100,
        )
        store.upsert(Table.TRANSACTIONS, local)
        remote = Transaction(
            id="t1", user_id="u1", date=1, total=0, payment_method="card",
            status="void", tenant_id="r1", sync_status="SYNCED", updated_at=999,
        )

        assert applier.apply_upsert(Table.TRANSACTIONS, remote) == ApplyOutcome.KEPT_LOCAL
        assert store.get_by_id(Table.TRANSACTIONS, "t1").total == 1000


class TestInventoryMerge:
    """Tests for the inventory merge path."""

    def test_concurrent_deltas_combine(self, applier, store):
        """Test local and remote stock changes both survive."""
        store.upsert(Table.INVENTORY, stock(10))  # synced base
        store.upsert(Table.INVENTORY, stock(8, SyncStatus.PENDING, updated_at=200))

        outcome = applier.apply_upsert(Table.INVENTORY, stock(7, updated_at=150))

        assert outcome == ApplyOutcome.MERGED
        merged = store.get_by_id(Table.INVENTORY, "p1:")
        assert merged.current_qty == 5
        assert merged.sync_status == "PENDING"
        assert store.get_base(Table.INVENTORY, "p1:").current_qty == 7

    def test_merge_idempotent(self, applier, store):
        """Test re-applying the same remote row does not double count."""
        store.upsert(Table.INVENTORY, stock(10))
        store.upsert(Table.INVENTORY, stock(8, SyncStatus.PENDING, updated_at=200))

        applier.apply_upsert(Table.INVENTORY, stock(7, updated_at=150))
        applier.apply_upsert(Table.INVENTORY, stock(7, updated_at=150))

        assert store.get_by_id(Table.INVENTORY, "p1:").current_qty == 5

    def test_failed_record_requeued(self, applier, store, queue):
        """Test a merged record without a pending entry is queued again."""
        store.upsert(Table.INVENTORY, stock(4, SyncStatus.FAILED, updated_at=200))

        applier.apply_upsert(Table.INVENTORY, stock(6, updated_at=150))

        [entry] = queue.dequeue_batch()
        assert (entry.table, entry.record_id, entry.operation) == (
            "inventory", "p1:", Operation.UPDATE,
        )

    def test_pending_record_not_requeued(self, applier, store, queue):
        """Test a pending record relies on its existing queue entry."""
        store.upsert(Table.INVENTORY, stock(4, SyncStatus.PENDING, updated_at=200))

        applier.apply_upsert(Table.INVENTORY, stock(6, updated_at=150))

        assert queue.pending_count() == 0


class TestApplyDelete:
    """Tests for apply_delete()."""

    def test_absent(self, applier):
        """Test deleting an unknown record."""
        assert applier.apply_delete(Table.VENDORS, "v1") == ApplyOutcome.ABSENT

    def test_synced_record_deleted(self, applier, store):
        """Test a synced record follows the remote delete."""
        store.upsert(Table.VENDORS, vendor())

        assert applier.apply_delete(Table.VENDORS, "v1") == ApplyOutcome.DELETED
        assert store.get_by_id(Table.VENDORS, "v1") is None
        assert applier.apply_delete(Table.VENDORS, "v1") == ApplyOutcome.ABSENT

    def test_pending_transaction_survives_delete(self, applier, store):
        """Test a pending local transaction is kept despite a remote delete."""
        store.upsert(
            Table.TRANSACTIONS,
            Transaction(
                id="t1", user_id="u1", date=1, total=1, payment_method="cash",
                status="done", tenant_id="r1", updated_at=100,
            ),
        )

        assert applier.apply_delete(Table.TRANSACTIONS, "t1", 500) == ApplyOutcome.KEPT_LOCAL
        assert store.get_by_id(Table.TRANSACTIONS, "t1") is not None

    def test_pending_edit_newer_than_delete_kept(self, applier, store):
        """Test a newer pending edit wins over an older remote delete."""
        store.upsert(Table.VENDORS, vendor(status=SyncStatus.PENDING, updated_at=300))

        assert applier.apply_delete(Table.VENDORS, "v1", 200) == ApplyOutcome.KEPT_LOCAL

    def test_pending_edit_older_than_delete_removed(self, applier, store):
        """Test an older pending edit gives way to a newer remote delete."""
        store.upsert(Table.VENDORS, vendor(status=SyncStatus.PENDING, updated_at=100))

        assert applier.apply_delete(Table.VENDORS, "v1", 200) == ApplyOutcome.DELETED
