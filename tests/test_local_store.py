"""Tests for the local record store."""

import pytest

from possync.errors import LocalStoreError
from possync.models import (
    GoodsReceivingItem,
    InventoryItem,
    Product,
    SyncStatus,
    Table,
)
from possync.store import LocalStore


def product(id="p1", name="Tea", status=SyncStatus.PENDING, updated_at=100, tenant="r1"):
    return Product(
        id=id, name=name, price=500, tenant_id=tenant,
        sync_status=status.value, updated_at=updated_at,
    )


class TestLocalStoreSchema:
    """Tests for database schema initialization."""

    def test_connect_creates_tables(self, store):
        """Test that connect() creates the records table."""
        tables = store._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
        assert "records" in [t[0] for t in tables]

    def test_connect_is_idempotent(self, store):
        """Test that calling connect() twice is harmless."""
        store.connect()
        assert store.get_by_id(Table.PRODUCTS, "p1") is None

    def test_closed_store_reconnects(self, tmp_path):
        """Test operations after close reopen the database."""
        s = LocalStore(tmp_path / "db" / "store.db")
        s.upsert(Table.PRODUCTS, product())
        s.close()
        assert s.get_by_id(Table.PRODUCTS, "p1").name == "Tea"
        s.close()


class TestRecordOperations:
    """Tests for get/upsert/delete."""

    def test_upsert_and_get(self, store):
        """Test a written record reads back equal."""
        p = product()
        store.upsert(Table.PRODUCTS, p)
        assert store.get_by_id(Table.PRODUCTS, "p1") == p

    def test_upsert_replaces(self, store):
        """Test writing the same key replaces the record."""
        store.upsert(Table.PRODUCTS, product(name="Tea"))
        store.upsert(Table.PRODUCTS, product(name="Coffee", updated_at=200))

        got = store.get_by_id(Table.PRODUCTS, "p1")
        assert got.name == "Coffee"
        assert got.updated_at == 200

    def test_tables_are_separate(self, store):
        """Test the same id in two tables does not collide."""
        store.upsert(Table.PRODUCTS, product())
        assert store.get_by_id(Table.VENDORS, "p1") is None

    def test_composite_key(self, store):
        """Test inventory is addressed by its encoded key."""
        store.upsert(Table.INVENTORY, InventoryItem(product_id="p1", current_qty=3))
        assert store.get_by_id(Table.INVENTORY, "p1:").current_qty == 3

    def test_delete(self, store):
        """Test delete_by_id reports whether something was removed."""
        store.upsert(Table.PRODUCTS, product())
        assert store.delete_by_id(Table.PRODUCTS, "p1") is True
        assert store.delete_by_id(Table.PRODUCTS, "p1") is False
        assert store.get_by_id(Table.PRODUCTS, "p1") is None

    def test_sqlite_errors_wrapped(self, store):
        """Test SQLite failures surface as LocalStoreError."""
        store._conn.execute("DROP TABLE records")
        with pytest.raises(LocalStoreError):
            store.upsert(Table.PRODUCTS, product())


class TestSyncState:
    """Tests for status and base tracking."""

    def test_set_sync_status(self, store):
        """Test status changes are reflected in the record."""
        store.upsert(Table.PRODUCTS, product())
        assert store.set_sync_status(Table.PRODUCTS, "p1", SyncStatus.FAILED)
        assert store.get_by_id(Table.PRODUCTS, "p1").sync_status == "FAILED"

    def test_mark_synced_sets_base(self, store):
        """Test marking synced records the base version."""
        store.upsert(Table.PRODUCTS, product())
        assert store.get_base(Table.PRODUCTS, "p1") is None

        assert store.mark_synced(Table.PRODUCTS, "p1")

        assert store.get_by_id(Table.PRODUCTS, "p1").sync_status == "SYNCED"
        assert store.get_base(Table.PRODUCTS, "p1").name == "Tea"

    def test_mark_synced_skips_newer_write(self, store):
        """Test a record rewritten after the push stays pending."""
        store.upsert(Table.PRODUCTS, product(updated_at=100))
        store.upsert(Table.PRODUCTS, product(name="Coffee", updated_at=200))

        assert store.mark_synced(Table.PRODUCTS, "p1", updated_at=100) is False
        assert store.get_by_id(Table.PRODUCTS, "p1").sync_status == "PENDING"

    def test_pending_write_keeps_base(self, store):
        """Test a pending write does not replace the confirmed base."""
        store.upsert(Table.PRODUCTS, product(status=SyncStatus.SYNCED))
        store.upsert(Table.PRODUCTS, product(name="Coffee", updated_at=200))

        assert store.get_base(Table.PRODUCTS, "p1").name == "Tea"

    def test_set_base(self, store):
        """Test the base can be replaced explicitly."""
        store.upsert(Table.INVENTORY, InventoryItem(product_id="p1", current_qty=3))
        store.set_base(Table.INVENTORY, "p1:", InventoryItem(product_id="p1", current_qty=9))
        assert store.get_base(Table.INVENTORY, "p1:").current_qty == 9


class TestQueries:
    """Tests for child and tenant queries."""

    def _item(self, id, receiving_id):
        return GoodsReceivingItem(
            id=id, receiving_id=receiving_id, product_id="p1", qty=1,
            cost_per_unit=10, tenant_id="r1",
        )

    def test_list_children(self, store):
        """Test children are found by their parent column."""
        store.upsert(Table.GOODS_RECEIVING_ITEMS, self._item("i1", "g1"))
        store.upsert(Table.GOODS_RECEIVING_ITEMS, self._item("i2", "g1"))
        store.upsert(Table.GOODS_RECEIVING_ITEMS, self._item("i3", "g2"))

        children = store.list_children(Table.GOODS_RECEIVING_ITEMS, "receiving_id", "g1")

        assert [c.id for c in children] == ["i1", "i2"]

    def test_list_children_rejects_unknown_column(self, store):
        """Test the column must belong to the table."""
        with pytest.raises(ValueError):
            store.list_children(Table.GOODS_RECEIVING_ITEMS, "1=1 OR x", "g1")

    def test_mark_children_synced(self, store):
        """Test all children of a parent are marked synced."""
        store.upsert(Table.GOODS_RECEIVING_ITEMS, self._item("i1", "g1"))
        store.upsert(Table.GOODS_RECEIVING_ITEMS, self._item("i2", "g2"))

        assert store.mark_children_synced(Table.GOODS_RECEIVING_ITEMS, "receiving_id", "g1") == 1
        assert store.get_by_id(Table.GOODS_RECEIVING_ITEMS, "i1").sync_status == "SYNCED"
        assert store.get_by_id(Table.GOODS_RECEIVING_ITEMS, "i2").sync_status == "PENDING"

    def test_list_by_tenant(self, store):
        """Test tenant scoping of listings."""
        store.upsert(Table.PRODUCTS, product(id="p1", tenant="r1"))
        store.upsert(Table.PRODUCTS, product(id="p2", tenant="r2"))

        assert [p.id for p in store.list_by_tenant(Table.PRODUCTS, "r1")] == ["p1"]

    def test_get_stats(self, store):
        """Test statistics by table and status."""
        store.upsert(Table.PRODUCTS, product(id="p1"))
        store.upsert(Table.PRODUCTS, product(id="p2", status=SyncStatus.SYNCED))
        store.upsert(Table.INVENTORY, InventoryItem(product_id="p1"))

        stats = store.get_stats()

        assert stats["records_by_table"] == {"inventory": 1, "products": 2}
        assert stats["records_by_status"] == {"PENDING": 2, "SYNCED": 1}
