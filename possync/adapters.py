"""Typed per-table adapters between local entities and wire rows.

Each synced table has exactly one ``TableAdapter`` in ``ADAPTERS``. The push
synchronizer, the full pull and the realtime reconciler look adapters up by
``Table`` instead of branching on table names.

Wire rows use snake_case keys. Local entities use the same names, except
``tenant_id``, which travels as ``restaurant_id`` (or as ``id`` on the
``restaurants`` table, where the row *is* the tenant).
"""

import dataclasses
from typing import Any

from .context import TenantContext
from .errors import DecodeError
from .models import (
    CashWithdrawal,
    Category,
    GeneralLedgerEntry,
    GoodsReceiving,
    GoodsReceivingItem,
    InventoryItem,
    Product,
    ProductComponent,
    Restaurant,
    SyncStatus,
    Table,
    Transaction,
    TransactionItem,
    User,
    Variant,
    Vendor,
)

INVENTORY_KEY_SEPARATOR = ":"


def encode_inventory_key(product_id: str, variant_id: str = "") -> str:
    """Encode an inventory composite key as ``"product_id:variant_id"``.

    Raises:
        ValueError: If the product id contains the separator, since the
            key would not decode back to the same pair.
    """
    if INVENTORY_KEY_SEPARATOR in product_id:
        raise ValueError(f"product_id may not contain '{INVENTORY_KEY_SEPARATOR}': {product_id!r}")
    return f"{product_id}{INVENTORY_KEY_SEPARATOR}{variant_id or ''}"


def decode_inventory_key(key: str) -> tuple[str, str]:
    """Split ``"product_id:variant_id"`` into its parts.

    A missing separator or an empty tail yields ``variant_id == ""``.
    """
    product_id, _, variant_id = key.partition(INVENTORY_KEY_SEPARATOR)
    return product_id, variant_id


class TableAdapter:
    """Maps one table between its entity dataclass and its wire row."""

    def __init__(
        self,
        table: Table,
        entity: type,
        fields: tuple[str, ...],
        key_fields: tuple[str, ...] = ("id",),
        tenant_column: str = "restaurant_id",
    ):
        """Initialize the adapter.

        Args:
            table: Table this adapter serves.
            entity: Dataclass type of local records.
            fields: Payload columns, excluding the tenant, sync status and
                timestamp columns which every row carries.
            key_fields: Primary key columns, in key-encoding order.
            tenant_column: Wire column holding the tenant id. Also the
                column realtime subscriptions filter on.
        """
        self.table = table
        self.entity = entity
        self.key_fields = key_fields
        self.tenant_column = tenant_column
        self.fields = tuple(dict.fromkeys(key_fields + fields))
        self._entity_fields = {f.name for f in dataclasses.fields(entity)}

    @property
    def composite(self) -> bool:
        return len(self.key_fields) > 1

    def key(self, record: Any) -> str:
        """String key used to address the record in the queue and store."""
        if self.composite:
            return encode_inventory_key(record.product_id, record.variant_id)
        return record.id

    def key_filters(self, key: str) -> dict[str, str]:
        """Remote equality filters selecting the record with ``key``."""
        if self.composite:
            product_id, variant_id = decode_inventory_key(key)
            return {"product_id": product_id, "variant_id": variant_id}
        return {"id": key}

    def tenant_filters(self, ctx: TenantContext) -> dict[str, str]:
        """Remote equality filters scoping a query to the session tenant."""
        return {self.tenant_column: ctx.tenant_id}

    def to_wire(self, record: Any, sync_status: SyncStatus | None = None) -> dict[str, Any]:
        """Serialize a local record to its wire row.

        Args:
            record: Local entity.
            sync_status: Status to stamp on the row. Defaults to the
                record's own status.
        """
        row = {name: getattr(record, name) for name in self.fields}
        if self.tenant_column != "id":
            row[self.tenant_column] = record.tenant_id
        status = sync_status if sync_status is not None else record.sync_status
        row["sync_status"] = SyncStatus(status).value
        row["updated_at"] = record.updated_at
        return row

    def from_wire(self, row: Any) -> Any:
        """Decode a wire row into a local record.

        Unknown keys are ignored. Rows decoded from the remote side are
        considered confirmed, so they default to ``SYNCED``.

        Raises:
            DecodeError: If the row is not a mapping or lacks required columns.
        """
        if not isinstance(row, dict):
            raise DecodeError(f"{self.table.value}: expected an object, got {type(row).__name__}")

        values: dict[str, Any] = {
            name: row[name] for name in self.fields if name in row
        }
        for name in self.key_fields:
            if name == "variant_id" and values.get(name) is None:
                values[name] = ""
            elif not values.get(name):
                raise DecodeError(f"{self.table.value}: missing key column '{name}'")

        values["tenant_id"] = row.get(self.tenant_column) or ""
        values["sync_status"] = row.get("sync_status") or SyncStatus.SYNCED.value
        try:
            values["updated_at"] = int(row.get("updated_at") or 0)
            return self.entity(**values)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"{self.table.value}: {e}") from e

    def to_local(self, record: Any) -> dict[str, Any]:
        """Plain-dict form of a record for local persistence."""
        return dataclasses.asdict(record)

    def from_local(self, data: dict[str, Any]) -> Any:
        """Rebuild a record from its persisted dict form."""
        return self.entity(**{k: v for k, v in data.items() if k in self._entity_fields})


ADAPTERS: dict[Table, TableAdapter] = {
    adapter.table: adapter
    for adapter in (
        TableAdapter(
            Table.CATEGORIES, Category, ("name", "sort_order", "category_type")
        ),
        TableAdapter(
            Table.PRODUCTS,
            Product,
            (
                "category_id",
                "name",
                "description",
                "price",
                "image_path",
                "is_active",
                "product_type",
            ),
        ),
        TableAdapter(
            Table.VARIANTS, Variant, ("product_id", "name", "price_adjustment")
        ),
        TableAdapter(Table.VENDORS, Vendor, ("name", "phone", "address")),
        TableAdapter(
            Table.INVENTORY,
            InventoryItem,
            ("current_qty", "min_qty"),
            key_fields=("product_id", "variant_id"),
        ),
        TableAdapter(
            Table.GOODS_RECEIVING, GoodsReceiving, ("vendor_id", "date", "notes")
        ),
        TableAdapter(
            Table.GOODS_RECEIVING_ITEMS,
            GoodsReceivingItem,
            (
                "receiving_id",
                "product_id",
                "variant_id",
                "qty",
                "cost_per_unit",
                "unit",
            ),
        ),
        TableAdapter(
            Table.TRANSACTIONS,
            Transaction,
            ("user_id", "date", "total", "payment_method", "status"),
        ),
        TableAdapter(
            Table.TRANSACTION_ITEMS,
            TransactionItem,
            (
                "transaction_id",
                "product_id",
                "variant_id",
                "product_name",
                "variant_name",
                "qty",
                "unit_price",
                "subtotal",
            ),
        ),
        TableAdapter(
            Table.PRODUCT_COMPONENTS,
            ProductComponent,
            (
                "parent_product_id",
                "component_product_id",
                "component_variant_id",
                "required_qty",
                "unit",
                "sort_order",
            ),
        ),
        TableAdapter(
            Table.CASH_WITHDRAWALS,
            CashWithdrawal,
            ("user_id", "amount", "reason", "date"),
        ),
        TableAdapter(
            Table.GENERAL_LEDGER,
            GeneralLedgerEntry,
            ("type", "amount", "reference_id", "description", "date", "user_id"),
        ),
        TableAdapter(
            Table.USERS,
            User,
            (
                "name",
                "email",
                "phone",
                "pin_hash",
                "pin_salt",
                "role",
                "feature_access",
                "is_active",
            ),
        ),
        TableAdapter(
            Table.RESTAURANTS,
            Restaurant,
            ("name", "owner_email", "owner_phone", "is_active", "created_at"),
            tenant_column="id",
        ),
    )
}


def get_adapter(table: Table | str) -> TableAdapter:
    """Look up the adapter for a table.

    Raises:
        ValueError: If the table is not a synced table.
    """
    return ADAPTERS[Table(table)]
