"""Synced entities and the enums shared by the sync engine."""

import time
from dataclasses import dataclass
from enum import Enum


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class SyncStatus(str, Enum):
    """Per-record replication state."""

    PENDING = "PENDING"
    SYNCING = "SYNCING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"
    CONFLICT = "CONFLICT"


class Operation(str, Enum):
    """Kind of local write carried by a queue entry."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class Table(str, Enum):
    """Remote table names, which double as queue and topic identifiers."""

    CATEGORIES = "categories"
    PRODUCTS = "products"
    VARIANTS = "variants"
    VENDORS = "vendors"
    INVENTORY = "inventory"
    GOODS_RECEIVING = "goods_receiving"
    GOODS_RECEIVING_ITEMS = "goods_receiving_items"
    TRANSACTIONS = "transactions"
    TRANSACTION_ITEMS = "transaction_items"
    PRODUCT_COMPONENTS = "product_components"
    CASH_WITHDRAWALS = "cash_withdrawals"
    GENERAL_LEDGER = "general_ledger"
    USERS = "users"
    RESTAURANTS = "restaurants"


@dataclass
class Category:
    id: str
    name: str
    sort_order: int = 0
    category_type: str | None = None
    tenant_id: str = ""
    sync_status: str = SyncStatus.PENDING.value
    updated_at: int = 0


@dataclass
class Product:
    id: str
    name: str
    price: int
    category_id: str | None = None
    description: str | None = None
    image_path: str | None = None
    is_active: bool = True
    product_type: str | None = None
    tenant_id: str = ""
    sync_status: str = SyncStatus.PENDING.value
    updated_at: int = 0


@dataclass
class Variant:
    id: str
    product_id: str
    name: str
    price_adjustment: int = 0
    tenant_id: str = ""
    sync_status: str = SyncStatus.PENDING.value
    updated_at: int = 0


@dataclass
class Vendor:
    id: str
    name: str
    phone: str | None = None
    address: str | None = None
    tenant_id: str = ""
    sync_status: str = SyncStatus.PENDING.value
    updated_at: int = 0


@dataclass
class InventoryItem:
    """Stock level keyed by (product_id, variant_id); "" means no variant."""

    product_id: str
    variant_id: str = ""
    current_qty: int = 0
    min_qty: int = 0
    tenant_id: str = ""
    sync_status: str = SyncStatus.PENDING.value
    updated_at: int = 0


@dataclass
class GoodsReceiving:
    id: str
    date: int
    vendor_id: str | None = None
    notes: str | None = None
    tenant_id: str = ""
    sync_status: str = SyncStatus.PENDING.value
    updated_at: int = 0


@dataclass
class GoodsReceivingItem:
    id: str
    receiving_id: str
    product_id: str
    qty: int
    cost_per_unit: int
    variant_id: str = ""
    unit: str = "pcs"
    tenant_id: str = ""
    sync_status: str = SyncStatus.PENDING.value
    updated_at: int = 0


@dataclass
class Transaction:
    id: str
    user_id: str
    date: int
    total: int
    payment_method: str
    status: str
    tenant_id: str = ""
    sync_status: str = SyncStatus.PENDING.value
    updated_at: int = 0


@dataclass
class TransactionItem:
    id: str
    transaction_id: str
    product_id: str
    product_name: str
    qty: int
    unit_price: int
    subtotal: int
    variant_id: str = ""
    variant_name: str | None = None
    tenant_id: str = ""
    sync_status: str = SyncStatus.PENDING.value
    updated_at: int = 0


@dataclass
class ProductComponent:
    id: str
    parent_product_id: str
    component_product_id: str
    required_qty: int
    component_variant_id: str = ""
    unit: str = "pcs"
    sort_order: int = 0
    tenant_id: str = ""
    sync_status: str = SyncStatus.PENDING.value
    updated_at: int = 0


@dataclass
class CashWithdrawal:
    id: str
    user_id: str
    amount: int
    reason: str
    date: int
    tenant_id: str = ""
    sync_status: str = SyncStatus.PENDING.value
    updated_at: int = 0


@dataclass
class GeneralLedgerEntry:
    id: str
    type: str
    amount: int
    description: str
    date: int
    user_id: str
    reference_id: str | None = None
    tenant_id: str = ""
    sync_status: str = SyncStatus.PENDING.value
    updated_at: int = 0


@dataclass
class User:
    id: str
    name: str
    pin_hash: str
    pin_salt: str
    role: str
    email: str | None = None
    phone: str | None = None
    feature_access: str | None = None
    is_active: bool = True
    tenant_id: str = ""
    sync_status: str = SyncStatus.PENDING.value
    updated_at: int = 0


@dataclass
class Restaurant:
    """Tenant row; its id is the tenant id."""

    id: str
    name: str
    owner_email: str
    owner_phone: str
    is_active: bool = True
    created_at: int = 0
    tenant_id: str = ""
    sync_status: str = SyncStatus.PENDING.value
    updated_at: int = 0
