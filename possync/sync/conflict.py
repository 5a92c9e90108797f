"""Per-table conflict resolution policy.

Pure functions only: nothing here touches a store or the network.
"""

from enum import Enum

from ..models import InventoryItem, SyncStatus, Table


class Resolution(str, Enum):
    """Outcome of comparing a local and a remote version of one record."""

    KEEP_LOCAL = "KEEP_LOCAL"
    KEEP_REMOTE = "KEEP_REMOTE"
    MERGE = "MERGE"


# Point-of-sale business events: the device that recorded them is authoritative.
LOCAL_AUTHORITATIVE_TABLES = frozenset(
    {
        Table.TRANSACTIONS,
        Table.TRANSACTION_ITEMS,
        Table.GOODS_RECEIVING,
        Table.GOODS_RECEIVING_ITEMS,
    }
)

MERGE_TABLES = frozenset({Table.INVENTORY})


def resolve(
    table: Table | str,
    local_updated_at: int,
    remote_updated_at: int,
) -> Resolution:
    """Decide which version of a record prevails.

    Args:
        table: Table the record belongs to.
        local_updated_at: Local version timestamp (epoch ms).
        remote_updated_at: Remote version timestamp (epoch ms).

    Returns:
        KEEP_LOCAL for business-event tables, MERGE for inventory, and
        last-writer-wins for everything else (ties keep the local copy).
    """
    table = Table(table)
    if table in LOCAL_AUTHORITATIVE_TABLES:
        return Resolution.KEEP_LOCAL
    if table in MERGE_TABLES:
        return Resolution.MERGE
    if local_updated_at >= remote_updated_at:
        return Resolution.KEEP_LOCAL
    return Resolution.KEEP_REMOTE


def merge_inventory(
    local: InventoryItem,
    remote: InventoryItem,
    base: InventoryItem | None,
) -> InventoryItem:
    """Combine concurrent stock changes from both sides.

    The local unpushed delta (local minus the last remote-confirmed base) is
    replayed on top of the remote quantity. A record that was never
    confirmed has a base quantity of zero. ``min_qty`` is a setting rather
    than a counter, so it follows whichever side was written last.

    The merged record stays PENDING so the combined value is pushed back.
    """
    base_qty = base.current_qty if base is not None else 0
    local_delta = local.current_qty - base_qty
    newer = local if local.updated_at >= remote.updated_at else remote

    return InventoryItem(
        product_id=local.product_id,
        variant_id=local.variant_id,
        current_qty=remote.current_qty + local_delta,
        min_qty=newer.min_qty,
        tenant_id=local.tenant_id or remote.tenant_id,
        sync_status=SyncStatus.PENDING.value,
        updated_at=max(local.updated_at, remote.updated_at),
    )
