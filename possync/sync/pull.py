"""Full pull of a tenant's remote data into the local store.

Tables are fetched in dependency phases (parents before the rows that
reference them). Tables within a phase are fetched concurrently. Every row
goes through the same conflict-aware apply path as realtime events.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..adapters import get_adapter
from ..context import TenantContext
from ..errors import DecodeError
from ..models import Table
from .apply import ApplyOutcome, ChangeApplier

if TYPE_CHECKING:
    from ..remote import ConnectivityMonitor, RemoteStore

logger = logging.getLogger(__name__)

PULL_PHASES: tuple[tuple[Table, ...], ...] = (
    (
        Table.RESTAURANTS,
        Table.CATEGORIES,
        Table.VENDORS,
        Table.USERS,
        Table.CASH_WITHDRAWALS,
        Table.GENERAL_LEDGER,
    ),
    (
        Table.PRODUCTS,
        Table.GOODS_RECEIVING,
        Table.TRANSACTIONS,
        Table.INVENTORY,
    ),
    (
        Table.VARIANTS,
        Table.PRODUCT_COMPONENTS,
        Table.GOODS_RECEIVING_ITEMS,
        Table.TRANSACTION_ITEMS,
    ),
)


@dataclass
class PullResult:
    """Outcome of a full pull."""

    applied: int = 0
    skipped: int = 0
    failed_tables: list[str] = field(default_factory=list)
    offline: bool = False


class Puller:
    """Fetches every synced table for a tenant and applies the rows locally."""

    def __init__(
        self,
        remote: "RemoteStore",
        applier: ChangeApplier,
        connectivity: "ConnectivityMonitor",
    ):
        self._remote = remote
        self._applier = applier
        self._connectivity = connectivity

    async def pull_table(self, ctx: TenantContext, table: Table) -> tuple[int, int]:
        """Fetch and apply one table.

        Returns:
            Tuple of (rows applied or merged, rows skipped).
        """
        adapter = get_adapter(table)
        rows = await self._remote.select(table.value, adapter.tenant_filters(ctx))

        applied = skipped = 0
        for row in rows:
            try:
                record = adapter.from_wire(row)
            except DecodeError as e:
                logger.warning(f"Skipping undecodable {table.value} row: {e}")
                skipped += 1
                continue

            outcome = self._applier.apply_upsert(table, record)
            if outcome in (ApplyOutcome.APPLIED, ApplyOutcome.MERGED):
                applied += 1
            else:
                skipped += 1
        return applied, skipped

    async def pull_all(self, ctx: TenantContext) -> PullResult:
        """Pull all tenant data, phase by phase.

        A failing table is logged and recorded in the result; it never
        aborts the other tables.
        """
        if not await self._connectivity.is_online():
            logger.warning("Network offline, skipping pull")
            return PullResult(offline=True)

        logger.debug(f"Pulling all data for restaurant {ctx.tenant_id}")
        result = PullResult()

        for phase in PULL_PHASES:
            outcomes = await asyncio.gather(
                *(self.pull_table(ctx, table) for table in phase),
                return_exceptions=True,
            )
            for table, outcome in zip(phase, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(f"Pull {table.value} failed: {outcome}")
                    result.failed_tables.append(table.value)
                    continue
                applied, skipped = outcome
                result.applied += applied
                result.skipped += skipped

        logger.info(
            f"Pull completed for restaurant {ctx.tenant_id}: "
            f"{result.applied} applied, {result.skipped} unchanged"
        )
        return result
