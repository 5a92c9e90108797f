"""Realtime change reconciler.

Consumes a tenant's change feed for as long as the tenant session is active
and applies each remote change to the local store. Events are independent:
one that fails to decode or apply is logged and skipped. A dropped feed is
torn down completely and re-established with backoff; there is no resume
cursor, so every (re)connect fires ``on_connected`` (used to run a full pull).
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable

from ..adapters import get_adapter
from ..context import TenantContext
from ..errors import DecodeError
from ..models import Table
from ..sync.apply import ApplyOutcome, ChangeApplier
from .events import ChangeEvent, EventType, FeedMessage
from .feed import ChangeFeed, FeedDisconnected

logger = logging.getLogger(__name__)

FeedFactory = Callable[[], ChangeFeed]
ConnectedHook = Callable[[TenantContext], Awaitable[Any]]


class RealtimeReconciler:
    """Applies remote row changes for the active tenant."""

    def __init__(
        self,
        applier: ChangeApplier,
        feed_factory: FeedFactory,
        tables: Iterable[Table] = tuple(Table),
        reconnect_base_seconds: float = 1.0,
        reconnect_max_seconds: float = 60.0,
        on_connected: ConnectedHook | None = None,
    ):
        """Initialize the reconciler.

        Args:
            applier: Conflict-aware writer into the local store.
            feed_factory: Creates a fresh feed for every (re)connect.
            tables: Tables to subscribe to.
            reconnect_base_seconds: First reconnect delay; doubles per failure.
            reconnect_max_seconds: Upper bound for the reconnect delay.
            on_connected: Awaited after every successful subscription.
        """
        self._applier = applier
        self._feed_factory = feed_factory
        self._tables = tuple(tables)
        self._reconnect_base = reconnect_base_seconds
        self._reconnect_max = reconnect_max_seconds
        self._on_connected = on_connected

        self._ctx: TenantContext | None = None
        self._task: asyncio.Task | None = None
        self._feed: ChangeFeed | None = None
        self._connected = False
        self.stats: dict[str, int] = {
            "events": 0,
            "applied": 0,
            "skipped": 0,
            "errors": 0,
            "reconnects": 0,
        }

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def tenant(self) -> TenantContext | None:
        return self._ctx

    async def connect(self, ctx: TenantContext) -> None:
        """Subscribe to a tenant's changes, replacing any current subscription."""
        await self.disconnect()
        logger.info(f"Connecting realtime for restaurant {ctx.tenant_id}")
        self._ctx = ctx
        self._task = asyncio.create_task(self._run(ctx))

    async def disconnect(self) -> None:
        """Cancel the subscription task and close its feed."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._ctx is not None:
            logger.info("Realtime disconnected")
        self._ctx = None
        self._connected = False

    async def _run(self, ctx: TenantContext) -> None:
        """Keep a subscription alive until cancelled."""
        delay = self._reconnect_base
        first = True
        while True:
            if not first:
                self.stats["reconnects"] += 1
            first = False

            feed = self._feed_factory()
            self._feed = feed
            try:
                await feed.connect(ctx, self._tables)
                self._connected = True
                delay = self._reconnect_base
                logger.info(f"Realtime subscribed to {len(self._tables)} tables")

                if self._on_connected is not None:
                    try:
                        await self._on_connected(ctx)
                    except Exception as e:
                        logger.error(f"Post-connect hook failed: {e}", exc_info=True)

                while True:
                    message = await feed.receive()
                    self.handle_message(ctx, message)
            except FeedDisconnected as e:
                logger.warning(f"Realtime feed lost: {e}")
            except Exception as e:
                logger.error(f"Realtime subscription error: {e}", exc_info=True)
            finally:
                self._connected = False
                self._feed = None
                try:
                    await feed.close()
                except Exception as e:
                    logger.warning(f"Error disconnecting realtime: {e}")

            logger.info(f"Re-establishing realtime subscription in {delay:g}s")
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._reconnect_max)

    def handle_message(self, ctx: TenantContext, message: FeedMessage) -> ApplyOutcome | None:
        """Decode and apply one message. Never raises."""
        self.stats["events"] += 1
        try:
            event = ChangeEvent.from_message(message)
            outcome = self.apply_event(ctx, event)
        except Exception as e:
            self.stats["errors"] += 1
            logger.error(f"Realtime {message.table} error: {e}")
            return None

        if outcome in (ApplyOutcome.APPLIED, ApplyOutcome.MERGED, ApplyOutcome.DELETED):
            self.stats["applied"] += 1
        else:
            self.stats["skipped"] += 1
        return outcome

    def apply_event(self, ctx: TenantContext, event: ChangeEvent) -> ApplyOutcome | None:
        """Apply one decoded event for the session tenant.

        Returns:
            The apply outcome, or None if the event belongs to another tenant.

        Raises:
            DecodeError: If the event's rows cannot be decoded.
        """
        adapter = get_adapter(event.table)

        if event.type == EventType.DELETE:
            old = event.old_record
            if not self._same_tenant(ctx, old.get(adapter.tenant_column)):
                return None
            key = self._key_from_tombstone(event.table, old)
            return self._applier.apply_delete(
                event.table, key, remote_updated_at=int(old.get("updated_at") or 0)
            )

        record = adapter.from_wire(event.record)
        if not self._same_tenant(ctx, record.tenant_id):
            return None
        return self._applier.apply_upsert(event.table, record)

    @staticmethod
    def _same_tenant(ctx: TenantContext, tenant_id: str | None) -> bool:
        # Tombstones may carry only the primary key; the topic already scopes them.
        if tenant_id and tenant_id != ctx.tenant_id:
            logger.warning(f"Dropping event for foreign restaurant {tenant_id}")
            return False
        return True

    @staticmethod
    def _key_from_tombstone(table: Table, old: dict[str, Any]) -> str:
        adapter = get_adapter(table)
        if adapter.composite:
            product_id = old.get("product_id")
            if not product_id:
                raise DecodeError(f"{table.value}: tombstone without product_id")
            return adapter.key(
                adapter.entity(product_id=product_id, variant_id=old.get("variant_id") or "")
            )
        key = old.get("id")
        if not key:
            raise DecodeError(f"{table.value}: tombstone without id")
        return str(key)

    def get_status(self) -> dict[str, Any]:
        return {
            "connected": self._connected,
            "tenant_id": self._ctx.tenant_id if self._ctx else None,
            **self.stats,
        }
