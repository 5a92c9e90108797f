"""Tenant sync session: wires the engine together and owns its lifecycle."""

import asyncio
import logging
import uuid
from typing import Any

from .config import Config
from .context import TenantContext
from .realtime import ChangeFeed, MQTTChangeFeed, RealtimeReconciler
from .remote import ConnectivityMonitor, RemoteStore
from .store import LocalStore, MutationQueue
from .sync import ChangeApplier, Puller, PushSynchronizer, SyncScheduler

logger = logging.getLogger(__name__)


class SyncSession:
    """Runs realtime reconciliation and scheduled sync for one tenant at a time."""

    def __init__(
        self,
        config: Config,
        remote: RemoteStore | None = None,
        feed_factory: Any = None,
    ):
        """Build the sync engine from configuration.

        Args:
            config: Loaded configuration.
            remote: Remote store client. Built from ``config.remote`` if omitted.
            feed_factory: Callable returning a fresh ``ChangeFeed``. Defaults
                to an MQTT feed built from ``config.realtime``.
        """
        self.config = config
        self._ctx: TenantContext | None = None
        self._lock = asyncio.Lock()

        self.store = LocalStore(config.store.db_path)
        self.queue = MutationQueue(config.store.db_path)
        self.remote = remote or RemoteStore(
            config.remote.url,
            api_key=config.remote.api_key,
            schema=config.remote.schema,
            timeout=config.remote.timeout_seconds,
        )
        self.connectivity = ConnectivityMonitor(
            self.remote, cache_seconds=config.sync.connectivity_cache_seconds
        )

        self.applier = ChangeApplier(self.store, self.queue)
        self.puller = Puller(self.remote, self.applier, self.connectivity)
        self.synchronizer = PushSynchronizer(
            self.queue,
            self.store,
            self.remote,
            self.connectivity,
            batch_size=config.sync.batch_size,
            max_retries=config.sync.max_retries,
            puller=self.puller if config.sync.pull_after_push else None,
        )
        self.scheduler = SyncScheduler(
            self.synchronizer,
            self.connectivity,
            interval_minutes=config.sync.interval_minutes,
            max_attempts=config.sync.job_max_attempts,
            backoff_base_seconds=config.sync.backoff_base_seconds,
            backoff_max_seconds=config.sync.backoff_max_seconds,
            connectivity_poll_seconds=config.sync.connectivity_poll_seconds,
        )

        self.reconciler: RealtimeReconciler | None = None
        if config.realtime.enabled:
            self.reconciler = RealtimeReconciler(
                self.applier,
                feed_factory or self._mqtt_feed,
                reconnect_base_seconds=config.realtime.reconnect_base_seconds,
                reconnect_max_seconds=config.realtime.reconnect_max_seconds,
                on_connected=self.puller.pull_all,
            )

    def _mqtt_feed(self) -> ChangeFeed:
        client_id = f"{self.config.node.name}-{uuid.uuid4().hex[:8]}"
        return MQTTChangeFeed(self.config.realtime, client_id=client_id)

    @property
    def tenant(self) -> TenantContext | None:
        return self._ctx

    def open(self) -> None:
        """Open the local databases."""
        self.store.connect()
        self.queue.connect()

    async def start(self, ctx: TenantContext) -> None:
        """Begin syncing for a tenant.

        Raises:
            RuntimeError: If a session is already active; use ``switch``.
        """
        async with self._lock:
            if self._ctx is not None:
                raise RuntimeError(
                    f"Session already active for restaurant {self._ctx.tenant_id}"
                )
            await self._start(ctx)

    async def _start(self, ctx: TenantContext) -> None:
        self.open()
        self._ctx = ctx
        logger.info(f"Starting sync session for restaurant {ctx.tenant_id}")
        if self.reconciler is not None:
            await self.reconciler.connect(ctx)
        if self.config.sync.enabled:
            await self.scheduler.start(ctx)

    async def switch(self, ctx: TenantContext) -> None:
        """Tear down the current tenant and start another."""
        async with self._lock:
            if self._ctx == ctx:
                return
            await self._stop()
            await self._start(ctx)

    async def stop(self) -> None:
        """End the active tenant session, if any."""
        async with self._lock:
            await self._stop()

    async def _stop(self) -> None:
        if self._ctx is None:
            return
        logger.info(f"Stopping sync session for restaurant {self._ctx.tenant_id}")
        await self.scheduler.stop()
        if self.reconciler is not None:
            await self.reconciler.disconnect()
        self._ctx = None

    async def close(self) -> None:
        """Stop the session and release every resource."""
        await self.stop()
        await self.remote.close()
        self.queue.close()
        self.store.close()

    def get_status(self) -> dict[str, Any]:
        status = {
            "node": self.config.node.name,
            "tenant_id": self._ctx.tenant_id if self._ctx else None,
            "sync": self.synchronizer.get_sync_status(),
            "scheduler": self.scheduler.get_status(),
        }
        if self.reconciler is not None:
            status["realtime"] = self.reconciler.get_status()
        return status


async def run_session(config: Config, ctx: TenantContext) -> None:
    """Run a tenant session until cancelled."""
    session = SyncSession(config)
    try:
        await session.start(ctx)
        await asyncio.Event().wait()
    finally:
        await session.close()
