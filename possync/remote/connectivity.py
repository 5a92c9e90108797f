"""Connectivity gate consulted before any sync work touches the network."""

import logging
import time

from .client import RemoteStore

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Answers "are we online?" by probing the remote backend.

    Results are cached briefly so a sync cycle and a pull started back to
    back do not hit the remote twice.
    """

    def __init__(self, remote: RemoteStore, cache_seconds: float = 5.0):
        self._remote = remote
        self._cache_seconds = cache_seconds
        self._last_result: bool | None = None
        self._last_checked = 0.0

    async def is_online(self) -> bool:
        now = time.monotonic()
        if (
            self._last_result is not None
            and now - self._last_checked < self._cache_seconds
        ):
            return self._last_result

        online = await self._remote.health_check()
        if online != self._last_result:
            logger.info(f"Connectivity: {'online' if online else 'offline'}")
        self._last_result = online
        self._last_checked = now
        return online

    def invalidate(self) -> None:
        """Forget the cached result so the next check hits the remote again."""
        self._last_result = None
