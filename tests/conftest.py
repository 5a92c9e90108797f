"""Shared fixtures for the sync engine tests."""

import pytest

from possync.context import TenantContext
from possync.errors import RemoteError
from possync.remote import ConnectivityMonitor
from possync.store import LocalStore, MutationQueue


class FakeRemote:
    """In-memory stand-in for RemoteStore with PostgREST-like semantics.

    ``fail`` holds (method, table) pairs that raise a retryable RemoteError,
    ``reject`` pairs that raise an HTTP 400; ``calls`` records every remote
    call in order.
    """

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple] = []
        self.fail: set[tuple[str, str]] = set()
        self.reject: set[tuple[str, str]] = set()
        self.online = True

    def _check(self, method: str, table: str) -> None:
        if (method, table) in self.fail:
            raise RemoteError(f"{method} {table} failed", status_code=503)
        if (method, table) in self.reject:
            raise RemoteError(f"{method} {table} rejected", status_code=400)

    async def health_check(self) -> bool:
        return self.online

    async def upsert(self, table, rows, on_conflict=None):
        self.calls.append(("upsert", table, rows))
        self._check("upsert", table)
        keys = on_conflict.split(",") if on_conflict else ["id"]
        existing = self.tables.setdefault(table, [])
        for row in rows if isinstance(rows, list) else [rows]:
            existing[:] = [
                r for r in existing if any(r.get(k) != row.get(k) for k in keys)
            ]
            existing.append(dict(row))

    async def delete(self, table, filters):
        self.calls.append(("delete", table, dict(filters)))
        self._check("delete", table)
        existing = self.tables.get(table, [])
        existing[:] = [
            r for r in existing if any(r.get(k) != v for k, v in filters.items())
        ]

    async def select(self, table, filters):
        self.calls.append(("select", table, dict(filters)))
        self._check("select", table)
        return [
            dict(r)
            for r in self.tables.get(table, [])
            if all(r.get(k) == v for k, v in filters.items())
        ]

    async def close(self):
        pass

    def rows(self, table: str) -> list[dict]:
        return self.tables.get(table, [])


@pytest.fixture
def ctx():
    """Tenant context for restaurant r1."""
    return TenantContext(tenant_id="r1", user_id="u1")


@pytest.fixture
def store():
    """Create an in-memory LocalStore."""
    store = LocalStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def queue():
    """Create an in-memory MutationQueue."""
    queue = MutationQueue(":memory:")
    queue.connect()
    yield queue
    queue.close()


@pytest.fixture
def remote():
    """Create a fake remote store."""
    return FakeRemote()


@pytest.fixture
def connectivity(remote):
    """Connectivity monitor without result caching."""
    return ConnectivityMonitor(remote, cache_seconds=0)
