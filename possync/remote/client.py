"""HTTP client for the tenant-partitioned remote store.

Speaks the PostgREST dialect: one resource per table under ``/rest/v1``,
row filters as ``column=eq.value`` query parameters and upserts via
``Prefer: resolution=merge-duplicates``.
"""

import logging
from typing import Any

import httpx

from ..errors import RemoteError

logger = logging.getLogger(__name__)


class RemoteStore:
    """Row-level upsert/delete/select client for the remote backend."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        schema: str = "public",
        timeout: float = 30.0,
    ):
        """Initialize the remote store client.

        Args:
            base_url: Backend URL (e.g., "https://pos.example.com").
            api_key: Key sent as ``apikey`` and bearer token, if set.
            schema: Database schema holding the synced tables.
            timeout: Request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.schema = schema
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {
                "Accept-Profile": self.schema,
                "Content-Profile": self.schema,
            }
            if self.api_key:
                headers["apikey"] = self.api_key
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _filter_params(filters: dict[str, str]) -> dict[str, str]:
        return {column: f"eq.{value}" for column, value in filters.items()}

    async def _request(self, method: str, table: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport and HTTP failures to RemoteError."""
        client = await self._get_client()
        try:
            response = await client.request(method, f"/rest/v1/{table}", **kwargs)
        except httpx.HTTPError as e:
            raise RemoteError(f"{method} {table} failed: {e}") from e

        if response.status_code >= 400:
            raise RemoteError(
                f"{method} {table} returned HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response

    async def health_check(self) -> bool:
        """Check if the backend is reachable.

        Returns:
            True if the backend answered without a server error.
        """
        try:
            client = await self._get_client()
            response = await client.get("/rest/v1/")
            return response.status_code < 500
        except Exception as e:
            logger.debug(f"Health check failed: {e}")
            return False

    async def upsert(
        self,
        table: str,
        rows: dict[str, Any] | list[dict[str, Any]],
        on_conflict: str | None = None,
    ) -> None:
        """Insert or update rows by primary key.

        Args:
            table: Remote table name.
            rows: One row or a list of rows.
            on_conflict: Comma-separated conflict columns for tables whose
                key is not ``id``.
        """
        params = {"on_conflict": on_conflict} if on_conflict else None
        await self._request(
            "POST",
            table,
            json=rows,
            params=params,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        count = len(rows) if isinstance(rows, list) else 1
        logger.debug(f"Upserted {count} row(s) into {table}")

    async def delete(self, table: str, filters: dict[str, str]) -> None:
        """Delete rows matching all equality filters.

        Raises:
            ValueError: If no filters are given, which would delete the table.
        """
        if not filters:
            raise ValueError(f"Refusing unfiltered delete on {table}")
        await self._request("DELETE", table, params=self._filter_params(filters))
        logger.debug(f"Deleted from {table} where {filters}")

    async def select(self, table: str, filters: dict[str, str]) -> list[dict[str, Any]]:
        """Fetch rows matching all equality filters."""
        params = {"select": "*", **self._filter_params(filters)}
        response = await self._request("GET", table, params=params)
        rows = response.json()
        if not isinstance(rows, list):
            raise RemoteError(f"GET {table} returned a non-list body")
        return rows
