"""
Supabase client for talking to PostgREST from Python.

Async methods for table selects, inserts, filtered updates and SQL function
(RPC) calls over the Supabase REST API, authenticated with the service role key.
"""

from typing import Any, Dict, List, Optional

import httpx

from launchpad.core.automation.store import StoreError, StoreMutationError, StoreQueryError


class SupabaseError(StoreError):
    """Base exception for Supabase errors."""
    pass


class SupabaseAuthError(SupabaseError):
    """Authentication error when calling Supabase."""
    pass


class SupabaseQueryError(SupabaseError, StoreQueryError):
    """Error executing a select or RPC call."""
    pass


class SupabaseMutationError(SupabaseError, StoreMutationError):
    """Error executing an insert or update."""
    pass


class SupabaseClient:
    """
    Async client for the Supabase REST API.

    Filters use PostgREST syntax, e.g. ``{"id": "eq.123", "processed": "is.null"}``.

    Example usage:
        client = SupabaseClient(
            url="https://project.supabase.co",
            service_key="service-role-key",
        )

        rows = await client.select("token_parameters", {"pour_enabled": "eq.true"})
        updated = await client.update("tokens", {"id": "eq.1"}, {"water_level": 42})
        ok = await client.rpc("commit_evaporation_trigger", {"p_trigger_id": "..."})
    """

    def __init__(
        self,
        url: Optional[str] = None,
        service_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if url is None or service_key is None:
            from launchpad.config import settings

            url = url or settings.supabase_url
            service_key = service_key or settings.supabase_service_role_key

        if not url:
            raise SupabaseError("SUPABASE_URL is required")
        if not service_key:
            raise SupabaseError("SUPABASE_SERVICE_ROLE_KEY is required")

        self.url = url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> Dict[str, str]:
        """Get headers for PostgREST requests."""
        return {
            "Content-Type": "application/json",
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.headers,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _table_url(self, table: str) -> str:
        return f"{self.url}/rest/v1/{table}"

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, str]] = None,
        columns: str = "*",
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Select rows from a table.

        Raises:
            SupabaseQueryError: If the query fails
        """
        client = await self._get_client()
        params: Dict[str, Any] = {"select": columns, **(filters or {})}
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = limit

        try:
            response = await client.get(self._table_url(table), params=params)
            if response.status_code == 401:
                raise SupabaseAuthError("Invalid or missing service role key")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise SupabaseQueryError(f"Select on {table} failed: {e.response.text}") from e
        except httpx.RequestError as e:
            raise SupabaseQueryError(f"Request failed: {str(e)}") from e

        return data if isinstance(data, list) else []

    async def insert(self, table: str, rows: Any) -> List[Dict[str, Any]]:
        """
        Insert one row (dict) or many (list) and return what was written.

        Raises:
            SupabaseMutationError: If the insert fails
        """
        client = await self._get_client()
        try:
            response = await client.post(
                self._table_url(table),
                json=rows,
                headers={"Prefer": "return=representation"},
            )
            if response.status_code == 401:
                raise SupabaseAuthError("Invalid or missing service role key")
            response.raise_for_status()
            data = response.json() if response.content else []
        except httpx.HTTPStatusError as e:
            raise SupabaseMutationError(f"Insert into {table} failed: {e.response.text}") from e
        except httpx.RequestError as e:
            raise SupabaseMutationError(f"Request failed: {str(e)}") from e

        return data if isinstance(data, list) else [data]

    async def update(
        self,
        table: str,
        filters: Dict[str, str],
        values: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        """
        Update rows matching ``filters``; returns the updated rows.

        An empty result means no row matched, which callers use for
        compare-and-set semantics.

        Raises:
            SupabaseMutationError: If the update fails
        """
        if not filters:
            raise SupabaseMutationError(f"Refusing unfiltered update on {table}")

        client = await self._get_client()
        try:
            response = await client.patch(
                self._table_url(table),
                params=filters,
                json=values,
                headers={"Prefer": "return=representation"},
            )
            if response.status_code == 401:
                raise SupabaseAuthError("Invalid or missing service role key")
            response.raise_for_status()
            data = response.json() if response.content else []
        except httpx.HTTPStatusError as e:
            raise SupabaseMutationError(f"Update on {table} failed: {e.response.text}") from e
        except httpx.RequestError as e:
            raise SupabaseMutationError(f"Request failed: {str(e)}") from e

        return data if isinstance(data, list) else [data]

    async def rpc(self, function_name: str, args: Optional[Dict[str, Any]] = None) -> Any:
        """
        Call a Postgres function. Functions run in a single transaction.

        Raises:
            SupabaseQueryError: If the call fails
        """
        client = await self._get_client()
        try:
            response = await client.post(f"{self.url}/rest/v1/rpc/{function_name}", json=args or {})
            if response.status_code == 401:
                raise SupabaseAuthError("Invalid or missing service role key")
            response.raise_for_status()
            return response.json() if response.content else None
        except httpx.HTTPStatusError as e:
            raise SupabaseQueryError(f"RPC {function_name} failed: {e.response.text}") from e
        except httpx.RequestError as e:
            raise SupabaseQueryError(f"Request failed: {str(e)}") from e


# Singleton instance
_supabase_client: Optional[SupabaseClient] = None


def get_supabase_client() -> SupabaseClient:
    """Get the singleton Supabase client instance."""
    global _supabase_client
    if _supabase_client is None:
        _supabase_client = SupabaseClient()
    return _supabase_client
