"""HTTP client for the Cloudflare D1 database backing the bot blocker."""

from typing import Optional

import httpx


class StoreError(Exception):
    """Raised when a D1 statement fails."""
    pass


class StoreUnavailable(StoreError):
    """Raised when D1 cannot be reached at all."""
    pass


class D1Database:
    """Minimal async SQL interface over the D1 query API."""

    def __init__(
        self,
        d1_database_id: str,
        cf_account_id: str,
        cf_api_token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.database_id = d1_database_id
        self.account_id = cf_account_id
        self.api_token = cf_api_token
        self.timeout = timeout
        self.transport = transport
        self.base_url = f"https://api.cloudflare.com/client/v4/accounts/{cf_account_id}/d1/database/{d1_database_id}"

    @property
    def is_configured(self) -> bool:
        return bool(self.database_id and self.account_id and self.api_token)

    async def query(self, sql: str, params: Optional[list] = None) -> list[dict]:
        """Execute a SQL statement against D1 and return its rows.

        Raises:
            StoreUnavailable: Missing credentials, network failure or HTTP error
            StoreError: D1 rejected the statement
        """
        if not self.is_configured:
            raise StoreUnavailable("D1 database is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/query",
                    headers={
                        "Authorization": f"Bearer {self.api_token}",
                        "Content-Type": "application/json",
                    },
                    json={"sql": sql, "params": params or []},
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise StoreUnavailable(f"D1 request failed: {e}") from e

        if not data.get("success"):
            raise StoreError(f"D1 query failed: {data.get('errors')}")

        results = data.get("result", [])
        if results and len(results) > 0:
            return results[0].get("results", []) or []
        return []

    async def execute(self, sql: str, params: Optional[list] = None) -> None:
        """Execute a SQL statement without returning results."""
        await self.query(sql, params)

    async def scalar(self, sql: str, params: Optional[list] = None, default=0):
        """Return the first column of the first row, or default."""
        rows = await self.query(sql, params)
        if not rows:
            return default
        value = next(iter(rows[0].values()), None)
        return default if value is None else value
