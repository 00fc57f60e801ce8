"""HTTP client for a running gateway.

Wraps the gateway's routes in an async API. Used by the ``call`` CLI
command and handy for scripting against a deployed gateway.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class GatewayClientError(Exception):
    """Raised when a gateway request fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GatewayClient:
    """Calls the gateway's endpoints over HTTPS.

    Example usage::

        async with GatewayClient("https://localhost:3101", verify=False) as gw:
            print(await gw.version())
            rows = await gw.query_json("mydb", "U0VMRUNUIDE=")
    """

    def __init__(
        self,
        base_url: str = "https://localhost:3101",
        timeout: float = 40.0,
        verify: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._verify = verify
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            verify=self._verify,
            transport=self._transport,
        )

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def version(self) -> str:
        """Raw output of the version script."""
        resp = await self._request("GET", "/version")
        return resp.text

    async def list_databases(self) -> str:
        """Raw output of the database listing script."""
        resp = await self._request("GET", "/listdbs")
        return resp.text

    async def query_base64(self, database: str, base64value: str) -> str:
        return await self._post_query("/base64querypostbase64return", "base64ResultsObj", database, base64value)

    async def query_json(self, database: str, base64value: str) -> str:
        return await self._post_query("/base64postjsonreturn", "jsonResultsObj", database, base64value)

    async def non_query(self, database: str, base64value: str) -> str:
        return await self._post_query("/base64nonquery", "jsonResultsObj", database, base64value)

    async def _post_query(self, path: str, field: str, database: str, base64value: str) -> str:
        resp = await self._request(
            "POST", path, json={"database": database, "base64value": base64value}
        )
        try:
            return resp.json()[field]
        except (ValueError, KeyError, TypeError) as e:
            raise GatewayClientError(f"Unexpected reply from {path}: {resp.text[:200]}") from e

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if self._client is None:
            raise GatewayClientError("Not connected to gateway")
        try:
            resp = await self._client.request(method, path, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise GatewayClientError(
                f"{method} {path} returned {e.response.status_code}: {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise GatewayClientError(f"{method} {path} failed: {e}") from e
        logger.debug("%s %s -> %d", method, path, resp.status_code)
        return resp

    async def __aenter__(self) -> GatewayClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.disconnect()
