"""Tests for the gateway HTTP client."""

from __future__ import annotations

import json

import httpx
import pytest

from dbgateway.client import GatewayClient, GatewayClientError


def _transport(seen: list[httpx.Request]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/version":
            return httpx.Response(200, text='{"version":"16.2"}')
        if request.url.path == "/listdbs":
            return httpx.Response(500, text="Error running script: exit status 1")
        if request.url.path == "/base64postjsonreturn":
            return httpx.Response(200, json={"jsonResultsObj": "[]"})
        if request.url.path == "/base64querypostbase64return":
            return httpx.Response(200, json={"unexpected": "x"})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


class TestGatewayClient:
    def test_init_strips_trailing_slash(self) -> None:
        gw = GatewayClient(base_url="https://db.example.com:3101/")
        assert gw._base_url == "https://db.example.com:3101"

    @pytest.mark.asyncio
    async def test_version(self) -> None:
        seen: list[httpx.Request] = []
        async with GatewayClient(base_url="https://gw", transport=_transport(seen)) as gw:
            assert await gw.version() == '{"version":"16.2"}'
        assert seen[0].method == "GET"

    @pytest.mark.asyncio
    async def test_query_json_posts_body(self) -> None:
        seen: list[httpx.Request] = []
        async with GatewayClient(base_url="https://gw", transport=_transport(seen)) as gw:
            assert await gw.query_json("mydb", "U0VMRUNUIDE=") == "[]"
        assert json.loads(seen[0].content) == {"database": "mydb", "base64value": "U0VMRUNUIDE="}

    @pytest.mark.asyncio
    async def test_server_error_is_wrapped(self) -> None:
        async with GatewayClient(base_url="https://gw", transport=_transport([])) as gw:
            with pytest.raises(GatewayClientError, match="500") as exc_info:
                await gw.list_databases()
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_missing_field_is_error(self) -> None:
        async with GatewayClient(base_url="https://gw", transport=_transport([])) as gw:
            with pytest.raises(GatewayClientError, match="Unexpected reply"):
                await gw.query_base64("mydb", "x")

    @pytest.mark.asyncio
    async def test_not_connected(self) -> None:
        with pytest.raises(GatewayClientError, match="Not connected"):
            await GatewayClient().version()
