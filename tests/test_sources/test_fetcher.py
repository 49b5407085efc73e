"""Tests for SourceFetcher against a local aiohttp test server.

Covers success, HTTP status classification, timeout, network failure and
secret placeholder substitution. No real external API calls.
"""

import asyncio
import dataclasses
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from advisor.exceptions import FetchFailureKind, TransientFetchError
from advisor.models import RequestTemplate
from advisor.sources.fetcher import SourceFetcher, resolve_placeholders
from conftest import make_source


async def _ticker(request: web.Request) -> web.Response:
    return web.json_response({"symbol": "BTCUSDT", "price": "50000.00"})


async def _error(request: web.Request) -> web.Response:
    return web.json_response({"code": -1003, "msg": "Too many requests"}, status=429)


async def _slow(request: web.Request) -> web.Response:
    await asyncio.sleep(1.0)
    return web.json_response({"price": "1"})


async def _echo_headers(request: web.Request) -> web.Response:
    return web.json_response(
        {"key": request.headers.get("X-Api-Key"), "query": request.query.get("apikey")}
    )


@asynccontextmanager
async def _server():
    app = web.Application()
    app.router.add_get("/ticker", _ticker)
    app.router.add_get("/error", _error)
    app.router.add_get("/slow", _slow)
    app.router.add_get("/echo", _echo_headers)
    server = TestServer(app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


class TestFetch:
    """Tests for a single request attempt."""

    @pytest.mark.asyncio
    async def test_success_returns_body(self) -> None:
        async with _server() as server:
            fetcher = SourceFetcher(timeout_seconds=5)
            try:
                payload = await fetcher.fetch(make_source(url=str(server.make_url("/ticker"))))
            finally:
                await fetcher.close()

        assert payload.status == 200
        assert payload.source_key == "binance_btc"
        assert '"price": "50000.00"' in payload.body
        assert payload.latency_seconds >= 0

    @pytest.mark.asyncio
    async def test_non_2xx_is_http_status_failure(self) -> None:
        async with _server() as server:
            fetcher = SourceFetcher(timeout_seconds=5)
            try:
                with pytest.raises(TransientFetchError) as exc_info:
                    await fetcher.fetch(make_source(url=str(server.make_url("/error"))))
            finally:
                await fetcher.close()

        assert exc_info.value.kind == FetchFailureKind.HTTP_STATUS
        assert exc_info.value.status == 429
        assert exc_info.value.source_key == "binance_btc"

    @pytest.mark.asyncio
    async def test_slow_response_is_timeout_failure(self) -> None:
        async with _server() as server:
            fetcher = SourceFetcher(timeout_seconds=0.1)
            try:
                with pytest.raises(TransientFetchError) as exc_info:
                    await fetcher.fetch(make_source(url=str(server.make_url("/slow"))))
            finally:
                await fetcher.close()

        assert exc_info.value.kind == FetchFailureKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_connection_refused_is_network_failure(self) -> None:
        async with _server() as server:
            url = str(server.make_url("/ticker"))
        # Server is closed now: nothing listens on the port.
        fetcher = SourceFetcher(timeout_seconds=2)
        try:
            with pytest.raises(TransientFetchError) as exc_info:
                await fetcher.fetch(make_source(url=url))
        finally:
            await fetcher.close()

        assert exc_info.value.kind == FetchFailureKind.NETWORK

    @pytest.mark.asyncio
    async def test_missing_session_raises_runtime_error(self) -> None:
        fetcher = SourceFetcher(timeout_seconds=1)
        with patch.object(fetcher, "connect", AsyncMock()):
            with pytest.raises(RuntimeError, match="connect"):
                await fetcher.fetch(make_source())

    @pytest.mark.asyncio
    async def test_placeholders_resolved_at_request_time(self) -> None:
        secrets = {"BINANCE_KEY": "k-123", "ETHERSCAN_API_KEY": "e-456"}
        async with _server() as server:
            config = dataclasses.replace(
                make_source(),
                request=RequestTemplate(
                    url=str(server.make_url("/echo")) + "?apikey=$ETHERSCAN_API_KEY",
                    headers={"X-Api-Key": "${BINANCE_KEY}"},
                ),
            )
            fetcher = SourceFetcher(timeout_seconds=5, secret_resolver=secrets.get)
            try:
                payload = await fetcher.fetch(config)
            finally:
                await fetcher.close()

        assert '"key": "k-123"' in payload.body
        assert '"query": "e-456"' in payload.body
        # The stored template keeps its placeholders.
        assert config.request.headers["X-Api-Key"] == "${BINANCE_KEY}"


class TestResolvePlaceholders:
    def test_both_syntaxes(self) -> None:
        text, missing = resolve_placeholders(
            "a=$ONE&b=${TWO}", {"ONE": "1", "TWO": "2"}.get
        )
        assert text == "a=1&b=2"
        assert missing == []

    def test_unresolved_left_verbatim(self) -> None:
        text, missing = resolve_placeholders("key=${MISSING}", {}.get)
        assert text == "key=${MISSING}"
        assert missing == ["MISSING"]
