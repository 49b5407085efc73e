"""Tests for the JSON API routes.

Components are wired by hand onto app.state (no lifespan, no scheduler
loop) and requests go through httpx's in-process ASGI transport.
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from advisor.api import create_app
from advisor.history.store import PriceHistoryStore
from advisor.knowledge.importer import KnowledgeImporter
from advisor.knowledge.store import KnowledgeStore
from advisor.recommendation.engine import RecommendationEngine
from advisor.sources.fetcher import RawPayload
from advisor.sources.normalizers import default_normalizers
from advisor.sources.registry import SourceRegistry
from advisor.sources.scheduler import Scheduler
from conftest import make_record, make_source, make_strategy


@pytest.fixture
def app(persistence, history_settings, scheduler_settings, recommendation_settings, clock):
    history = PriceHistoryStore(persistence, history_settings)
    store = KnowledgeStore(persistence, clock=clock)
    normalizers = default_normalizers()
    registry = SourceRegistry(normalizers)
    fetcher = AsyncMock()
    fetcher.fetch = AsyncMock(
        side_effect=lambda config: RawPayload(
            config.source_key, 200, json.dumps({"price": "42"}), 0.01
        )
    )

    app = create_app()
    app.state.history = history
    app.state.knowledge_store = store
    app.state.importer = KnowledgeImporter(store)
    app.state.registry = registry
    app.state.scheduler = Scheduler(
        registry, fetcher, normalizers, history, scheduler_settings, clock
    )
    app.state.engine = RecommendationEngine(
        history, store, recommendation_settings, clock=clock
    )
    return app


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


async def _seed_falling(app, token: str = "BTC/USDT") -> None:
    for i, price in enumerate(["106", "104", "102", "100"]):
        await app.state.history.append(make_record(token=token, price=price, observed_at=i))


class TestRecommendationRoute:
    @pytest.mark.asyncio
    async def test_unknown_pair_is_insufficient_data(self, app) -> None:
        async with _client(app) as client:
            response = await client.get("/api/recommendations/alice/NOPE/USD")

        assert response.status_code == 404
        assert response.json() == {"outcome": "insufficient_data", "token_pair": "NOPE/USD"}

    @pytest.mark.asyncio
    async def test_buy_recommendation(self, app) -> None:
        await _seed_falling(app)
        await app.state.knowledge_store.upsert_strategy(make_strategy())

        async with _client(app) as client:
            response = await client.get("/api/recommendations/alice/BTC/USDT")

        body = response.json()
        assert response.status_code == 200
        assert body["signal"] == "Buy"
        assert body["token_pair"] == "BTC/USDT"
        assert body["matched_keys"] == ["dca_btc_eth"]
        assert 0 < float(body["confidence"]) <= 1


class TestStrategyRoutes:
    @pytest.mark.asyncio
    async def test_import_then_search(self, app) -> None:
        documents = [
            {
                "strategy_id": "grid",
                "name": "Grid Trading",
                "category": "Market Neutral",
                "description": "Orders at fixed intervals.",
                "risk_level": "Medium",
                "tags": ["Grid", "Volatility"],
            },
            {"strategy_id": "broken", "name": "No category"},
        ]
        async with _client(app) as client:
            imported = await client.post("/api/owners/alice/import", json=documents)
            searched = await client.get(
                "/api/owners/alice/search", params={"tags": "grid,volatility", "q": "ORDERS"}
            )

        assert imported.status_code == 200
        assert imported.json()["succeeded"] == 1
        assert imported.json()["failed"] == 1
        assert [s["key"] for s in searched.json()["strategies"]] == ["grid"]

    @pytest.mark.asyncio
    async def test_negative_search_limit_is_bad_request(self, app) -> None:
        for key in ("a", "b", "c"):
            await app.state.knowledge_store.upsert_strategy(make_strategy(key))

        async with _client(app) as client:
            rejected = await client.get("/api/owners/alice/search", params={"limit": -1})
            limited = await client.get("/api/owners/alice/search", params={"limit": 2})

        assert rejected.status_code == 400
        assert "limit" in rejected.json()["error"]
        assert len(limited.json()["strategies"]) == 2

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, app) -> None:
        async with _client(app) as client:
            response = await client.post(
                "/api/owners/alice/import",
                content="{not json",
                headers={"content-type": "application/json"},
            )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_get_list_and_delete(self, app) -> None:
        await app.state.knowledge_store.upsert_strategy(make_strategy())

        async with _client(app) as client:
            listed = await client.get("/api/owners/alice/strategies", params={"risk_level": "low"})
            fetched = await client.get("/api/owners/alice/strategies/dca_btc_eth")
            deleted = await client.delete("/api/owners/alice/strategies/dca_btc_eth")
            missing = await client.get("/api/owners/alice/strategies/dca_btc_eth")

        assert [s["key"] for s in listed.json()] == ["dca_btc_eth"]
        assert fetched.json()["risk_level"] == "Low"
        assert deleted.status_code == 200
        assert missing.status_code == 404


class TestSourceAndHistoryRoutes:
    @pytest.mark.asyncio
    async def test_sources_and_manual_refresh(self, app) -> None:
        app.state.registry.register(make_source())

        async with _client(app) as client:
            refreshed = await client.post("/api/sources/alice/binance_btc/refresh")
            sources = await client.get("/api/sources")
            unknown = await client.post("/api/sources/alice/nope/refresh")

        assert refreshed.json()["success"] is True
        [source] = sources.json()
        assert source["consecutive_failures"] == 0
        assert source["last_successful_refresh"] is not None
        assert unknown.status_code == 404

    @pytest.mark.asyncio
    async def test_history(self, app) -> None:
        await _seed_falling(app)

        async with _client(app) as client:
            response = await client.get("/api/history/BTC/USDT", params={"since": 1})
            missing = await client.get("/api/history/NOPE/USD")

        body = response.json()
        assert [r["price"] for r in body["records"]] == ["104", "102", "100"]
        assert body["trend"]["direction"] == "falling"
        assert missing.status_code == 404
