"""JSON API endpoints: recommendations, strategy search/import, sources and price history."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from advisor.exceptions import ConfigError, NoDataError
from advisor.models import (
    KnowledgeEntry,
    PriceRecord,
    Recommendation,
    RiskLevel,
    StrategyEntry,
)
from advisor.search import SearchQuery

log = structlog.get_logger(__name__)

router = APIRouter()


def _decimal_to_str(obj: Any) -> Any:
    """Recursively convert Decimal values to strings for JSON serialization."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {k: _decimal_to_str(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_decimal_to_str(item) for item in obj]
    return obj


def _split_tags(value: str | None) -> frozenset[str]:
    if not value:
        return frozenset()
    return frozenset(t.strip() for t in value.split(",") if t.strip())


def _strategy_to_dict(entry: StrategyEntry) -> dict[str, Any]:
    expected = None
    if entry.expected_returns is not None:
        er = entry.expected_returns
        expected = {
            "min": er.min,
            "target": er.target,
            "max": er.max,
            "timeframe": er.timeframe,
        }
    return _decimal_to_str({
        "key": entry.key,
        "name": entry.name,
        "category": entry.category,
        "description": entry.description,
        "risk_level": entry.risk_level.value,
        "tags": sorted(entry.tags),
        "steps": list(entry.steps),
        "requirements": sorted(entry.requirements),
        "expected_returns": expected,
        "author": entry.author,
        "version": entry.version,
        "created_at": entry.created_at,
        "updated_at": entry.updated_at,
    })


def _knowledge_to_dict(entry: KnowledgeEntry) -> dict[str, Any]:
    return {
        "key": entry.key,
        "content": entry.content,
        "tags": sorted(entry.tags),
        "created_at": entry.created_at,
        "updated_at": entry.updated_at,
    }


def _record_to_dict(record: PriceRecord) -> dict[str, Any]:
    return _decimal_to_str({
        "token": record.token,
        "price": record.price,
        "source_key": record.source_key,
        "observed_at": record.observed_at,
        "change_24h": record.change_24h,
        "volume_24h": record.volume_24h,
        "tvl": record.tvl,
    })


def _recommendation_to_dict(rec: Recommendation) -> dict[str, Any]:
    return {
        "outcome": "recommendation",
        "token_pair": rec.token_pair,
        "signal": rec.signal.value,
        "confidence": str(rec.confidence),
        "rationale": rec.rationale,
        "generated_at": rec.generated_at,
        "trend": rec.trend.value,
        "condition": rec.condition.value,
        "matched_keys": list(rec.matched_keys),
    }


@router.get("/health")
async def get_health(request: Request) -> JSONResponse:
    """Liveness plus scheduler and history summary."""
    scheduler = request.app.state.scheduler
    history = request.app.state.history
    return JSONResponse(content={
        "status": "ok",
        "scheduler_running": scheduler.running,
        "sources": len(request.app.state.registry),
        "tokens": history.tokens(),
    })


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------


@router.get("/recommendations/{owner}/{token_pair:path}")
async def get_recommendation(request: Request, owner: str, token_pair: str) -> JSONResponse:
    """Buy / Sell / Hold for a token pair, or insufficient_data when unseen."""
    engine = request.app.state.engine
    try:
        rec = await engine.recommend(owner, token_pair)
    except NoDataError as e:
        return JSONResponse(
            content={"outcome": "insufficient_data", "token_pair": e.token},
            status_code=404,
        )
    return JSONResponse(content=_recommendation_to_dict(rec))


# ---------------------------------------------------------------------------
# Strategies and knowledge
# ---------------------------------------------------------------------------


@router.get("/owners/{owner}/strategies")
async def list_strategies(
    request: Request,
    owner: str,
    category: str | None = None,
    risk_level: str | None = None,
) -> JSONResponse:
    """Strategies of an owner, optionally filtered by category and risk level."""
    store = request.app.state.knowledge_store
    level = None
    if risk_level is not None:
        try:
            level = RiskLevel(risk_level.strip().title())
        except ValueError:
            return JSONResponse(
                content={"error": f"Unknown risk level: {risk_level}"}, status_code=400
            )
    entries = await store.list_strategies(owner, category=category, risk_level=level)
    return JSONResponse(content=[_strategy_to_dict(e) for e in entries])


@router.get("/owners/{owner}/strategies/{key}")
async def get_strategy(request: Request, owner: str, key: str) -> JSONResponse:
    store = request.app.state.knowledge_store
    entry = await store.get_strategy(owner, key)
    if entry is None:
        return JSONResponse(content={"error": "Strategy not found"}, status_code=404)
    return JSONResponse(content=_strategy_to_dict(entry))


@router.delete("/owners/{owner}/strategies/{key}")
async def delete_strategy(request: Request, owner: str, key: str) -> JSONResponse:
    store = request.app.state.knowledge_store
    if not await store.delete_strategy(owner, key):
        return JSONResponse(content={"error": "Strategy not found"}, status_code=404)
    return JSONResponse(content={"deleted": key})


@router.get("/owners/{owner}/knowledge")
async def list_knowledge(request: Request, owner: str) -> JSONResponse:
    store = request.app.state.knowledge_store
    entries = await store.list_knowledge(owner)
    return JSONResponse(content=[_knowledge_to_dict(e) for e in entries])


@router.get("/owners/{owner}/search")
async def search(
    request: Request,
    owner: str,
    q: str | None = None,
    tags: str | None = None,
    prefer: str | None = None,
    limit: int | None = None,
) -> JSONResponse:
    """Search strategies and knowledge.

    Query params:
        q: Case-insensitive substring.
        tags: Comma-separated tags, all required.
        prefer: Comma-separated tags that only affect ranking.
        limit: Max results per entry type.
    """
    if limit is not None and limit < 0:
        return JSONResponse(
            content={"error": f"limit must be >= 0, got {limit}"}, status_code=400
        )
    store = request.app.state.knowledge_store
    query = SearchQuery(
        term=q or None,
        required_tags=_split_tags(tags),
        preferred_tags=_split_tags(prefer),
        limit=limit,
    )
    results = await store.search(owner, query)
    return JSONResponse(content={
        "strategies": [_strategy_to_dict(e) for e in results.strategies],
        "knowledge": [_knowledge_to_dict(e) for e in results.knowledge],
    })


@router.post("/owners/{owner}/import")
async def import_documents(request: Request, owner: str) -> JSONResponse:
    """Bulk import strategy/knowledge documents (a JSON object or list).

    Returns the per-document report; partial failure is not an HTTP error.
    """
    try:
        body = await request.json()
    except Exception:
        return JSONResponse(
            content={"error": "Invalid JSON body"}, status_code=400
        )

    documents = body if isinstance(body, list) else [body]
    importer = request.app.state.importer
    report = await importer.import_documents(owner, documents)
    return JSONResponse(content={
        "succeeded": len(report.succeeded),
        "failed": len(report.failed),
        "outcomes": [
            {
                "document": o.document,
                "success": o.success,
                "kind": o.kind,
                "key": o.key,
                "error": o.error,
            }
            for o in report.outcomes
        ],
    })


# ---------------------------------------------------------------------------
# Sources and price history
# ---------------------------------------------------------------------------


@router.get("/sources")
async def get_sources(request: Request) -> JSONResponse:
    """Configured sources with their refresh state."""
    registry = request.app.state.registry
    scheduler = request.app.state.scheduler

    result = []
    for config in registry.snapshot():
        state = scheduler.state(*config.identity)
        result.append({
            "owner": config.owner,
            "source_key": config.source_key,
            "kind": config.kind,
            "token": config.token,
            "refresh_interval_seconds": config.refresh_interval_seconds,
            "last_successful_refresh": state.last_successful_refresh,
            "last_attempt": state.last_attempt,
            "consecutive_failures": state.consecutive_failures,
            "next_due": scheduler.next_due(config),
        })
    return JSONResponse(content=result)


@router.post("/sources/{owner}/{source_key}/refresh")
async def refresh_source(request: Request, owner: str, source_key: str) -> JSONResponse:
    """Refresh one source immediately, bypassing its due time."""
    scheduler = request.app.state.scheduler
    try:
        outcome = await scheduler.refresh_source(owner, source_key)
    except ConfigError as e:
        return JSONResponse(content={"error": str(e)}, status_code=404)

    log.info("manual_refresh", owner=owner, source_key=source_key, success=outcome.success)
    return JSONResponse(content={
        "source_key": outcome.source_key,
        "success": outcome.success,
        "latency_seconds": outcome.latency_seconds,
        "consecutive_failures": outcome.consecutive_failures,
        "error_kind": outcome.error_kind,
        "error": outcome.error,
    })


@router.get("/history/{token:path}")
async def get_history(
    request: Request,
    token: str,
    since: float | None = None,
    until: float | None = None,
) -> JSONResponse:
    """Price records for a token within [since, until], oldest first."""
    history = request.app.state.history
    records = history.range(token, since=since, until=until)
    if not records:
        return JSONResponse(
            content={"error": f"No data found for {token}"}, status_code=404
        )

    trend = history.trend(token)
    return JSONResponse(content={
        "token": token,
        "records": [_record_to_dict(r) for r in records],
        "trend": {
            "direction": trend.direction.value,
            "short_ma": str(trend.short.value),
            "long_ma": str(trend.long.value),
            "gap": str(trend.gap),
            "partial": trend.partial,
        },
    })
