"""Shared test fixtures for the strategy advisor."""

from decimal import Decimal

import pytest

from advisor.config import (
    HistorySettings,
    RecommendationSettings,
    SchedulerSettings,
)
from advisor.models import (
    DataSourceConfig,
    KnowledgeEntry,
    PriceRecord,
    RequestTemplate,
    RiskLevel,
    StrategyEntry,
)
from advisor.persistence.memory import InMemoryPersistence


class FakeClock:
    """Manually advanced clock returning Unix seconds."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def persistence() -> InMemoryPersistence:
    return InMemoryPersistence()


@pytest.fixture
def history_settings() -> HistorySettings:
    """Small windows so trends are confident after a handful of records."""
    return HistorySettings(short_window=2, long_window=4, neutral_zone=Decimal("0.005"))


@pytest.fixture
def scheduler_settings() -> SchedulerSettings:
    return SchedulerSettings(
        max_concurrency=4,
        fetch_timeout_seconds=1.0,
        backoff_cap=8,
        tick_seconds=0.01,
        min_refresh_interval_seconds=60,
    )


@pytest.fixture
def recommendation_settings() -> RecommendationSettings:
    return RecommendationSettings()


def make_record(
    token: str = "AERO/USD",
    price: str = "1.00",
    observed_at: float = 1_700_000_000.0,
    source_key: str = "dexscreener_aero",
) -> PriceRecord:
    return PriceRecord(
        token=token,
        price=Decimal(price),
        source_key=source_key,
        observed_at=observed_at,
    )


def make_source(
    source_key: str = "binance_btc",
    kind: str = "binance_ticker",
    token: str = "BTC/USDT",
    interval: int = 60,
    url: str = "https://api.binance.com/api/v3/ticker/price?symbol=BTCUSDT",
    owner: str = "alice",
    parse_options: dict | None = None,
) -> DataSourceConfig:
    return DataSourceConfig(
        owner=owner,
        source_key=source_key,
        kind=kind,
        token=token,
        refresh_interval_seconds=interval,
        request=RequestTemplate(url=url),
        parse_options=parse_options or {},
    )


def make_strategy(
    key: str = "dca_btc_eth",
    owner: str = "alice",
    category: str = "Accumulation",
    risk_level: RiskLevel = RiskLevel.LOW,
    tags: tuple[str, ...] = ("DCA", "oversold"),
    name: str = "Dollar Cost Averaging",
    description: str = "Spread purchases over regular intervals.",
) -> StrategyEntry:
    return StrategyEntry(
        owner=owner,
        key=key,
        name=name,
        category=category,
        description=description,
        risk_level=risk_level,
        tags=frozenset(tags),
    )


def make_knowledge(
    key: str = "bitcoin_fundamentals",
    owner: str = "alice",
    content: str = "Bitcoin supply is capped at 21 million coins.",
    tags: tuple[str, ...] = ("Bitcoin",),
) -> KnowledgeEntry:
    return KnowledgeEntry(owner=owner, key=key, content=content, tags=frozenset(tags))
