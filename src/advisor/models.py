"""Shared data models for the strategy advisor.

CRITICAL: All prices, volumes and scores use Decimal. Never use float for market values.
Timestamps are Unix seconds (float), as returned by time.time().
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class SourceKind(str, Enum):
    """Built-in source kinds. The normalizer registry is keyed by the string value,
    so additional kinds can be registered without extending this enum."""

    COINGECKO_PRICE = "coingecko_price"  # REST price feed
    BINANCE_TICKER = "binance_ticker"  # REST price feed
    DEXSCREENER_PAIR = "dexscreener_pair"  # REST pool/liquidity feed
    DEFILLAMA_TVL = "defillama_tvl"  # REST protocol-TVL feed
    ETHERSCAN_GAS = "etherscan_gas"  # REST gas feed


class RiskLevel(str, Enum):
    """Strategy risk classification."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    EXPERIMENTAL = "Experimental"


class Signal(str, Enum):
    """Recommended action for a token pair."""

    BUY = "Buy"
    SELL = "Sell"
    HOLD = "Hold"


class TrendDirection(str, Enum):
    """Short-vs-long moving average classification."""

    RISING = "rising"
    FALLING = "falling"
    FLAT = "flat"


class MarketCondition(str, Enum):
    """Market condition tag derived from the moving average gap."""

    OVERSOLD = "oversold"
    OVERBOUGHT = "overbought"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class RequestTemplate:
    """HTTP request for one source. Values may contain $SECRET placeholders."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DataSourceConfig:
    """One configured external feed, keyed by (owner, source_key).

    Immutable: refresh state lives in the scheduler's state table.
    """

    owner: str
    source_key: str
    kind: str
    token: str  # pair identifier the records are attributed to, e.g. "AERO/USD"
    refresh_interval_seconds: int
    request: RequestTemplate
    parse_options: dict[str, Any] = field(default_factory=dict)
    name: str = ""
    description: str = ""

    @property
    def identity(self) -> tuple[str, str]:
        return (self.owner, self.source_key)


@dataclass
class SourceState:
    """Mutable refresh bookkeeping for one source."""

    last_successful_refresh: float | None = None
    last_attempt: float | None = None
    consecutive_failures: int = 0


@dataclass(frozen=True)
class PriceRecord:
    """Canonical, source-agnostic market observation.

    ``price`` is the feed's headline value: spot price for price and pool
    feeds, TVL in USD for TVL feeds, proposed gas price (gwei) for gas feeds.
    Optional fields are None when the payload did not confirm them.
    """

    token: str
    price: Decimal
    source_key: str
    observed_at: float
    change_24h: Decimal | None = None  # percent
    volume_24h: Decimal | None = None
    tvl: Decimal | None = None


@dataclass(frozen=True)
class ExpectedReturns:
    """Expected return range for a strategy (fractions, e.g. 0.15 = 15%)."""

    min: Decimal
    target: Decimal
    max: Decimal
    timeframe: str


@dataclass(frozen=True)
class StrategyEntry:
    """A user-curated trading or yield strategy, unique per (owner, key)."""

    owner: str
    key: str
    name: str
    category: str
    description: str
    risk_level: RiskLevel
    tags: frozenset[str] = frozenset()
    steps: tuple[str, ...] = ()
    requirements: frozenset[str] = frozenset()
    expected_returns: ExpectedReturns | None = None
    author: str = ""
    version: str = "1.0.0"
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def searchable_text(self) -> str:
        return f"{self.name}\n{self.description}"


@dataclass(frozen=True)
class KnowledgeEntry:
    """A free-text knowledge snippet, unique per (owner, key)."""

    owner: str
    key: str
    content: str
    tags: frozenset[str] = frozenset()
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def searchable_text(self) -> str:
        return f"{self.key}\n{self.content}"


@dataclass(frozen=True)
class Recommendation:
    """Synthesized recommendation for a token pair. Not persisted."""

    token_pair: str
    signal: Signal
    confidence: Decimal  # 0-1
    rationale: str
    generated_at: float
    trend: TrendDirection
    condition: MarketCondition
    matched_keys: tuple[str, ...] = ()
