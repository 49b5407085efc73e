"""Recommendation engine fusing price trend signals with matching strategies.

For a (owner, token pair) the engine:
1. Reads the latest record and the short/long trend from PriceHistory
2. Derives a market condition tag (oversold / overbought / neutral)
3. Searches the owner's strategies and knowledge for that tag
4. Maps trend + top-ranked strategy to Buy / Sell / Hold
5. Scores confidence from trend magnitude and corroborating matches

Pure read-then-compute: no side effects, safe to run concurrently.

CRITICAL: All computations use Decimal. Never use float for scores.
"""

import asyncio
import time
from collections.abc import Callable
from decimal import Decimal

from advisor.config import RecommendationSettings
from advisor.exceptions import NoDataError
from advisor.history.metrics import TrendSignal
from advisor.history.store import PriceHistoryStore
from advisor.knowledge.store import KnowledgeStore, SearchResults
from advisor.logging import get_logger
from advisor.models import (
    MarketCondition,
    PriceRecord,
    Recommendation,
    RiskLevel,
    Signal,
    StrategyEntry,
    TrendDirection,
)
from advisor.search import SearchQuery

logger = get_logger(__name__)

_CONFIDENCE_QUANTIZE = Decimal("0.0001")

#: Risk levels acceptable for an accumulation (Buy) recommendation.
_BUY_RISK_LEVELS = frozenset({RiskLevel.LOW, RiskLevel.MEDIUM})


def market_condition(gap: Decimal, threshold: Decimal) -> MarketCondition:
    """Tag the market from the relative short-vs-long moving average gap."""
    if gap < -threshold:
        return MarketCondition.OVERSOLD
    if gap > threshold:
        return MarketCondition.OVERBOUGHT
    return MarketCondition.NEUTRAL


def compute_confidence(
    gap: Decimal,
    corroborating: int,
    magnitude_cap: Decimal,
    trend_weight: Decimal,
    corroboration_weight: Decimal,
) -> Decimal:
    """Confidence in [0, 1], non-decreasing in |gap| and in ``corroborating``.

    magnitude     = min(|gap| / magnitude_cap, 1)
    corroboration = n / (n + 1)
    confidence    = trend_weight * magnitude + corroboration_weight * corroboration
    """
    magnitude = min(abs(gap) / magnitude_cap, Decimal("1")) if magnitude_cap > 0 else Decimal("1")
    n = Decimal(max(corroborating, 0))
    corroboration = n / (n + Decimal("1"))
    confidence = trend_weight * magnitude + corroboration_weight * corroboration
    confidence = max(Decimal("0"), min(confidence, Decimal("1")))
    return confidence.quantize(_CONFIDENCE_QUANTIZE)


def _base_symbol(token_pair: str) -> str:
    for separator in ("/", "-", "_", ":"):
        if separator in token_pair:
            return token_pair.split(separator, 1)[0]
    return token_pair


class RecommendationEngine:
    """Builds Recommendation objects from PriceHistory and the Knowledge/Strategy Store.

    Args:
        history: Price history read for trend and latest value.
        knowledge: Strategy/knowledge store searched by condition tag.
        settings: Thresholds, keyword lists and confidence weights.
        clock: Source of the generation timestamp.
    """

    def __init__(
        self,
        history: PriceHistoryStore,
        knowledge: KnowledgeStore,
        settings: RecommendationSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._history = history
        self._knowledge = knowledge
        self._settings = settings
        self._clock = clock

    def is_accumulation(self, strategy: StrategyEntry) -> bool:
        return self._has_keyword(strategy, self._settings.accumulation_keywords)

    def is_profit_taking(self, strategy: StrategyEntry) -> bool:
        return self._has_keyword(strategy, self._settings.profit_taking_keywords)

    @staticmethod
    def _has_keyword(strategy: StrategyEntry, keywords: list[str]) -> bool:
        haystacks = [strategy.category.casefold(), *(t.casefold() for t in strategy.tags)]
        return any(k.casefold() in h for k in keywords for h in haystacks)

    async def recommend(
        self, owner: str, token_pair: str, timeout: float | None = None
    ) -> Recommendation:
        """Recommend Buy / Sell / Hold for ``token_pair``.

        Raises:
            NoDataError: If PriceHistory holds no records for the pair.
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        if timeout is not None:
            return await asyncio.wait_for(self._recommend(owner, token_pair), timeout)
        return await self._recommend(owner, token_pair)

    async def _recommend(self, owner: str, token_pair: str) -> Recommendation:
        latest = self._history.latest(token_pair)
        trend = self._history.trend(token_pair)
        if latest is None or trend is None:
            raise NoDataError(token_pair)

        condition = market_condition(trend.gap, self._settings.condition_threshold)
        results = await self._knowledge.search(
            owner,
            SearchQuery(
                required_tags=frozenset({condition.value}),
                preferred_tags=frozenset({_base_symbol(token_pair)}),
            ),
        )

        top = results.strategies[0] if results.strategies else None
        confident = trend.direction != TrendDirection.FLAT and not trend.partial
        signal = Signal.HOLD
        if confident and top is not None:
            if (
                condition == MarketCondition.OVERSOLD
                and self.is_accumulation(top)
                and top.risk_level in _BUY_RISK_LEVELS
            ):
                signal = Signal.BUY
            elif condition == MarketCondition.OVERBOUGHT and self.is_profit_taking(top):
                signal = Signal.SELL

        confidence = compute_confidence(
            trend.gap,
            results.total,
            self._settings.magnitude_cap,
            self._settings.trend_weight,
            self._settings.corroboration_weight,
        )
        recommendation = Recommendation(
            token_pair=token_pair,
            signal=signal,
            confidence=confidence,
            rationale=self._rationale(trend, latest, condition, results, signal, confident),
            generated_at=self._clock(),
            trend=trend.direction,
            condition=condition,
            matched_keys=tuple(results.keys()),
        )
        logger.info(
            "recommendation_generated",
            owner=owner,
            token_pair=token_pair,
            signal=signal.value,
            confidence=str(confidence),
            condition=condition.value,
            matches=results.total,
        )
        return recommendation

    def _rationale(
        self,
        trend: TrendSignal,
        latest: PriceRecord,
        condition: MarketCondition,
        results: SearchResults,
        signal: Signal,
        confident: bool,
    ) -> str:
        parts = [
            f"Trend {trend.direction.value}: short MA {trend.short.value.normalize():f} "
            f"vs long MA {trend.long.value.normalize():f} "
            f"({(trend.gap * 100).quantize(Decimal('0.01')):+f}%) over "
            f"{trend.long.count} records, last {latest.price.normalize():f} "
            f"from {latest.source_key}; market {condition.value}."
        ]
        if trend.partial:
            parts.append(
                f"History is partial ({trend.long.count}/{trend.long.window} records)."
            )

        if results.strategies:
            top = results.strategies[0]
            parts.append(
                f"Top strategy {top.key} ({top.category}, {top.risk_level.value} risk)."
            )
            others = [e.key for e in results.strategies[1:]]
            if others:
                parts.append(f"Other strategies: {', '.join(others)}.")
        else:
            parts.append(f"No strategy tagged {condition.value!r}.")
        if results.knowledge:
            parts.append(
                f"Knowledge: {', '.join(e.key for e in results.knowledge)}."
            )

        if signal == Signal.HOLD:
            if not confident:
                parts.append("Hold: no confident trend.")
            elif not results.strategies:
                parts.append("Hold: no matching strategy.")
            else:
                parts.append("Hold: top strategy does not support acting on this condition.")
        return " ".join(parts)
