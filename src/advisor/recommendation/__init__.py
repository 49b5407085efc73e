"""Recommendation engine -- fuses trend signals with matching strategies into Buy/Sell/Hold."""

from advisor.recommendation.engine import (
    RecommendationEngine,
    compute_confidence,
    market_condition,
)

__all__ = ["RecommendationEngine", "compute_confidence", "market_condition"]
