"""Price history layer: ordered per-token series, moving averages and trend detection."""

from advisor.history.metrics import (
    MovingAverage,
    TrendSignal,
    classify_trend,
    moving_average,
    relative_gap,
)
from advisor.history.store import PriceHistoryStore

__all__ = [
    "MovingAverage",
    "PriceHistoryStore",
    "TrendSignal",
    "classify_trend",
    "moving_average",
    "relative_gap",
]
