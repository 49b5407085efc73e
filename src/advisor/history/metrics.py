"""Moving average and trend classification over ordered price series.

Pure functions over Decimal values, oldest first. Intermediate results are
quantized to keep Decimal representations bounded.

CRITICAL: All computations use Decimal. Never use float.
"""

from dataclasses import dataclass
from decimal import Decimal

from advisor.models import TrendDirection

#: Precision limit for averages and relative gaps (12 decimal places).
_QUANTIZE = Decimal("0.000000000001")


@dataclass(frozen=True)
class MovingAverage:
    """Mean of the most recent ``count`` values out of a requested ``window``.

    ``partial`` is True when fewer than ``window`` values were available.
    """

    value: Decimal
    window: int
    count: int

    @property
    def partial(self) -> bool:
        return self.count < self.window


@dataclass(frozen=True)
class TrendSignal:
    """Short-window vs long-window comparison for one token."""

    direction: TrendDirection
    short: MovingAverage
    long: MovingAverage
    gap: Decimal  # (short - long) / long

    @property
    def partial(self) -> bool:
        return self.long.partial


def moving_average(values: list[Decimal], window: int) -> MovingAverage:
    """Arithmetic mean of the last ``window`` values.

    Computes over whatever exists when fewer than ``window`` values are
    available; the result is then flagged partial.

    Raises:
        ValueError: If ``window`` < 1 or ``values`` is empty.
    """
    if window < 1:
        raise ValueError(f"window must be >= 1, got {window}")
    if not values:
        raise ValueError("cannot average an empty series")

    tail = values[-window:]
    mean = (sum(tail, Decimal("0")) / Decimal(len(tail))).quantize(_QUANTIZE)
    return MovingAverage(value=mean, window=window, count=len(tail))


def relative_gap(short: Decimal, long: Decimal) -> Decimal:
    """Relative difference of ``short`` against ``long``; zero when ``long`` is zero."""
    if long == 0:
        return Decimal("0")
    return ((short - long) / long).quantize(_QUANTIZE)


def classify_trend(
    values: list[Decimal],
    short_window: int,
    long_window: int,
    neutral_zone: Decimal = Decimal("0.005"),
) -> TrendSignal:
    """Compare short and long moving averages of ``values``.

    A relative gap inside +/-``neutral_zone`` is FLAT, so small oscillations
    around the long average do not flap between RISING and FALLING.

    Example: [100, 102, 104, 106] with windows 2 and 4 gives 105 vs 103,
    a gap of +1.94%, which is RISING under a 0.5% neutral zone.
    """
    if short_window > long_window:
        raise ValueError("short_window must not exceed long_window")

    short = moving_average(values, short_window)
    long = moving_average(values, long_window)
    gap = relative_gap(short.value, long.value)

    if gap > neutral_zone:
        direction = TrendDirection.RISING
    elif gap < -neutral_zone:
        direction = TrendDirection.FALLING
    else:
        direction = TrendDirection.FLAT
    return TrendSignal(direction=direction, short=short, long=long, gap=gap)
