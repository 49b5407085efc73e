"""Append-only, per-token price history with derived metrics.

Holds the ordered series for each token in memory and writes every record
through to the persistence collaborator. Appends for one token are
serialized by a per-token asyncio.Lock; different tokens never contend.

Reads take a snapshot of the series (a list copy), so a caller never sees
a half-applied append.
"""

import asyncio
import bisect
from collections import defaultdict
from decimal import Decimal

from advisor.config import HistorySettings
from advisor.history.metrics import MovingAverage, TrendSignal, classify_trend, moving_average
from advisor.logging import get_logger
from advisor.models import PriceRecord
from advisor.persistence.base import Persistence

logger = get_logger(__name__)


def _observed_at(record: PriceRecord) -> float:
    return record.observed_at


class PriceHistoryStore:
    """Per-token ordered series of canonical price records.

    Usage:
        history = PriceHistoryStore(persistence, settings.history)
        await history.append(record)
        signal = history.trend("AERO/USD")
    """

    def __init__(self, persistence: Persistence, settings: HistorySettings) -> None:
        self._persistence = persistence
        self._settings = settings
        self._series: dict[str, list[PriceRecord]] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def append(self, record: PriceRecord) -> None:
        """Store ``record`` keeping the token's series ordered by observed_at.

        In-order records are appended in O(1). A record older than the
        current tail (two sources racing on one token) is inserted at its
        ordered position instead; stored records are never modified.
        """
        async with self._locks[record.token]:
            await self._persistence.put_price_record(record)
            series = self._series.setdefault(record.token, [])
            if not series or series[-1].observed_at <= record.observed_at:
                series.append(record)
            else:
                logger.debug(
                    "price_record_out_of_order",
                    token=record.token,
                    source_key=record.source_key,
                    observed_at=record.observed_at,
                    tail_observed_at=series[-1].observed_at,
                )
                bisect.insort_right(series, record, key=_observed_at)

    async def load(self, tokens: list[str] | None = None) -> int:
        """Restore recent records from persistence. Returns the number loaded.

        Loads at most ``preload_limit`` records per token. With no explicit
        token list, every token known to persistence is restored.
        """
        if tokens is None:
            tokens = await self._persistence.list_tokens()

        loaded = 0
        for token in tokens:
            async with self._locks[token]:
                records = await self._persistence.query_price_records(
                    token, limit=self._settings.preload_limit
                )
                self._series[token] = records
                loaded += len(records)

        logger.info("price_history_loaded", tokens=len(tokens), records=loaded)
        return loaded

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    def tokens(self) -> list[str]:
        return sorted(t for t, series in self._series.items() if series)

    def range(
        self, token: str, since: float | None = None, until: float | None = None
    ) -> list[PriceRecord]:
        """Records for ``token`` with since <= observed_at <= until, oldest first."""
        series = list(self._series.get(token, ()))
        lo = 0 if since is None else bisect.bisect_left(series, since, key=_observed_at)
        hi = (
            len(series)
            if until is None
            else bisect.bisect_right(series, until, key=_observed_at)
        )
        return series[lo:hi]

    def latest(self, token: str) -> PriceRecord | None:
        """Most recent record for ``token``, or None when the series is empty."""
        series = self._series.get(token)
        if not series:
            return None
        return series[-1]

    def values(self, token: str) -> list[Decimal]:
        return [r.price for r in list(self._series.get(token, ()))]

    def moving_average(self, token: str, window: int) -> MovingAverage | None:
        """Mean of the last ``window`` prices; None when there is no data."""
        values = self.values(token)
        if not values:
            return None
        return moving_average(values, window)

    def trend(self, token: str) -> TrendSignal | None:
        """Short vs long moving average classification; None when there is no data."""
        values = self.values(token)
        if not values:
            return None
        return classify_trend(
            values,
            short_window=self._settings.short_window,
            long_window=self._settings.long_window,
            neutral_zone=self._settings.neutral_zone,
        )
