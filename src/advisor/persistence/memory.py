"""In-memory persistence backend.

Keeps everything in process dictionaries. Used by tests and when
STORAGE_BACKEND=memory; contents are lost when the process exits.
"""

import bisect

from advisor.models import KnowledgeEntry, PriceRecord, StrategyEntry
from advisor.persistence.base import Persistence
from advisor.search import matches


class InMemoryPersistence(Persistence):
    """Dictionary-backed implementation of the persistence collaborator."""

    def __init__(self) -> None:
        self._records: dict[str, list[PriceRecord]] = {}
        self._strategies: dict[tuple[str, str], StrategyEntry] = {}
        self._knowledge: dict[tuple[str, str], KnowledgeEntry] = {}

    async def put_price_record(self, record: PriceRecord) -> None:
        series = self._records.setdefault(record.token, [])
        bisect.insort_right(series, record, key=lambda r: r.observed_at)

    async def query_price_records(
        self,
        token: str,
        since: float | None = None,
        until: float | None = None,
        limit: int | None = None,
    ) -> list[PriceRecord]:
        records = [
            r
            for r in self._records.get(token, [])
            if (since is None or r.observed_at >= since)
            and (until is None or r.observed_at <= until)
        ]
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return records

    async def list_tokens(self) -> list[str]:
        return sorted(token for token, series in self._records.items() if series)

    async def upsert_strategy(self, entry: StrategyEntry) -> None:
        self._strategies[(entry.owner, entry.key)] = entry

    async def get_strategy(self, owner: str, key: str) -> StrategyEntry | None:
        return self._strategies.get((owner, key))

    async def search_strategies(
        self, owner: str, required_tags: frozenset[str], term: str | None
    ) -> list[StrategyEntry]:
        return [
            e
            for (entry_owner, _), e in self._strategies.items()
            if entry_owner == owner and matches(e, required_tags, term)
        ]

    async def delete_strategy(self, owner: str, key: str) -> bool:
        return self._strategies.pop((owner, key), None) is not None

    async def upsert_knowledge(self, entry: KnowledgeEntry) -> None:
        self._knowledge[(entry.owner, entry.key)] = entry

    async def get_knowledge(self, owner: str, key: str) -> KnowledgeEntry | None:
        return self._knowledge.get((owner, key))

    async def search_knowledge(
        self, owner: str, required_tags: frozenset[str], term: str | None
    ) -> list[KnowledgeEntry]:
        return [
            e
            for (entry_owner, _), e in self._knowledge.items()
            if entry_owner == owner and matches(e, required_tags, term)
        ]

    async def delete_knowledge(self, owner: str, key: str) -> bool:
        return self._knowledge.pop((owner, key), None) is not None

    async def delete_owner(self, owner: str) -> int:
        removed = 0
        for table in (self._strategies, self._knowledge):
            for ident in [k for k in table if k[0] == owner]:
                del table[ident]
                removed += 1
        return removed
