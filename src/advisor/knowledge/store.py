"""Knowledge/Strategy Store: user-scoped CRUD and tag/text search.

Entries are keyed by (owner, key). ``upsert_*`` is idempotent: it inserts
when the key is absent and otherwise replaces content while keeping the
original ``created_at``. Writes to one (owner, key) are serialized by a
per-key asyncio.Lock; writes to different keys proceed independently.

Search applies AND-semantics tag filtering and case-insensitive substring
matching, then ranks by matching tag count, recency and key.
"""

import asyncio
import dataclasses
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass

from advisor.exceptions import ConflictError, DocumentValidationError
from advisor.logging import get_logger
from advisor.models import KnowledgeEntry, RiskLevel, StrategyEntry
from advisor.persistence.base import Persistence
from advisor.search import SearchQuery, matches, rank

logger = get_logger(__name__)


@dataclass(frozen=True)
class SearchResults:
    """Ranked strategy and knowledge matches for one query."""

    strategies: tuple[StrategyEntry, ...] = ()
    knowledge: tuple[KnowledgeEntry, ...] = ()

    @property
    def total(self) -> int:
        return len(self.strategies) + len(self.knowledge)

    def keys(self) -> list[str]:
        return [e.key for e in self.strategies] + [e.key for e in self.knowledge]


def _check_identity(owner: str, key: str) -> None:
    if not owner.strip():
        raise DocumentValidationError("owner must be non-empty")
    if not key.strip():
        raise DocumentValidationError("key must be non-empty")


class KnowledgeStore:
    """CRUD and search over strategies and knowledge snippets.

    Args:
        persistence: Storage collaborator.
        clock: Source of created/updated timestamps (Unix seconds).
    """

    def __init__(
        self, persistence: Persistence, clock: Callable[[], float] = time.time
    ) -> None:
        self._persistence = persistence
        self._clock = clock
        self._locks: defaultdict[tuple[str, str, str], asyncio.Lock] = defaultdict(
            asyncio.Lock
        )

    # ──────────────────────────────────────────────
    # Strategies
    # ──────────────────────────────────────────────

    async def upsert_strategy(self, entry: StrategyEntry) -> StrategyEntry:
        """Insert or replace a strategy. Returns the stored entry."""
        _check_identity(entry.owner, entry.key)
        async with self._locks[("strategy", entry.owner, entry.key)]:
            existing = await self._persistence.get_strategy(entry.owner, entry.key)
            stored = self._stamp(entry, existing)
            await self._persistence.upsert_strategy(stored)
        logger.info(
            "strategy_upserted",
            owner=entry.owner,
            key=entry.key,
            created=existing is None,
        )
        return stored

    async def create_strategy(self, entry: StrategyEntry) -> StrategyEntry:
        """Insert a strategy that must not exist yet.

        Raises:
            ConflictError: If (owner, key) is already stored.
        """
        _check_identity(entry.owner, entry.key)
        async with self._locks[("strategy", entry.owner, entry.key)]:
            if await self._persistence.get_strategy(entry.owner, entry.key) is not None:
                raise ConflictError(
                    f"strategy {entry.key!r} already exists for {entry.owner!r}"
                )
            stored = self._stamp(entry, None)
            await self._persistence.upsert_strategy(stored)
        return stored

    async def get_strategy(self, owner: str, key: str) -> StrategyEntry | None:
        return await self._persistence.get_strategy(owner, key)

    async def delete_strategy(self, owner: str, key: str) -> bool:
        async with self._locks[("strategy", owner, key)]:
            deleted = await self._persistence.delete_strategy(owner, key)
        if deleted:
            logger.info("strategy_deleted", owner=owner, key=key)
        return deleted

    async def list_strategies(
        self,
        owner: str,
        category: str | None = None,
        risk_level: RiskLevel | None = None,
    ) -> list[StrategyEntry]:
        """All strategies of ``owner``, optionally filtered, ordered by key."""
        entries = await self._persistence.search_strategies(owner, frozenset(), None)
        if category is not None:
            entries = [e for e in entries if e.category.casefold() == category.casefold()]
        if risk_level is not None:
            entries = [e for e in entries if e.risk_level == risk_level]
        return sorted(entries, key=lambda e: e.key)

    # ──────────────────────────────────────────────
    # Knowledge
    # ──────────────────────────────────────────────

    async def upsert_knowledge(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        """Insert or replace a knowledge entry. Returns the stored entry."""
        _check_identity(entry.owner, entry.key)
        async with self._locks[("knowledge", entry.owner, entry.key)]:
            existing = await self._persistence.get_knowledge(entry.owner, entry.key)
            stored = self._stamp(entry, existing)
            await self._persistence.upsert_knowledge(stored)
        logger.info(
            "knowledge_upserted",
            owner=entry.owner,
            key=entry.key,
            created=existing is None,
        )
        return stored

    async def create_knowledge(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        """Insert a knowledge entry that must not exist yet.

        Raises:
            ConflictError: If (owner, key) is already stored.
        """
        _check_identity(entry.owner, entry.key)
        async with self._locks[("knowledge", entry.owner, entry.key)]:
            if await self._persistence.get_knowledge(entry.owner, entry.key) is not None:
                raise ConflictError(
                    f"knowledge {entry.key!r} already exists for {entry.owner!r}"
                )
            stored = self._stamp(entry, None)
            await self._persistence.upsert_knowledge(stored)
        return stored

    async def get_knowledge(self, owner: str, key: str) -> KnowledgeEntry | None:
        return await self._persistence.get_knowledge(owner, key)

    async def delete_knowledge(self, owner: str, key: str) -> bool:
        async with self._locks[("knowledge", owner, key)]:
            deleted = await self._persistence.delete_knowledge(owner, key)
        if deleted:
            logger.info("knowledge_deleted", owner=owner, key=key)
        return deleted

    async def list_knowledge(self, owner: str) -> list[KnowledgeEntry]:
        entries = await self._persistence.search_knowledge(owner, frozenset(), None)
        return sorted(entries, key=lambda e: e.key)

    # ──────────────────────────────────────────────
    # Search and owner-level operations
    # ──────────────────────────────────────────────

    async def search(self, owner: str, query: SearchQuery) -> SearchResults:
        """Entries of ``owner`` having every required tag and containing the term.

        Each list is ranked by (matching tag count desc, updated_at desc, key asc).
        """
        strategies = await self._persistence.search_strategies(
            owner, query.required_tags, query.term
        )
        knowledge = await self._persistence.search_knowledge(
            owner, query.required_tags, query.term
        )
        return SearchResults(
            strategies=tuple(
                rank(
                    (e for e in strategies if matches(e, query.required_tags, query.term)),
                    query,
                )
            ),
            knowledge=tuple(
                rank(
                    (e for e in knowledge if matches(e, query.required_tags, query.term)),
                    query,
                )
            ),
        )

    async def purge_owner(self, owner: str) -> int:
        """Delete every strategy and knowledge entry of ``owner``."""
        return await self._persistence.delete_owner(owner)

    def _stamp(self, entry, existing):
        now = self._clock()
        created_at = existing.created_at if existing is not None else now
        return dataclasses.replace(entry, created_at=created_at, updated_at=now)
