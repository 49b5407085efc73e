"""Abstract persistence collaborator.

Defines the storage operations the advisor core depends on. The core never
talks to a storage engine directly, keeping engine details isolated in the
concrete implementations (in-memory and aiosqlite).
"""

from abc import ABC, abstractmethod

from advisor.models import KnowledgeEntry, PriceRecord, StrategyEntry


class Persistence(ABC):
    """Abstract base class for storage backends."""

    async def connect(self) -> None:
        """Open underlying resources. No-op for backends without any."""

    async def close(self) -> None:
        """Release underlying resources."""

    # Price records

    @abstractmethod
    async def put_price_record(self, record: PriceRecord) -> None:
        """Persist one price record."""
        ...

    @abstractmethod
    async def query_price_records(
        self,
        token: str,
        since: float | None = None,
        until: float | None = None,
        limit: int | None = None,
    ) -> list[PriceRecord]:
        """Records for ``token`` in [since, until], oldest first.

        With ``limit``, only the most recent ``limit`` records are returned.
        """
        ...

    @abstractmethod
    async def list_tokens(self) -> list[str]:
        """All tokens that have at least one stored record."""
        ...

    # Strategies

    @abstractmethod
    async def upsert_strategy(self, entry: StrategyEntry) -> None:
        ...

    @abstractmethod
    async def get_strategy(self, owner: str, key: str) -> StrategyEntry | None:
        ...

    @abstractmethod
    async def search_strategies(
        self, owner: str, required_tags: frozenset[str], term: str | None
    ) -> list[StrategyEntry]:
        """Unordered strategies matching every tag and the text term."""
        ...

    @abstractmethod
    async def delete_strategy(self, owner: str, key: str) -> bool:
        ...

    # Knowledge

    @abstractmethod
    async def upsert_knowledge(self, entry: KnowledgeEntry) -> None:
        ...

    @abstractmethod
    async def get_knowledge(self, owner: str, key: str) -> KnowledgeEntry | None:
        ...

    @abstractmethod
    async def search_knowledge(
        self, owner: str, required_tags: frozenset[str], term: str | None
    ) -> list[KnowledgeEntry]:
        """Unordered knowledge entries matching every tag and the text term."""
        ...

    @abstractmethod
    async def delete_knowledge(self, owner: str, key: str) -> bool:
        ...

    @abstractmethod
    async def delete_owner(self, owner: str) -> int:
        """Remove every strategy and knowledge entry of ``owner``. Returns the count."""
        ...
