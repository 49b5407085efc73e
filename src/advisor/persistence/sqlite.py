"""aiosqlite implementation of the persistence collaborator.

All SQL is isolated behind this interface. Tag sets, steps and expected
returns are stored as JSON text; tag filters use SQLite's json_each.
Case folding in SQL goes through the casefold/normalize_tag functions
AdvisorDatabase registers, so it agrees with advisor.search.

CRITICAL: All Decimal values stored as TEXT in SQLite, restored as Decimal on read.
"""

import json
from decimal import Decimal

from advisor.logging import get_logger
from advisor.models import (
    ExpectedReturns,
    KnowledgeEntry,
    PriceRecord,
    RiskLevel,
    StrategyEntry,
)
from advisor.persistence.base import Persistence
from advisor.persistence.database import AdvisorDatabase
from advisor.search import normalize_tags

logger = get_logger(__name__)

_STRATEGY_COLUMNS = (
    "owner, strategy_key, name, category, description, risk_level, tags, steps, "
    "requirements, expected_returns, author, version, created_at, updated_at"
)
_KNOWLEDGE_COLUMNS = "owner, source_key, content, tags, created_at, updated_at"


def _optional_decimal(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _optional_text(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def _filter_clause(
    text_columns: tuple[str, ...],
    table: str,
    required_tags: frozenset[str],
    term: str | None,
) -> tuple[str, list]:
    """Build the AND-tag / substring WHERE fragment and its parameters."""
    conditions: list[str] = []
    params: list = []
    for tag in sorted(normalize_tags(required_tags)):
        conditions.append(
            f"EXISTS (SELECT 1 FROM json_each({table}.tags) "
            "WHERE normalize_tag(json_each.value) = ?)"
        )
        params.append(tag)
    if term:
        # instr() instead of LIKE so % and _ in the term are literal
        haystack = " || char(10) || ".join(text_columns)
        conditions.append(f"instr(casefold({haystack}), ?) > 0")
        params.append(term.casefold())
    clause = "".join(f" AND {c}" for c in conditions)
    return clause, params


class SqlitePersistence(Persistence):
    """Persistence backed by an AdvisorDatabase connection.

    Usage:
        persistence = SqlitePersistence(AdvisorDatabase("data/advisor.db"))
        await persistence.connect()
    """

    def __init__(self, database: AdvisorDatabase) -> None:
        self._database = database

    async def connect(self) -> None:
        await self._database.connect()

    async def close(self) -> None:
        await self._database.close()

    # ──────────────────────────────────────────────
    # Price records
    # ──────────────────────────────────────────────

    async def put_price_record(self, record: PriceRecord) -> None:
        await self._database.db.execute(
            "INSERT INTO price_records "
            "(token, observed_at, source_key, price, change_24h, volume_24h, tvl) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                record.token,
                record.observed_at,
                record.source_key,
                str(record.price),
                _optional_text(record.change_24h),
                _optional_text(record.volume_24h),
                _optional_text(record.tvl),
            ),
        )
        await self._database.db.commit()

    async def query_price_records(
        self,
        token: str,
        since: float | None = None,
        until: float | None = None,
        limit: int | None = None,
    ) -> list[PriceRecord]:
        conditions = ["token = ?"]
        params: list = [token]

        if since is not None:
            conditions.append("observed_at >= ?")
            params.append(since)
        if until is not None:
            conditions.append("observed_at <= ?")
            params.append(until)

        where = " AND ".join(conditions)
        # Newest first so LIMIT keeps the most recent rows, reversed below
        query = (
            "SELECT token, observed_at, source_key, price, change_24h, volume_24h, tvl "
            f"FROM price_records WHERE {where} ORDER BY observed_at DESC, id DESC"
        )
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        cursor = await self._database.db.execute(query, params)
        rows = await cursor.fetchall()
        return [
            PriceRecord(
                token=row[0],
                observed_at=row[1],
                source_key=row[2],
                price=Decimal(row[3]),
                change_24h=_optional_decimal(row[4]),
                volume_24h=_optional_decimal(row[5]),
                tvl=_optional_decimal(row[6]),
            )
            for row in reversed(rows)
        ]

    async def list_tokens(self) -> list[str]:
        cursor = await self._database.db.execute(
            "SELECT DISTINCT token FROM price_records ORDER BY token"
        )
        return [row[0] for row in await cursor.fetchall()]

    # ──────────────────────────────────────────────
    # Strategies
    # ──────────────────────────────────────────────

    async def upsert_strategy(self, entry: StrategyEntry) -> None:
        expected = None
        if entry.expected_returns is not None:
            er = entry.expected_returns
            expected = json.dumps(
                {
                    "min": str(er.min),
                    "target": str(er.target),
                    "max": str(er.max),
                    "timeframe": er.timeframe,
                }
            )
        await self._database.db.execute(
            f"INSERT OR REPLACE INTO strategies ({_STRATEGY_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.owner,
                entry.key,
                entry.name,
                entry.category,
                entry.description,
                entry.risk_level.value,
                json.dumps(sorted(entry.tags)),
                json.dumps(list(entry.steps)),
                json.dumps(sorted(entry.requirements)),
                expected,
                entry.author,
                entry.version,
                entry.created_at,
                entry.updated_at,
            ),
        )
        await self._database.db.commit()

    async def get_strategy(self, owner: str, key: str) -> StrategyEntry | None:
        cursor = await self._database.db.execute(
            f"SELECT {_STRATEGY_COLUMNS} FROM strategies "
            "WHERE owner = ? AND strategy_key = ?",
            (owner, key),
        )
        row = await cursor.fetchone()
        return self._row_to_strategy(row) if row is not None else None

    async def search_strategies(
        self, owner: str, required_tags: frozenset[str], term: str | None
    ) -> list[StrategyEntry]:
        clause, params = _filter_clause(
            ("name", "description"), "strategies", required_tags, term
        )
        cursor = await self._database.db.execute(
            f"SELECT {_STRATEGY_COLUMNS} FROM strategies WHERE owner = ?{clause}",
            [owner, *params],
        )
        return [self._row_to_strategy(row) for row in await cursor.fetchall()]

    async def delete_strategy(self, owner: str, key: str) -> bool:
        cursor = await self._database.db.execute(
            "DELETE FROM strategies WHERE owner = ? AND strategy_key = ?",
            (owner, key),
        )
        await self._database.db.commit()
        return cursor.rowcount > 0

    # ──────────────────────────────────────────────
    # Knowledge
    # ──────────────────────────────────────────────

    async def upsert_knowledge(self, entry: KnowledgeEntry) -> None:
        await self._database.db.execute(
            f"INSERT OR REPLACE INTO knowledge ({_KNOWLEDGE_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                entry.owner,
                entry.key,
                entry.content,
                json.dumps(sorted(entry.tags)),
                entry.created_at,
                entry.updated_at,
            ),
        )
        await self._database.db.commit()

    async def get_knowledge(self, owner: str, key: str) -> KnowledgeEntry | None:
        cursor = await self._database.db.execute(
            f"SELECT {_KNOWLEDGE_COLUMNS} FROM knowledge "
            "WHERE owner = ? AND source_key = ?",
            (owner, key),
        )
        row = await cursor.fetchone()
        return self._row_to_knowledge(row) if row is not None else None

    async def search_knowledge(
        self, owner: str, required_tags: frozenset[str], term: str | None
    ) -> list[KnowledgeEntry]:
        clause, params = _filter_clause(
            ("source_key", "content"), "knowledge", required_tags, term
        )
        cursor = await self._database.db.execute(
            f"SELECT {_KNOWLEDGE_COLUMNS} FROM knowledge WHERE owner = ?{clause}",
            [owner, *params],
        )
        return [self._row_to_knowledge(row) for row in await cursor.fetchall()]

    async def delete_knowledge(self, owner: str, key: str) -> bool:
        cursor = await self._database.db.execute(
            "DELETE FROM knowledge WHERE owner = ? AND source_key = ?",
            (owner, key),
        )
        await self._database.db.commit()
        return cursor.rowcount > 0

    async def delete_owner(self, owner: str) -> int:
        removed = 0
        for table in ("strategies", "knowledge"):
            cursor = await self._database.db.execute(
                f"DELETE FROM {table} WHERE owner = ?", (owner,)
            )
            removed += cursor.rowcount
        await self._database.db.commit()
        logger.info("owner_entries_deleted", owner=owner, removed=removed)
        return removed

    # ──────────────────────────────────────────────
    # Row mapping
    # ──────────────────────────────────────────────

    @staticmethod
    def _row_to_strategy(row) -> StrategyEntry:
        expected = None
        if row[9] is not None:
            raw = json.loads(row[9])
            expected = ExpectedReturns(
                min=Decimal(raw["min"]),
                target=Decimal(raw["target"]),
                max=Decimal(raw["max"]),
                timeframe=raw["timeframe"],
            )
        return StrategyEntry(
            owner=row[0],
            key=row[1],
            name=row[2],
            category=row[3],
            description=row[4],
            risk_level=RiskLevel(row[5]),
            tags=frozenset(json.loads(row[6])),
            steps=tuple(json.loads(row[7])),
            requirements=frozenset(json.loads(row[8])),
            expected_returns=expected,
            author=row[10],
            version=row[11],
            created_at=row[12],
            updated_at=row[13],
        )

    @staticmethod
    def _row_to_knowledge(row) -> KnowledgeEntry:
        return KnowledgeEntry(
            owner=row[0],
            key=row[1],
            content=row[2],
            tags=frozenset(json.loads(row[3])),
            created_at=row[4],
            updated_at=row[5],
        )
