"""Async SQLite database manager for advisor persistence.

Uses aiosqlite for non-blocking database operations with WAL mode
for concurrent read/write performance.
"""

import os
from typing import Self

import aiosqlite

from advisor.logging import get_logger
from advisor.search import normalize_tag

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS price_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token TEXT NOT NULL,
    observed_at REAL NOT NULL,
    source_key TEXT NOT NULL,
    price TEXT NOT NULL,
    change_24h TEXT,
    volume_24h TEXT,
    tvl TEXT
);

CREATE TABLE IF NOT EXISTS strategies (
    owner TEXT NOT NULL,
    strategy_key TEXT NOT NULL,
    name TEXT NOT NULL,
    category TEXT NOT NULL,
    description TEXT NOT NULL,
    risk_level TEXT NOT NULL,
    tags TEXT NOT NULL,
    steps TEXT NOT NULL,
    requirements TEXT NOT NULL,
    expected_returns TEXT,
    author TEXT NOT NULL,
    version TEXT NOT NULL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    PRIMARY KEY (owner, strategy_key)
);

CREATE TABLE IF NOT EXISTS knowledge (
    owner TEXT NOT NULL,
    source_key TEXT NOT NULL,
    content TEXT NOT NULL,
    tags TEXT NOT NULL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    PRIMARY KEY (owner, source_key)
);
"""


def _casefold(value: str | None) -> str | None:
    return value.casefold() if isinstance(value, str) else value


def _normalize_tag(value: str | None) -> str | None:
    return normalize_tag(value) if isinstance(value, str) else value


_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_price_token_ts
    ON price_records(token, observed_at);

CREATE INDEX IF NOT EXISTS idx_strategies_category
    ON strategies(owner, category);
"""


class AdvisorDatabase:
    """Async SQLite connection manager.

    Manages database lifecycle including schema creation, WAL mode
    configuration, and clean resource cleanup.

    Usage:
        async with AdvisorDatabase("data/advisor.db") as database:
            await database.db.execute("SELECT ...")
    """

    def __init__(self, db_path: str = "data/advisor.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open the connection, configure pragmas, and create the schema.

        Creates the parent directory if it does not exist.
        """
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        # SQLite lower() folds ASCII only; search needs full Unicode casefold
        await self._connection.create_function("casefold", 1, _casefold, deterministic=True)
        await self._connection.create_function(
            "normalize_tag", 1, _normalize_tag, deterministic=True
        )

        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.executescript(_CREATE_INDEXES_SQL)
        await self._ensure_schema_version()
        await self._connection.commit()

        logger.info("advisor_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("advisor_db_closed", db_path=self._db_path)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _ensure_schema_version(self) -> None:
        cursor = await self.db.execute(
            "SELECT version FROM schema_version LIMIT 1"
        )
        row = await cursor.fetchone()
        if row is None:
            await self.db.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
        elif row[0] != SCHEMA_VERSION:
            logger.warning(
                "schema_version_mismatch",
                found=row[0],
                expected=SCHEMA_VERSION,
            )
