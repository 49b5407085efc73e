"""Tests for the aiosqlite persistence backend.

Each test uses a fresh database file under tmp_path.
"""

import dataclasses
from decimal import Decimal

import pytest

from advisor.models import ExpectedReturns, PriceRecord
from advisor.persistence.database import AdvisorDatabase
from advisor.persistence.memory import InMemoryPersistence
from advisor.persistence.sqlite import SqlitePersistence
from conftest import make_knowledge, make_record, make_strategy


class TestPriceRecords:
    """Tests for price record storage and queries."""

    @pytest.mark.asyncio
    async def test_decimal_precision_survives(self, tmp_path) -> None:
        record = PriceRecord(
            token="AERO/USD",
            price=Decimal("1.234567890123456789"),
            source_key="dex",
            observed_at=100.5,
            change_24h=Decimal("-4.2"),
            tvl=Decimal("1500000"),
        )
        async with AdvisorDatabase(str(tmp_path / "advisor.db")) as database:
            persistence = SqlitePersistence(database)
            await persistence.put_price_record(record)
            [restored] = await persistence.query_price_records("AERO/USD")

        assert restored == record

    @pytest.mark.asyncio
    async def test_range_and_limit(self, tmp_path) -> None:
        async with AdvisorDatabase(str(tmp_path / "advisor.db")) as database:
            persistence = SqlitePersistence(database)
            for t in (300, 100, 200, 400):
                await persistence.put_price_record(make_record(observed_at=t))

            in_range = await persistence.query_price_records("AERO/USD", since=200, until=300)
            recent = await persistence.query_price_records("AERO/USD", limit=2)

        assert [r.observed_at for r in in_range] == [200, 300]
        assert [r.observed_at for r in recent] == [300, 400]

    @pytest.mark.asyncio
    async def test_records_persist_across_connections(self, tmp_path) -> None:
        path = str(tmp_path / "advisor.db")
        async with AdvisorDatabase(path) as database:
            await SqlitePersistence(database).put_price_record(make_record(token="BTC/USDT"))

        async with AdvisorDatabase(path) as database:
            persistence = SqlitePersistence(database)
            assert await persistence.list_tokens() == ["BTC/USDT"]


class TestStrategies:
    @pytest.mark.asyncio
    async def test_round_trip(self, tmp_path) -> None:
        entry = dataclasses.replace(
            make_strategy(),
            steps=("first", "second"),
            requirements=frozenset({"Spot access"}),
            expected_returns=ExpectedReturns(
                min=Decimal("0.15"),
                target=Decimal("0.25"),
                max=Decimal("0.40"),
                timeframe="yearly",
            ),
            created_at=10.0,
            updated_at=20.0,
        )
        async with AdvisorDatabase(str(tmp_path / "advisor.db")) as database:
            persistence = SqlitePersistence(database)
            await persistence.upsert_strategy(entry)
            restored = await persistence.get_strategy("alice", "dca_btc_eth")

        assert restored == entry

    @pytest.mark.asyncio
    async def test_upsert_replaces(self, tmp_path) -> None:
        async with AdvisorDatabase(str(tmp_path / "advisor.db")) as database:
            persistence = SqlitePersistence(database)
            await persistence.upsert_strategy(make_strategy(description="v1"))
            await persistence.upsert_strategy(make_strategy(description="v2"))
            entries = await persistence.search_strategies("alice", frozenset(), None)

        assert [e.description for e in entries] == ["v2"]

    @pytest.mark.asyncio
    async def test_tag_filter_is_and_and_case_insensitive(self, tmp_path) -> None:
        async with AdvisorDatabase(str(tmp_path / "advisor.db")) as database:
            persistence = SqlitePersistence(database)
            await persistence.upsert_strategy(make_strategy("both", tags=("DeFi", "Yield")))
            await persistence.upsert_strategy(make_strategy("one", tags=("DeFi",)))

            found = await persistence.search_strategies(
                "alice", frozenset({"defi", "YIELD"}), None
            )

        assert [e.key for e in found] == ["both"]

    @pytest.mark.asyncio
    async def test_term_is_literal_substring(self, tmp_path) -> None:
        async with AdvisorDatabase(str(tmp_path / "advisor.db")) as database:
            persistence = SqlitePersistence(database)
            await persistence.upsert_strategy(
                make_strategy("grid", name="Grid Trading", description="Earn 5% per range")
            )
            await persistence.upsert_strategy(make_strategy("dca"))

            by_name = await persistence.search_strategies("alice", frozenset(), "grid trad")
            by_percent = await persistence.search_strategies("alice", frozenset(), "5%")
            wildcard = await persistence.search_strategies("alice", frozenset(), "%")

        assert [e.key for e in by_name] == ["grid"]
        assert [e.key for e in by_percent] == ["grid"]
        assert [e.key for e in wildcard] == ["grid"]

    @pytest.mark.asyncio
    async def test_delete_owner(self, tmp_path) -> None:
        async with AdvisorDatabase(str(tmp_path / "advisor.db")) as database:
            persistence = SqlitePersistence(database)
            await persistence.upsert_strategy(make_strategy(owner="alice"))
            await persistence.upsert_knowledge(make_knowledge(owner="alice"))
            await persistence.upsert_strategy(make_strategy(owner="bob"))

            removed = await persistence.delete_owner("alice")
            assert await persistence.get_strategy("bob", "dca_btc_eth") is not None

        assert removed == 2


class TestKnowledge:
    @pytest.mark.asyncio
    async def test_round_trip_and_search(self, tmp_path) -> None:
        entry = dataclasses.replace(make_knowledge(), created_at=1.0, updated_at=2.0)
        async with AdvisorDatabase(str(tmp_path / "advisor.db")) as database:
            persistence = SqlitePersistence(database)
            await persistence.upsert_knowledge(entry)

            restored = await persistence.get_knowledge("alice", "bitcoin_fundamentals")
            found = await persistence.search_knowledge(
                "alice", frozenset({"bitcoin"}), "21 MILLION"
            )
            deleted = await persistence.delete_knowledge("alice", "bitcoin_fundamentals")

        assert restored == entry
        assert [e.key for e in found] == ["bitcoin_fundamentals"]
        assert deleted is True


class TestUnicodeCaseFolding:
    """SQL filtering folds case the same way as the in-memory backend."""

    @pytest.mark.asyncio
    async def test_non_ascii_tags_and_terms(self, tmp_path) -> None:
        entry = make_strategy("eth", tags=("Éthereum",), description="Stratégie ÉTÉ")
        memory = InMemoryPersistence()
        await memory.upsert_strategy(entry)

        async with AdvisorDatabase(str(tmp_path / "advisor.db")) as database:
            persistence = SqlitePersistence(database)
            await persistence.upsert_strategy(entry)

            for tags, term in ((frozenset({"éthereum"}), None), (frozenset(), "été")):
                found = await persistence.search_strategies("alice", tags, term)
                expected = await memory.search_strategies("alice", tags, term)
                assert [e.key for e in found] == [e.key for e in expected] == ["eth"]

    @pytest.mark.asyncio
    async def test_casefold_expands_sharp_s(self, tmp_path) -> None:
        async with AdvisorDatabase(str(tmp_path / "advisor.db")) as database:
            persistence = SqlitePersistence(database)
            await persistence.upsert_knowledge(
                make_knowledge("notes", content="Die Straße der Liquidität", tags=("GROSS",))
            )

            by_term = await persistence.search_knowledge("alice", frozenset(), "STRASSE")
            by_tag = await persistence.search_knowledge("alice", frozenset({"groß"}), None)

        assert [e.key for e in by_term] == ["notes"]
        assert [e.key for e in by_tag] == ["notes"]
