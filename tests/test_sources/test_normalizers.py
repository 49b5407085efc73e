"""Tests for per-kind normalizers and the NormalizerRegistry.

Payloads mimic the real public API responses of each provider.
"""

import json
from decimal import Decimal

import pytest

from advisor.exceptions import ConfigError, ParseError
from advisor.sources.normalizers import (
    BinanceTickerNormalizer,
    NormalizerRegistry,
    default_normalizers,
)
from conftest import make_source

OBSERVED_AT = 1_700_000_000.0


@pytest.fixture
def registry() -> NormalizerRegistry:
    return default_normalizers()


def _normalize(registry, payload, **source_kwargs):
    config = make_source(**source_kwargs)
    return registry.normalize(json.dumps(payload), config, OBSERVED_AT)


class TestBinanceTicker:
    def test_price_endpoint(self, registry) -> None:
        record = _normalize(registry, {"symbol": "BTCUSDT", "price": "50123.45"})

        assert record.price == Decimal("50123.45")
        assert record.token == "BTC/USDT"
        assert record.source_key == "binance_btc"
        assert record.observed_at == OBSERVED_AT
        assert record.change_24h is None

    def test_24hr_endpoint_keeps_confirmed_fields(self, registry) -> None:
        record = _normalize(
            registry,
            {"lastPrice": "50000.00", "priceChangePercent": "-2.5", "quoteVolume": "123456.7"},
        )

        assert record.price == Decimal("50000.00")
        assert record.change_24h == Decimal("-2.5")
        assert record.volume_24h == Decimal("123456.7")

    def test_missing_price_is_parse_error(self, registry) -> None:
        with pytest.raises(ParseError):
            _normalize(registry, {"symbol": "BTCUSDT"})

    def test_non_numeric_price_is_parse_error(self, registry) -> None:
        with pytest.raises(ParseError):
            _normalize(registry, {"price": "n/a"})

    def test_unparseable_optional_field_is_dropped(self, registry) -> None:
        record = _normalize(registry, {"price": "1", "priceChangePercent": "NaN"})
        assert record.change_24h is None


class TestCoinGecko:
    def test_simple_price(self, registry) -> None:
        record = _normalize(
            registry,
            {"ethereum": {"usd": 3012.5, "usd_24h_change": 1.25, "usd_24h_vol": 9.5e9}},
            source_key="cg_eth",
            kind="coingecko_price",
            token="ETH/USD",
            parse_options={"coin_id": "ethereum"},
        )

        assert record.price == Decimal("3012.5")
        assert record.change_24h == Decimal("1.25")
        assert record.volume_24h == Decimal("9500000000.0")

    def test_missing_coin_id_option(self, registry) -> None:
        with pytest.raises(ParseError, match="coin_id"):
            _normalize(registry, {"ethereum": {"usd": 1}}, kind="coingecko_price")

    def test_coin_absent_from_payload(self, registry) -> None:
        with pytest.raises(ParseError):
            _normalize(
                registry,
                {"bitcoin": {"usd": 1}},
                kind="coingecko_price",
                parse_options={"coin_id": "ethereum"},
            )


class TestDexScreener:
    def test_pairs_list_uses_first_pair(self, registry) -> None:
        payload = {
            "pairs": [
                {
                    "priceUsd": "1.2345",
                    "priceChange": {"h24": -4.2},
                    "volume": {"h24": 250000},
                    "liquidity": {"usd": 1500000},
                }
            ]
        }
        record = _normalize(registry, payload, kind="dexscreener_pair", token="AERO/USD")

        assert record.price == Decimal("1.2345")
        assert record.change_24h == Decimal("-4.2")
        assert record.volume_24h == Decimal("250000")
        assert record.tvl == Decimal("1500000")

    def test_empty_pairs_is_parse_error(self, registry) -> None:
        with pytest.raises(ParseError):
            _normalize(registry, {"pairs": []}, kind="dexscreener_pair")


class TestDefiLlama:
    def test_protocol_tvl(self, registry) -> None:
        payload = [
            {"slug": "uniswap", "tvl": 5e9},
            {"slug": "aerodrome-v1", "tvl": 1.1e9, "change_1d": 0.8},
        ]
        record = _normalize(
            registry,
            payload,
            kind="defillama_tvl",
            token="AERODROME/TVL",
            parse_options={"protocol": "aerodrome-v1"},
        )

        assert record.price == Decimal("1100000000.0")
        assert record.tvl == record.price
        assert record.change_24h == Decimal("0.8")

    def test_unknown_protocol(self, registry) -> None:
        with pytest.raises(ParseError):
            _normalize(
                registry,
                [{"slug": "uniswap", "tvl": 1}],
                kind="defillama_tvl",
                parse_options={"protocol": "aerodrome-v1"},
            )


class TestEtherscanGas:
    def test_gas_oracle(self, registry) -> None:
        payload = {
            "status": "1",
            "message": "OK",
            "result": {"SafeGasPrice": "12", "ProposeGasPrice": "14", "FastGasPrice": "18"},
        }
        record = _normalize(registry, payload, kind="etherscan_gas", token="ETH/GAS")
        assert record.price == Decimal("14")

    def test_error_status(self, registry) -> None:
        payload = {"status": "0", "message": "NOTOK", "result": "Invalid API Key"}
        with pytest.raises(ParseError, match="Invalid API Key"):
            _normalize(registry, payload, kind="etherscan_gas")


class TestNormalizerRegistry:
    """Tests for kind registration and dispatch."""

    def test_default_kinds(self, registry) -> None:
        assert registry.kinds() == [
            "binance_ticker",
            "coingecko_price",
            "defillama_tvl",
            "dexscreener_pair",
            "etherscan_gas",
        ]

    def test_duplicate_kind_rejected(self) -> None:
        registry = NormalizerRegistry([BinanceTickerNormalizer()])
        with pytest.raises(ConfigError):
            registry.register(BinanceTickerNormalizer())

    def test_unknown_kind_is_config_error(self, registry) -> None:
        with pytest.raises(ConfigError):
            _normalize(registry, {"price": "1"}, kind="kraken_ticker")

    def test_malformed_json_is_parse_error(self, registry) -> None:
        with pytest.raises(ParseError, match="not JSON"):
            registry.normalize("<html>rate limited</html>", make_source(), OBSERVED_AT)

    def test_same_payload_same_record(self, registry) -> None:
        """Normalization is a pure function of payload and config."""
        body = json.dumps({"price": "42.0"})
        config = make_source()
        assert registry.normalize(body, config, OBSERVED_AT) == registry.normalize(
            body, config, OBSERVED_AT
        )
