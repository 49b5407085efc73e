"""Normalizers: map a raw payload of one source kind to a canonical PriceRecord.

Each source kind is a Normalizer subclass registered under its kind string
in a NormalizerRegistry. Adding a kind means registering another
Normalizer; existing normalizers are never touched.

Parsing rules shared by every kind:
- The headline value is required. Missing or malformed -> ParseError.
- Optional values (24h change, volume, TVL) are kept only when the payload
  confirms them; anything unparseable is dropped, never defaulted.
"""

import json
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any

from advisor.exceptions import ConfigError, ParseError
from advisor.logging import get_logger
from advisor.models import DataSourceConfig, PriceRecord, SourceKind

logger = get_logger(__name__)


def _to_decimal(value: Any) -> Decimal | None:
    """Convert a JSON scalar to a finite Decimal, or None if it is not one."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def _path(payload: Any, *keys: str | int) -> Any:
    """Walk nested dicts/lists, returning None at the first missing step."""
    node = payload
    for key in keys:
        if isinstance(key, int):
            if not isinstance(node, list) or not -len(node) <= key < len(node):
                return None
        elif not isinstance(node, dict) or key not in node:
            return None
        node = node[key]
    return node


class Normalizer(ABC):
    """Parse strategy for one source kind."""

    kind: str

    def required(self, config: DataSourceConfig, value: Any, field: str) -> Decimal:
        result = _to_decimal(value)
        if result is None:
            raise ParseError(config.source_key, f"missing or invalid {field}: {value!r}")
        return result

    def option(self, config: DataSourceConfig, name: str, default: Any = None) -> Any:
        value = config.parse_options.get(name, default)
        if value is None:
            raise ParseError(config.source_key, f"parse option {name!r} is not set")
        return value

    @abstractmethod
    def parse(
        self, payload: Any, config: DataSourceConfig, observed_at: float
    ) -> PriceRecord:
        """Build a PriceRecord from a decoded JSON payload."""
        ...


class CoinGeckoPriceNormalizer(Normalizer):
    """/simple/price payload: {"<coin_id>": {"usd": 1.2, "usd_24h_change": -3.1}}.

    Parse options: ``coin_id`` (required), ``vs_currency`` (default "usd").
    """

    kind = SourceKind.COINGECKO_PRICE.value

    def parse(self, payload, config, observed_at):
        coin_id = self.option(config, "coin_id")
        vs = self.option(config, "vs_currency", "usd")
        quote = _path(payload, coin_id)
        if not isinstance(quote, dict):
            raise ParseError(config.source_key, f"coin {coin_id!r} not in payload")
        return PriceRecord(
            token=config.token,
            price=self.required(config, quote.get(vs), vs),
            source_key=config.source_key,
            observed_at=observed_at,
            change_24h=_to_decimal(quote.get(f"{vs}_24h_change")),
            volume_24h=_to_decimal(quote.get(f"{vs}_24h_vol")),
        )


class BinanceTickerNormalizer(Normalizer):
    """/ticker/price ({"symbol", "price"}) or /ticker/24hr ({"lastPrice", ...})."""

    kind = SourceKind.BINANCE_TICKER.value

    def parse(self, payload, config, observed_at):
        if not isinstance(payload, dict):
            raise ParseError(config.source_key, "expected a ticker object")
        raw_price = payload.get("price", payload.get("lastPrice"))
        return PriceRecord(
            token=config.token,
            price=self.required(config, raw_price, "price"),
            source_key=config.source_key,
            observed_at=observed_at,
            change_24h=_to_decimal(payload.get("priceChangePercent")),
            volume_24h=_to_decimal(payload.get("quoteVolume")),
        )


class DexScreenerPairNormalizer(Normalizer):
    """/latest/dex/pairs payload: {"pair": {...}} or {"pairs": [{...}, ...]}."""

    kind = SourceKind.DEXSCREENER_PAIR.value

    def parse(self, payload, config, observed_at):
        pair = _path(payload, "pair")
        if pair is None:
            pair = _path(payload, "pairs", 0)
        if not isinstance(pair, dict):
            raise ParseError(config.source_key, "no pair in payload")
        return PriceRecord(
            token=config.token,
            price=self.required(config, pair.get("priceUsd"), "priceUsd"),
            source_key=config.source_key,
            observed_at=observed_at,
            change_24h=_to_decimal(_path(pair, "priceChange", "h24")),
            volume_24h=_to_decimal(_path(pair, "volume", "h24")),
            tvl=_to_decimal(_path(pair, "liquidity", "usd")),
        )


class DefiLlamaTvlNormalizer(Normalizer):
    """/protocols payload: a list of protocol objects. Parse option ``protocol`` (slug)."""

    kind = SourceKind.DEFILLAMA_TVL.value

    def parse(self, payload, config, observed_at):
        slug = self.option(config, "protocol")
        if not isinstance(payload, list):
            raise ParseError(config.source_key, "expected a list of protocols")
        protocol = next(
            (p for p in payload if isinstance(p, dict) and p.get("slug") == slug),
            None,
        )
        if protocol is None:
            raise ParseError(config.source_key, f"protocol {slug!r} not in payload")
        tvl = self.required(config, protocol.get("tvl"), "tvl")
        return PriceRecord(
            token=config.token,
            price=tvl,
            source_key=config.source_key,
            observed_at=observed_at,
            change_24h=_to_decimal(protocol.get("change_1d")),
            tvl=tvl,
        )


class EtherscanGasNormalizer(Normalizer):
    """gastracker/gasoracle payload: {"status": "1", "result": {"ProposeGasPrice": ...}}."""

    kind = SourceKind.ETHERSCAN_GAS.value

    def parse(self, payload, config, observed_at):
        if _path(payload, "status") != "1":
            message = _path(payload, "result") or _path(payload, "message")
            raise ParseError(config.source_key, f"gas oracle error: {message!r}")
        return PriceRecord(
            token=config.token,
            price=self.required(
                config, _path(payload, "result", "ProposeGasPrice"), "ProposeGasPrice"
            ),
            source_key=config.source_key,
            observed_at=observed_at,
        )


class NormalizerRegistry:
    """Open mapping from source kind to Normalizer."""

    def __init__(self, normalizers: list[Normalizer] | None = None) -> None:
        self._normalizers: dict[str, Normalizer] = {}
        for normalizer in normalizers or []:
            self.register(normalizer)

    def register(self, normalizer: Normalizer) -> None:
        """Register a normalizer under its kind.

        Raises:
            ConfigError: If the kind is already registered.
        """
        kind = str(normalizer.kind)
        if kind in self._normalizers:
            raise ConfigError(f"normalizer already registered for kind {kind!r}")
        self._normalizers[kind] = normalizer

    def supports(self, kind: str) -> bool:
        return kind in self._normalizers

    def kinds(self) -> list[str]:
        return sorted(self._normalizers)

    def normalize(
        self, body: str, config: DataSourceConfig, observed_at: float
    ) -> PriceRecord:
        """Decode ``body`` as JSON and parse it with the kind's normalizer.

        Raises:
            ParseError: If the body is not JSON or the normalizer rejects it.
            ConfigError: If no normalizer is registered for the kind.
        """
        normalizer = self._normalizers.get(config.kind)
        if normalizer is None:
            raise ConfigError(f"no normalizer registered for kind {config.kind!r}")
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            raise ParseError(config.source_key, f"payload is not JSON: {e}") from e
        return normalizer.parse(payload, config, observed_at)


def default_normalizers() -> NormalizerRegistry:
    """Registry with every built-in source kind."""
    return NormalizerRegistry(
        [
            CoinGeckoPriceNormalizer(),
            BinanceTickerNormalizer(),
            DexScreenerPairNormalizer(),
            DefiLlamaTvlNormalizer(),
            EtherscanGasNormalizer(),
        ]
    )
