"""Source configuration registry.

Holds the configured DataSourceConfig entries keyed by (owner, source key).
Every configuration is validated on registration; invalid intervals,
unknown kinds and duplicate keys raise ConfigError before any scheduling
happens. The scheduler reads an immutable snapshot once per cycle.

Source documents follow the shape of the data_sources table:
    {
        "source_id": "binance_btc_price",
        "name": "Binance BTC Price Feed",
        "source_type": "binance_ticker",
        "token": "BTC/USDT",
        "refresh_interval_minutes": 1,
        "config": {"url": "...", "method": "GET", "headers": {...}},
        "parse": {...}
    }
"""

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from advisor.exceptions import ConfigError
from advisor.logging import get_logger
from advisor.models import DataSourceConfig, RequestTemplate
from advisor.sources.normalizers import NormalizerRegistry

logger = get_logger(__name__)


class RequestDocument(BaseModel):
    url: str = Field(min_length=1)
    method: str = "GET"
    headers: dict[str, str] = {}


class SourceDocument(BaseModel):
    """External (JSON) form of one source configuration."""

    source_id: str = Field(min_length=1)
    source_type: str = Field(min_length=1)
    token: str = Field(min_length=1)
    refresh_interval_minutes: float
    config: RequestDocument
    parse: dict[str, Any] = {}
    name: str = ""
    description: str = ""

    def to_config(self, owner: str) -> DataSourceConfig:
        return DataSourceConfig(
            owner=owner,
            source_key=self.source_id,
            kind=self.source_type,
            token=self.token,
            refresh_interval_seconds=int(self.refresh_interval_minutes * 60),
            request=RequestTemplate(
                url=self.config.url,
                method=self.config.method.upper(),
                headers=dict(self.config.headers),
            ),
            parse_options=dict(self.parse),
            name=self.name,
            description=self.description,
        )


class SourceRegistry:
    """Validated set of configured data sources.

    Args:
        normalizers: Registry used to reject kinds nobody can parse.
        min_interval_seconds: Smallest accepted refresh interval.
    """

    def __init__(
        self, normalizers: NormalizerRegistry, min_interval_seconds: int = 60
    ) -> None:
        self._normalizers = normalizers
        self._min_interval = min_interval_seconds
        self._sources: dict[tuple[str, str], DataSourceConfig] = {}

    def _validate(self, config: DataSourceConfig) -> None:
        if not config.owner or not config.source_key:
            raise ConfigError("source owner and key must be non-empty")
        if config.refresh_interval_seconds < max(self._min_interval, 1):
            raise ConfigError(
                f"{config.source_key}: refresh interval "
                f"{config.refresh_interval_seconds}s is below the "
                f"{self._min_interval}s minimum"
            )
        if not self._normalizers.supports(config.kind):
            raise ConfigError(
                f"{config.source_key}: unknown source kind {config.kind!r} "
                f"(known: {', '.join(self._normalizers.kinds())})"
            )

    def register(self, config: DataSourceConfig) -> None:
        """Add a new source.

        Raises:
            ConfigError: On an invalid configuration or a duplicate (owner, key).
        """
        self._validate(config)
        if config.identity in self._sources:
            raise ConfigError(
                f"duplicate source key {config.source_key!r} for owner {config.owner!r}"
            )
        self._sources[config.identity] = config
        logger.info(
            "source_registered",
            owner=config.owner,
            source_key=config.source_key,
            kind=config.kind,
            interval_seconds=config.refresh_interval_seconds,
        )

    def replace(self, config: DataSourceConfig) -> None:
        """Replace an existing source's configuration.

        Raises:
            ConfigError: If the configuration is invalid or the source is unknown.
        """
        self._validate(config)
        if config.identity not in self._sources:
            raise ConfigError(f"unknown source {config.source_key!r}")
        self._sources[config.identity] = config
        logger.info("source_updated", owner=config.owner, source_key=config.source_key)

    def deconfigure(self, owner: str, source_key: str) -> bool:
        """Remove a source. Returns False if it was not configured."""
        removed = self._sources.pop((owner, source_key), None) is not None
        if removed:
            logger.info("source_deconfigured", owner=owner, source_key=source_key)
        return removed

    def get(self, owner: str, source_key: str) -> DataSourceConfig | None:
        return self._sources.get((owner, source_key))

    def snapshot(self) -> tuple[DataSourceConfig, ...]:
        """Immutable view of all sources, ordered by (owner, key)."""
        return tuple(self._sources[k] for k in sorted(self._sources))

    def tokens(self) -> list[str]:
        return sorted({c.token for c in self._sources.values()})

    def __len__(self) -> int:
        return len(self._sources)

    def load_documents(self, owner: str, documents: list[dict[str, Any]]) -> int:
        """Validate and register every document. All-or-nothing.

        Raises:
            ConfigError: On the first invalid document; nothing is registered.
        """
        configs: list[DataSourceConfig] = []
        seen: set[str] = set()
        for i, document in enumerate(documents):
            try:
                config = SourceDocument.model_validate(document).to_config(owner)
            except ValidationError as e:
                raise ConfigError(f"source document #{i}: {e}") from e
            self._validate(config)
            if config.source_key in seen or config.identity in self._sources:
                raise ConfigError(f"duplicate source key {config.source_key!r}")
            seen.add(config.source_key)
            configs.append(config)

        for config in configs:
            self.register(config)
        return len(configs)

    def load_file(self, owner: str, path: str | Path) -> int:
        """Load a JSON file holding a list of source documents."""
        try:
            documents = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"cannot read sources file {path}: {e}") from e
        if not isinstance(documents, list):
            raise ConfigError(f"sources file {path} must hold a JSON list")
        return self.load_documents(owner, documents)
