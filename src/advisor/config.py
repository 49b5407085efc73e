"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    """Refresh scheduler parameters.

    Controls concurrency against external feeds, per-fetch timeout and the
    exponential backoff cap applied after consecutive failures.
    All fields configurable via SCHEDULER_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    max_concurrency: int = 4  # simultaneous fetches across all sources
    fetch_timeout_seconds: float = 10.0
    backoff_cap: int = 8  # max multiple of the refresh interval
    tick_seconds: float = 15.0  # how often the loop looks for due sources
    min_refresh_interval_seconds: int = 60


class HistorySettings(BaseSettings):
    """Price history and trend detection parameters."""

    model_config = SettingsConfigDict(env_prefix="HISTORY_")

    short_window: int = 5
    long_window: int = 20
    neutral_zone: Decimal = Decimal("0.005")  # +/-0.5% counts as flat
    preload_limit: int = 500  # records per token restored at start-up

    @model_validator(mode="after")
    def _check_windows(self) -> "HistorySettings":
        if self.short_window < 1:
            raise ValueError(f"short_window must be >= 1, got {self.short_window}")
        if self.short_window > self.long_window:
            raise ValueError("short_window must not exceed long_window")
        return self


class RecommendationSettings(BaseSettings):
    """Recommendation engine thresholds and confidence weighting.

    ``condition_threshold`` is the relative gap between the short and long
    moving averages beyond which the market is tagged oversold/overbought.
    ``magnitude_cap`` is the gap at which trend magnitude saturates to 1.
    """

    model_config = SettingsConfigDict(env_prefix="RECOMMEND_")

    condition_threshold: Decimal = Decimal("0.01")
    magnitude_cap: Decimal = Decimal("0.05")
    trend_weight: Decimal = Decimal("0.6")
    corroboration_weight: Decimal = Decimal("0.4")
    accumulation_keywords: list[str] = ["accumulation", "dca", "dollar cost"]
    profit_taking_keywords: list[str] = [
        "profit taking",
        "profit-taking",
        "take profit",
        "distribution",
    ]


class StorageSettings(BaseSettings):
    """Persistence backend selection."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    backend: Literal["memory", "sqlite"] = "sqlite"
    db_path: str = "data/advisor.db"


class ApiSettings(BaseSettings):
    """JSON API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    default_owner: str = "default"
    sources_file: str | None = None  # JSON list of source documents
    strategies_dir: str | None = None  # imported for default_owner at start-up
    scheduler: SchedulerSettings = SchedulerSettings()
    history: HistorySettings = HistorySettings()
    recommendation: RecommendationSettings = RecommendationSettings()
    storage: StorageSettings = StorageSettings()
    api: ApiSettings = ApiSettings()
