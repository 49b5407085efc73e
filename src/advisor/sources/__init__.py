"""Market data sources -- configuration registry, fetcher, normalizers and refresh scheduler."""

from advisor.sources.fetcher import RawPayload, SourceFetcher, resolve_placeholders
from advisor.sources.normalizers import (
    Normalizer,
    NormalizerRegistry,
    default_normalizers,
)
from advisor.sources.registry import SourceDocument, SourceRegistry
from advisor.sources.scheduler import (
    FetchOutcome,
    Scheduler,
    backoff_delay,
    next_due_at,
)

__all__ = [
    "FetchOutcome",
    "Normalizer",
    "NormalizerRegistry",
    "RawPayload",
    "Scheduler",
    "SourceDocument",
    "SourceFetcher",
    "SourceRegistry",
    "backoff_delay",
    "default_normalizers",
    "next_due_at",
    "resolve_placeholders",
]
