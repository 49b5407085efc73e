"""Tag and free-text matching rules for strategy and knowledge search.

Shared by the Knowledge/Strategy Store and the persistence backends so the
AND-semantics filter means the same thing wherever it is evaluated.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from advisor.models import KnowledgeEntry, StrategyEntry

Entry = StrategyEntry | KnowledgeEntry


def normalize_tag(tag: str) -> str:
    """Canonical comparison form of a tag. Stored tags keep their spelling."""
    return tag.strip().casefold()


def normalize_tags(tags: Iterable[str]) -> frozenset[str]:
    return frozenset(normalize_tag(t) for t in tags if t.strip())


@dataclass(frozen=True)
class SearchQuery:
    """Search over one owner's entries.

    ``required_tags`` use AND semantics: every tag must be present.
    ``term`` is a case-insensitive substring of the entry's text.
    ``preferred_tags`` never filter; they only raise an entry's rank.
    """

    term: str | None = None
    required_tags: frozenset[str] = frozenset()
    preferred_tags: frozenset[str] = frozenset()
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must be >= 0, got {self.limit}")


def matches(entry: Entry, required_tags: Iterable[str], term: str | None) -> bool:
    """Return True if ``entry`` has every required tag and contains ``term``."""
    entry_tags = normalize_tags(entry.tags)
    if not normalize_tags(required_tags) <= entry_tags:
        return False
    if term:
        return term.casefold() in entry.searchable_text().casefold()
    return True


def matching_tag_count(entry: Entry, query: SearchQuery) -> int:
    """Number of the entry's tags named by the query (required or preferred)."""
    wanted = normalize_tags(query.required_tags) | normalize_tags(query.preferred_tags)
    return len(normalize_tags(entry.tags) & wanted)


def rank(entries: Iterable[Entry], query: SearchQuery) -> list[Entry]:
    """Order entries by matching tag count desc, updated_at desc, key asc."""
    ranked = sorted(
        entries,
        key=lambda e: (-matching_tag_count(e, query), -e.updated_at, e.key),
    )
    if query.limit is not None:
        return ranked[: query.limit]
    return ranked
