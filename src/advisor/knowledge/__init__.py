"""Knowledge/Strategy Store -- user-scoped strategies and knowledge with tag/text search and bulk import."""

from advisor.knowledge.importer import (
    DocumentOutcome,
    ImportReport,
    KnowledgeDocument,
    KnowledgeImporter,
    StrategyDocument,
)
from advisor.knowledge.store import KnowledgeStore, SearchResults
from advisor.search import SearchQuery

__all__ = [
    "DocumentOutcome",
    "ImportReport",
    "KnowledgeDocument",
    "KnowledgeImporter",
    "KnowledgeStore",
    "SearchQuery",
    "SearchResults",
    "StrategyDocument",
]
