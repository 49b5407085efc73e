"""Persistence collaborator: abstract interface plus in-memory and SQLite backends."""

from advisor.config import StorageSettings
from advisor.persistence.base import Persistence
from advisor.persistence.database import AdvisorDatabase
from advisor.persistence.memory import InMemoryPersistence
from advisor.persistence.sqlite import SqlitePersistence


def create_persistence(settings: StorageSettings) -> Persistence:
    """Build the backend selected by STORAGE_BACKEND (not yet connected)."""
    if settings.backend == "memory":
        return InMemoryPersistence()
    return SqlitePersistence(AdvisorDatabase(settings.db_path))


__all__ = [
    "AdvisorDatabase",
    "InMemoryPersistence",
    "Persistence",
    "SqlitePersistence",
    "create_persistence",
]
