"""Destination stores for migrated rows."""

from .base import DestinationStore, RollbackResult
from .memory_store import InMemoryDestinationStore
from .sql_store import SQLDestinationStore

__all__ = [
    "DestinationStore",
    "RollbackResult",
    "InMemoryDestinationStore",
    "SQLDestinationStore",
]
