"""Repositories for migration state."""

from .base import ConnectorRepo, MigrationRepo, RecordRepo, TemplateRepo
from .memory import InMemoryMigrationRepo, InMemoryRecordRepo, InMemoryTemplateRepo

__all__ = [
    "ConnectorRepo",
    "MigrationRepo",
    "RecordRepo",
    "TemplateRepo",
    "InMemoryMigrationRepo",
    "InMemoryRecordRepo",
    "InMemoryTemplateRepo",
]
