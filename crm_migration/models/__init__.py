"""Data models for the migration engine."""

from .schema import (
    CANONICAL_SCHEMA,
    Connector,
    FieldMapping,
    FieldType,
    MappingTemplate,
    ParsedField,
    TableSpec,
    TransformKind,
)
from .migration import (
    Migration,
    MigrationStatus,
    TERMINAL_STATUSES,
)
from .record import (
    DuplicateMatch,
    MigrationRecord,
    RecordStatus,
    ValidationIssue,
)

__all__ = [
    "CANONICAL_SCHEMA",
    "Connector",
    "FieldMapping",
    "FieldType",
    "MappingTemplate",
    "ParsedField",
    "TableSpec",
    "TransformKind",
    "Migration",
    "MigrationStatus",
    "TERMINAL_STATUSES",
    "DuplicateMatch",
    "MigrationRecord",
    "RecordStatus",
    "ValidationIssue",
]
