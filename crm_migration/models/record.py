"""Record models for migration data."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
import uuid


class RecordStatus(str, Enum):
    """Status of a record during migration."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


@dataclass
class ValidationIssue:
    """A validation finding on a record."""
    field: str
    message: str
    rule: str = "validation"
    severity: str = "error"  # error, warning
    value: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "field": self.field,
            "message": self.message,
            "rule": self.rule,
            "severity": self.severity,
            "value": self.value,
        }


@dataclass
class DuplicateMatch:
    """A possible duplicate of a record, inside the import or in the destination."""
    record_index: int
    field: str
    value: Any
    match_type: str  # internal, external
    similarity: float = 1.0
    matched_record_index: Optional[int] = None
    matched_id: Optional[str] = None  # Existing destination row

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "record_index": self.record_index,
            "field": self.field,
            "value": self.value,
            "match_type": self.match_type,
            "similarity": round(self.similarity, 3),
            "matched_record_index": self.matched_record_index,
            "matched_id": self.matched_id,
        }


@dataclass
class MigrationRecord:
    """One source record of a migration and the outcome of loading it."""
    migration_id: str
    record_index: int
    source_data: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: RecordStatus = RecordStatus.PENDING

    # Outcome
    target_table: Optional[str] = None
    target_record_id: Optional[str] = None
    target_rows: List[Dict[str, str]] = field(default_factory=list)  # [{table, id}]
    target_data: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None

    # Pre-flight checks
    validation_errors: List[ValidationIssue] = field(default_factory=list)
    validation_warnings: List[ValidationIssue] = field(default_factory=list)
    is_duplicate: bool = False
    duplicate_of: Optional[str] = None

    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "migration_id": self.migration_id,
            "record_index": self.record_index,
            "source_data": self.source_data,
            "status": self.status.value,
            "target_table": self.target_table,
            "target_record_id": self.target_record_id,
            "target_rows": self.target_rows,
            "target_data": self.target_data,
            "error_message": self.error_message,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "validation_errors": [e.to_dict() for e in self.validation_errors],
            "validation_warnings": [w.to_dict() for w in self.validation_warnings],
            "is_duplicate": self.is_duplicate,
            "duplicate_of": self.duplicate_of,
            "created_at": self.created_at.isoformat(),
        }
