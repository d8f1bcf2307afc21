"""Migration models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
import uuid


class MigrationStatus(str, Enum):
    """Status of a migration."""
    PENDING = "pending"
    MAPPING = "mapping"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ROLLBACK = "rollback"  # Rolled back; terminal

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    MigrationStatus.COMPLETED,
    MigrationStatus.FAILED,
    MigrationStatus.CANCELLED,
    MigrationStatus.ROLLBACK,
})


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Migration:
    """A migration of one uploaded CRM export into the destination."""
    name: str
    source_crm: str
    source_file_type: str = "csv"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: MigrationStatus = MigrationStatus.PENDING

    # Progress
    total_records: int = 0
    migrated_records: int = 0
    failed_records: int = 0
    can_rollback: bool = True

    # Timing
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Config blob: raw content preview, analysis, template, clone source
    config: Dict[str, Any] = field(default_factory=dict)

    warnings: List[str] = field(default_factory=list)
    error_log: List[Dict[str, Any]] = field(default_factory=list)
    statistics: Dict[str, Any] = field(default_factory=dict)
    rollback_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def progress(self) -> float:
        """Processed share of records, 0-100."""
        if not self.total_records:
            return 0.0
        done = self.migrated_records + self.failed_records
        return round(done / self.total_records * 100, 1)

    @property
    def duration_ms(self) -> Optional[int]:
        """Wall time between start and finish in milliseconds."""
        if self.started_at and self.completed_at:
            return int((self.completed_at - self.started_at).total_seconds() * 1000)
        return None

    def to_dict(self, include_config: bool = False) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data = {
            "id": self.id,
            "name": self.name,
            "source_crm": self.source_crm,
            "source_file_type": self.source_file_type,
            "status": self.status.value,
            "total_records": self.total_records,
            "migrated_records": self.migrated_records,
            "failed_records": self.failed_records,
            "progress": self.progress,
            "can_rollback": self.can_rollback,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "warnings": self.warnings,
            "error_log": self.error_log,
            "statistics": self.statistics,
            "rollback_data": self.rollback_data,
        }
        if include_config:
            data["config"] = self.config
        return data
