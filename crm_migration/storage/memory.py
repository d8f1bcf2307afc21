"""In-memory repositories."""

import copy
import logging
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..exceptions import NotFoundError
from ..models.migration import Migration, MigrationStatus
from ..models.record import MigrationRecord, RecordStatus
from ..models.schema import FieldMapping, MappingTemplate
from .base import MigrationRepo, RecordRepo, TemplateRepo

logger = logging.getLogger(__name__)


class InMemoryMigrationRepo(MigrationRepo):
    """Migrations kept in a dict; reads and writes go through copies."""

    def __init__(self):
        self._lock = threading.RLock()
        self._migrations: Dict[str, Migration] = {}
        self._mappings: Dict[str, List[FieldMapping]] = {}

    def create(self, migration: Migration) -> Migration:
        with self._lock:
            self._migrations[migration.id] = copy.deepcopy(migration)
            self._mappings.setdefault(migration.id, [])
            return copy.deepcopy(migration)

    def get(self, migration_id: str) -> Optional[Migration]:
        with self._lock:
            migration = self._migrations.get(migration_id)
            return copy.deepcopy(migration) if migration else None

    def list(self, limit: Optional[int] = 50) -> List[Migration]:
        with self._lock:
            migrations = sorted(self._migrations.values(), key=lambda m: m.created_at, reverse=True)
            return [copy.deepcopy(m) for m in migrations[:limit]]

    def _require(self, migration_id: str) -> Migration:
        migration = self._migrations.get(migration_id)
        if migration is None:
            raise NotFoundError(f"Migration not found: {migration_id}")
        return migration

    def update(self, migration_id: str, **changes: Any) -> Migration:
        with self._lock:
            migration = self._require(migration_id)
            for key, value in changes.items():
                setattr(migration, key, copy.deepcopy(value))
            migration.updated_at = datetime.utcnow()
            return copy.deepcopy(migration)

    def transition(
        self,
        migration_id: str,
        from_states: Iterable[MigrationStatus],
        to_state: MigrationStatus,
        **changes: Any
    ) -> Optional[Migration]:
        with self._lock:
            migration = self._require(migration_id)
            if migration.status not in set(from_states):
                return None
            logger.debug(f"Migration {migration_id}: {migration.status.value} -> {to_state.value}")
            return self.update(migration_id, status=to_state, **changes)

    def increment(self, migration_id: str, migrated: int = 0, failed: int = 0) -> Migration:
        with self._lock:
            migration = self._require(migration_id)
            migration.migrated_records += migrated
            migration.failed_records += failed
            migration.updated_at = datetime.utcnow()
            return copy.deepcopy(migration)

    def replace_mappings(self, migration_id: str, mappings: List[FieldMapping]) -> List[FieldMapping]:
        with self._lock:
            self._require(migration_id)
            self._mappings[migration_id] = copy.deepcopy(list(mappings))
            return copy.deepcopy(self._mappings[migration_id])

    def get_mappings(self, migration_id: str) -> List[FieldMapping]:
        with self._lock:
            self._require(migration_id)
            return copy.deepcopy(self._mappings.get(migration_id, []))


class InMemoryRecordRepo(RecordRepo):
    """Migration records kept in a dict, indexed by migration."""

    def __init__(self):
        self._lock = threading.RLock()
        self._records: Dict[str, MigrationRecord] = {}
        self._by_migration: Dict[str, List[str]] = {}

    def bulk_create(self, records: List[MigrationRecord]) -> int:
        with self._lock:
            for record in records:
                self._records[record.id] = copy.deepcopy(record)
                self._by_migration.setdefault(record.migration_id, []).append(record.id)
            return len(records)

    def list(
        self,
        migration_id: str,
        status: Optional[RecordStatus] = None,
        limit: Optional[int] = None
    ) -> List[MigrationRecord]:
        with self._lock:
            records = [self._records[rid] for rid in self._by_migration.get(migration_id, [])]
            if status is not None:
                records = [r for r in records if r.status == status]
            records.sort(key=lambda r: r.record_index)
            if limit is not None:
                records = records[:limit]
            return [copy.deepcopy(r) for r in records]

    def count(self, migration_id: str, status: Optional[RecordStatus] = None) -> int:
        with self._lock:
            return sum(
                1 for rid in self._by_migration.get(migration_id, [])
                if status is None or self._records[rid].status == status
            )

    def update(
        self,
        record_id: str,
        expected_status: Optional[RecordStatus] = None,
        **changes: Any
    ) -> Optional[MigrationRecord]:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise NotFoundError(f"Record not found: {record_id}")
            if expected_status is not None and record.status != expected_status:
                return None
            for key, value in changes.items():
                setattr(record, key, copy.deepcopy(value))
            return copy.deepcopy(record)


class InMemoryTemplateRepo(TemplateRepo):
    """Mapping templates kept in a dict."""

    def __init__(self):
        self._lock = threading.RLock()
        self._templates: Dict[str, MappingTemplate] = {}

    def create(self, template: MappingTemplate) -> MappingTemplate:
        with self._lock:
            self._templates[template.id] = copy.deepcopy(template)
            return copy.deepcopy(template)

    def get(self, template_id: str) -> Optional[MappingTemplate]:
        with self._lock:
            template = self._templates.get(template_id)
            return copy.deepcopy(template) if template else None

    def list(self, source_crm: Optional[str] = None) -> List[MappingTemplate]:
        with self._lock:
            templates = [
                t for t in self._templates.values()
                if source_crm is None or t.source_crm == source_crm
            ]
            templates.sort(key=lambda t: t.usage_count, reverse=True)
            return [copy.deepcopy(t) for t in templates]

    def increment_usage(self, template_id: str) -> MappingTemplate:
        with self._lock:
            template = self._templates.get(template_id)
            if template is None:
                raise NotFoundError(f"Template not found: {template_id}")
            template.usage_count += 1
            return copy.deepcopy(template)
