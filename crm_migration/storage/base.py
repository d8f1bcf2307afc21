"""Repository interfaces for migration state."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from ..models.migration import Migration, MigrationStatus
from ..models.record import MigrationRecord, RecordStatus
from ..models.schema import FieldMapping, MappingTemplate


class MigrationRepo(ABC):
    """Persistence for migrations and their mapping sets."""

    @abstractmethod
    def create(self, migration: Migration) -> Migration:
        pass

    @abstractmethod
    def get(self, migration_id: str) -> Optional[Migration]:
        """Return a snapshot of the migration, None if unknown."""
        pass

    @abstractmethod
    def list(self, limit: Optional[int] = 50) -> List[Migration]:
        """Newest first; a limit of None returns every migration."""
        pass

    @abstractmethod
    def update(self, migration_id: str, **changes: Any) -> Migration:
        """Set attributes on a migration and bump updated_at."""
        pass

    @abstractmethod
    def transition(
        self,
        migration_id: str,
        from_states: Iterable[MigrationStatus],
        to_state: MigrationStatus,
        **changes: Any
    ) -> Optional[Migration]:
        """
        Compare-and-set the status.

        Returns:
            The updated migration, or None if the current status was not in
            from_states (nothing is changed in that case)
        """
        pass

    @abstractmethod
    def increment(self, migration_id: str, migrated: int = 0, failed: int = 0) -> Migration:
        """Atomically bump the migrated/failed counters."""
        pass

    @abstractmethod
    def replace_mappings(self, migration_id: str, mappings: List[FieldMapping]) -> List[FieldMapping]:
        """Delete the mapping set and insert the new one."""
        pass

    @abstractmethod
    def get_mappings(self, migration_id: str) -> List[FieldMapping]:
        pass


class RecordRepo(ABC):
    """Persistence for migration records."""

    @abstractmethod
    def bulk_create(self, records: List[MigrationRecord]) -> int:
        pass

    @abstractmethod
    def list(
        self,
        migration_id: str,
        status: Optional[RecordStatus] = None,
        limit: Optional[int] = None
    ) -> List[MigrationRecord]:
        """Records ordered by record_index."""
        pass

    @abstractmethod
    def count(self, migration_id: str, status: Optional[RecordStatus] = None) -> int:
        pass

    @abstractmethod
    def update(
        self,
        record_id: str,
        expected_status: Optional[RecordStatus] = None,
        **changes: Any
    ) -> Optional[MigrationRecord]:
        """
        Update a record, optionally only if its status is expected_status.

        Returns:
            The updated record, or None if the status did not match
        """
        pass


class TemplateRepo(ABC):
    """Persistence for mapping templates."""

    @abstractmethod
    def create(self, template: MappingTemplate) -> MappingTemplate:
        pass

    @abstractmethod
    def get(self, template_id: str) -> Optional[MappingTemplate]:
        pass

    @abstractmethod
    def list(self, source_crm: Optional[str] = None) -> List[MappingTemplate]:
        """Most used first."""
        pass

    @abstractmethod
    def increment_usage(self, template_id: str) -> MappingTemplate:
        pass


class ConnectorRepo(ABC):
    """Read access to the connector catalog."""

    @abstractmethod
    def list(self) -> List[Any]:
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def field_definitions(self, key: Optional[str]) -> Dict[str, Dict[str, Any]]:
        pass
