"""Record processor: transforms and loads the pending records of a migration."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict

from .exceptions import RecordError
from .loaders.base import DestinationStore
from .models.migration import MigrationStatus
from .models.record import MigrationRecord, RecordStatus
from .services.transformer import TransformEngine
from .storage.base import MigrationRepo, RecordRepo

logger = logging.getLogger(__name__)

MAX_ERROR_LOG = 100


@dataclass
class ProcessResult:
    """Counts from one processing pass."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    stopped_status: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "stopped_status": self.stopped_status,
        }


class RecordProcessor:
    """
    Processes the pending records of a running migration.

    Each record is transformed and written in its own destination
    transaction. A record that fails is marked failed and processing moves
    on. Between records the migration status is re-read, so pause and cancel
    take effect before the next record.
    """

    def __init__(
        self,
        migrations: MigrationRepo,
        records: RecordRepo,
        destination: DestinationStore,
        transformer: TransformEngine = None
    ):
        self.migrations = migrations
        self.records = records
        self.destination = destination
        self.transformer = transformer or TransformEngine()

    async def process(self, migration_id: str) -> ProcessResult:
        """
        Process pending records until done, paused or cancelled.

        Args:
            migration_id: Migration to process

        Returns:
            ProcessResult for this pass
        """
        result = ProcessResult()
        migration = self.migrations.get(migration_id)
        if migration is None or migration.status != MigrationStatus.RUNNING:
            result.stopped_status = migration.status.value if migration else "missing"
            return result

        mappings = self.migrations.get_mappings(migration_id)
        pending = self.records.list(migration_id, status=RecordStatus.PENDING)
        logger.info(f"Processing {len(pending)} pending records for migration {migration_id}")

        for record in pending:
            current = self.migrations.get(migration_id)
            if current is None or current.status != MigrationStatus.RUNNING:
                result.stopped_status = current.status.value if current else "missing"
                logger.info(f"Migration {migration_id} is {result.stopped_status}; stopping")
                return result

            success = await self._process_record(migration_id, record, mappings)
            if success is None:
                continue
            result.processed += 1
            if success:
                result.succeeded += 1
            else:
                result.failed += 1

            await asyncio.sleep(0)

        if self.records.count(migration_id, RecordStatus.PENDING) == 0:
            completed = self.migrations.transition(
                migration_id,
                [MigrationStatus.RUNNING],
                MigrationStatus.COMPLETED,
                completed_at=datetime.utcnow(),
            )
            if completed:
                logger.info(
                    f"Migration {migration_id} completed: {completed.migrated_records} migrated, "
                    f"{completed.failed_records} failed"
                )
        current = self.migrations.get(migration_id)
        result.stopped_status = current.status.value if current else "missing"
        logger.info(f"Processing pass for migration {migration_id} finished: {result.to_dict()}")
        return result

    async def _process_record(self, migration_id: str, record: MigrationRecord, mappings) -> Any:
        """
        Transform and write one record.

        Returns:
            True on success, False on failure, None if the record was no
            longer pending
        """
        try:
            rows = self.transformer.build_rows(record.source_data, mappings)
            written = await asyncio.to_thread(self.destination.write_record, rows)
        except RecordError as e:
            logger.warning(f"Migration {migration_id} record {record.record_index} failed: {e}")
            return self._mark_failed(migration_id, record, str(e))
        except Exception as e:
            logger.exception(f"Migration {migration_id} record {record.record_index} crashed")
            return self._mark_failed(migration_id, record, f"Unexpected error: {e}")

        updated = self.records.update(
            record.id,
            expected_status=RecordStatus.PENDING,
            status=RecordStatus.SUCCESS,
            target_table=written[0]["table"],
            target_record_id=written[0]["id"],
            target_rows=written,
            target_data=rows,
            processed_at=datetime.utcnow(),
        )
        if updated is None:
            # Lost the race; undo our rows
            await asyncio.to_thread(self.destination.rollback, written)
            return None
        self.migrations.increment(migration_id, migrated=1)
        return True

    def _mark_failed(self, migration_id: str, record: MigrationRecord, message: str):
        updated = self.records.update(
            record.id,
            expected_status=RecordStatus.PENDING,
            status=RecordStatus.FAILED,
            error_message=message,
            processed_at=datetime.utcnow(),
        )
        if updated is None:
            return None

        migration = self.migrations.increment(migration_id, failed=1)
        if len(migration.error_log) < MAX_ERROR_LOG:
            self.migrations.update(
                migration_id,
                error_log=migration.error_log + [{
                    "record_index": record.record_index,
                    "error": message,
                    "timestamp": datetime.utcnow().isoformat(),
                }],
            )
        return False

    def mark_failed(self, migration_id: str, error: str) -> None:
        """Fail a migration whose processing crashed."""
        migration = self.migrations.get(migration_id)
        if migration is None:
            return
        self.migrations.transition(
            migration_id,
            [MigrationStatus.RUNNING, MigrationStatus.PAUSED],
            MigrationStatus.FAILED,
            completed_at=datetime.utcnow(),
            error_log=migration.error_log + [{
                "error": error,
                "timestamp": datetime.utcnow().isoformat(),
            }],
        )
