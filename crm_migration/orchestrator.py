"""Migration controller - coordinates analysis, mapping, execution and rollback."""

import csv
import io
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .config import EngineConfig
from .exceptions import NotFoundError, PreconditionError, ValidationError
from .loaders.base import DestinationStore, RollbackResult
from .loaders.memory_store import InMemoryDestinationStore
from .loaders.sql_store import SQLDestinationStore
from .models.migration import Migration, MigrationStatus
from .models.record import MigrationRecord, RecordStatus
from .models.schema import (
    CANONICAL_SCHEMA,
    Connector,
    FieldMapping,
    FieldType,
    MappingTemplate,
    ParsedField,
    duplicate_target_warnings,
)
from .processor import RecordProcessor
from .runner import MigrationRunner
from .services.connector_catalog import ConnectorCatalog
from .services.file_analyzer import FileAnalysis, FileAnalyzer
from .services.llm_inference import HeuristicSuggestionProvider, MappingSuggester, build_provider
from .services.quality import QualityScorer
from .services.templates import TemplateStore
from .services.transformer import TransformEngine
from .services.validator import (
    DEFAULT_DUPLICATE_FIELDS,
    DEFAULT_SIMILARITY_THRESHOLD,
    DuplicateDetector,
    RecordValidator,
)
from .storage.base import MigrationRepo, RecordRepo
from .storage.memory import InMemoryMigrationRepo, InMemoryRecordRepo

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = (MigrationStatus.PENDING, MigrationStatus.MAPPING)
ACTIVE_STATUSES = tuple(s for s in MigrationStatus if not s.is_terminal)
MAX_REPORTED_ISSUES = 100


class MigrationController:
    """
    Coordinates the lifecycle of CRM migrations.

    Handles:
    - File analysis and migration creation
    - Mapping sets, templates and suggestions
    - The status machine (run, pause, resume, cancel, rollback)
    - Pre-flight validation and duplicate checks
    - Reporting (records, stats, history, export)
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        migrations: Optional[MigrationRepo] = None,
        records: Optional[RecordRepo] = None,
        catalog: Optional[ConnectorCatalog] = None,
        templates: Optional[TemplateStore] = None,
        suggester: Optional[MappingSuggester] = None,
        destination: Optional[DestinationStore] = None,
        transformer: Optional[TransformEngine] = None,
        validator: Optional[RecordValidator] = None
    ):
        """
        Initialize the controller.

        Args:
            config: Engine configuration
            migrations: Migration repository
            records: Record repository
            catalog: Connector catalog
            templates: Template library
            suggester: Mapping suggester
            destination: Destination store records are written to
            transformer: Transform engine
            validator: Pre-flight record validator
        """
        self.config = config or EngineConfig()
        self.migrations = migrations or InMemoryMigrationRepo()
        self.records = records or InMemoryRecordRepo()
        self.catalog = catalog or ConnectorCatalog()
        self.templates = templates or TemplateStore()
        self.suggester = suggester or MappingSuggester(fallback=HeuristicSuggestionProvider())
        self.destination = destination or InMemoryDestinationStore()
        self.transformer = transformer or TransformEngine()
        self.validator = validator or RecordValidator()

        self.analyzer = FileAnalyzer(
            catalog=self.catalog,
            suggester=self.suggester,
            scorer=QualityScorer(),
            sample_size=self.config.sample_size,
            sample_values=self.config.sample_values,
        )
        self.processor = RecordProcessor(self.migrations, self.records, self.destination, self.transformer)
        self.runner = MigrationRunner(
            self.processor.process,
            max_workers=self.config.max_workers,
            on_error=self._on_job_error,
        )

    @classmethod
    def from_config(cls, config: EngineConfig) -> "MigrationController":
        """Build a controller with the destination and suggestion provider the config names."""
        if config.database_url:
            destination = SQLDestinationStore.from_url(config.database_url)
        else:
            destination = InMemoryDestinationStore()
            logger.info("Using in-memory destination store")

        return cls(
            config=config,
            suggester=MappingSuggester(build_provider(config), fallback=HeuristicSuggestionProvider()),
            destination=destination,
        )

    async def join(self) -> None:
        """Wait until all submitted migrations have been processed."""
        await self.runner.join()

    async def shutdown(self) -> None:
        await self.runner.shutdown()

    def _on_job_error(self, migration_id: str, error: Exception) -> None:
        self.processor.mark_failed(migration_id, f"Processing crashed: {error}")

    # Catalog and analysis

    def list_connectors(self) -> List[Connector]:
        return self.catalog.list()

    def list_migrations(self, limit: int = 50) -> List[Migration]:
        return self.migrations.list(limit=self._positive_int(limit, "limit"))

    def list_templates(self, source_crm: Optional[str] = None) -> List[MappingTemplate]:
        return self.templates.list(source_crm)

    def analyze_file(self, file_content: str, file_type: str, source_crm: Optional[str] = None) -> FileAnalysis:
        """
        Analyze an uploaded export without creating a migration.

        Raises:
            ValidationError: If content or file type is missing
            ParseError: If the content cannot be parsed
        """
        if file_content is None or not file_type:
            raise ValidationError("file_content and file_type are required")
        return self.analyzer.analyze(file_content, file_type.lower(), source_crm)

    # Migration lifecycle

    def create_migration(
        self,
        name: str,
        source_crm: str,
        file_content: str,
        file_type: str = "csv",
        mappings: Optional[List[Any]] = None
    ) -> Tuple[Migration, List[str]]:
        """
        Create a migration from an uploaded export.

        Records beyond the configured cap are not materialized; the
        migration carries a warning saying so.

        Args:
            name: Migration name
            source_crm: Source connector key
            file_content: Raw csv or json content
            file_type: csv or json
            mappings: Optional initial mapping set

        Returns:
            Tuple of (migration, warnings)
        """
        if not name or not source_crm or not file_content:
            raise ValidationError("name, source_crm and file_content are required")

        file_type = (file_type or "csv").lower()
        field_mappings = self._coerce_mappings(mappings) if mappings else []
        extraction = self.analyzer.parse(file_content, file_type)

        records = extraction.records
        warnings = list(extraction.warnings)
        cap = self.config.record_batch_cap
        if len(records) > cap:
            warnings.append(f"File contains {len(records)} records; only the first {cap} will be migrated")
            records = records[:cap]

        migration = self.migrations.create(Migration(
            name=name,
            source_crm=source_crm,
            source_file_type=file_type,
            total_records=len(records),
            config={
                "raw_content": file_content[:self.config.raw_preview_chars],
                "source_fields": extraction.fields,
            },
            warnings=warnings,
        ))
        self.records.bulk_create([
            MigrationRecord(migration_id=migration.id, record_index=index, source_data=data)
            for index, data in enumerate(records)
        ])

        if field_mappings:
            self.migrations.replace_mappings(migration.id, field_mappings)
            migration = self.migrations.transition(
                migration.id, [MigrationStatus.PENDING], MigrationStatus.MAPPING
            ) or migration

        logger.info(
            f"Created migration {migration.id} '{name}' from {source_crm}: "
            f"{len(records)} records, {len(field_mappings)} mappings"
        )
        return migration, warnings + self._mapping_warnings(migration, field_mappings)

    def update_mappings(self, migration_id: str, mappings: List[Any]) -> Tuple[List[FieldMapping], List[str]]:
        """
        Replace the mapping set of a migration that has not started.

        Returns:
            Tuple of (saved mappings, warnings)

        Raises:
            PreconditionError: If the migration is past the mapping stage
        """
        if mappings is None:
            raise ValidationError("mappings is required")
        migration = self._require_editable(migration_id)
        field_mappings = self._coerce_mappings(mappings)

        saved = self._store_mappings(migration_id, field_mappings)
        logger.info(f"Migration {migration_id}: mapping set replaced ({len(saved)} mappings)")
        return saved, self._mapping_warnings(migration, saved)

    async def run_migration(self, migration_id: str) -> str:
        """
        Start processing a migration in the background.

        Returns:
            Confirmation message; processing continues after the call returns

        Raises:
            ValidationError: If the migration has no mappings
            PreconditionError: If the migration is not in the mapping stage
        """
        migration = self._require(migration_id)
        if not self.migrations.get_mappings(migration_id):
            raise ValidationError("No field mappings defined")

        started = self.migrations.transition(
            migration_id,
            [MigrationStatus.MAPPING],
            MigrationStatus.RUNNING,
            started_at=datetime.utcnow(),
        )
        if started is None:
            raise PreconditionError(f"Cannot run a migration in status '{migration.status.value}'")

        self.runner.submit(migration_id)
        logger.info(f"Migration {migration_id} started with {started.total_records} records")
        return f"Migration started: {started.total_records} records queued"

    def pause_migration(self, migration_id: str) -> Migration:
        migration = self._require(migration_id)
        paused = self.migrations.transition(migration_id, [MigrationStatus.RUNNING], MigrationStatus.PAUSED)
        if paused is None:
            raise PreconditionError(f"Cannot pause a migration in status '{migration.status.value}'")
        logger.info(f"Migration {migration_id} paused")
        return paused

    async def resume_migration(self, migration_id: str) -> Migration:
        """Resume a paused migration; its remaining pending records are processed."""
        migration = self._require(migration_id)
        if not self.migrations.get_mappings(migration_id):
            raise ValidationError("No field mappings defined")

        resumed = self.migrations.transition(migration_id, [MigrationStatus.PAUSED], MigrationStatus.RUNNING)
        if resumed is None:
            raise PreconditionError(f"Cannot resume a migration in status '{migration.status.value}'")

        self.runner.submit(migration_id)
        logger.info(f"Migration {migration_id} resumed")
        return resumed

    def cancel_migration(self, migration_id: str) -> Migration:
        """Cancel a migration. Rows already written stay in the destination."""
        migration = self._require(migration_id)
        cancelled = self.migrations.transition(
            migration_id,
            ACTIVE_STATUSES,
            MigrationStatus.CANCELLED,
            completed_at=datetime.utcnow(),
        )
        if cancelled is None:
            raise PreconditionError(f"Cannot cancel a migration in status '{migration.status.value}'")
        logger.info(f"Migration {migration_id} cancelled")
        return cancelled

    def rollback_migration(self, migration_id: str, rollback_options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Delete the destination rows written by a completed migration.

        Args:
            migration_id: Migration to roll back
            rollback_options: ``{"dry_run": bool}``

        Returns:
            Rollback summary (total, rolled_back, failed, errors)

        Raises:
            PreconditionError: If the migration is not completed or was
                already rolled back
        """
        options = rollback_options or {}
        migration = self._require(migration_id)
        if migration.status != MigrationStatus.COMPLETED or not migration.can_rollback:
            raise PreconditionError(f"Migration in status '{migration.status.value}' cannot be rolled back")

        successes = self.records.list(migration_id, status=RecordStatus.SUCCESS)

        if options.get("dry_run"):
            return {
                **RollbackResult(total=len(successes)).to_dict(),
                "dry_run": True,
                "message": f"Found {len(successes)} records to roll back",
            }

        claimed = self.migrations.transition(
            migration_id,
            [MigrationStatus.COMPLETED],
            MigrationStatus.ROLLBACK,
            can_rollback=False,
        )
        if claimed is None:
            raise PreconditionError("Migration is no longer completed; rollback refused")

        summary = RollbackResult(total=len(successes))
        for record in successes:
            targets = record.target_rows or (
                [{"table": record.target_table, "id": record.target_record_id}]
                if record.target_record_id else []
            )
            result = self.destination.rollback(targets)
            if result.failed:
                summary.failed += 1
                summary.errors.append({
                    "record_id": record.id,
                    "record_index": record.record_index,
                    "error": "; ".join(e["error"] for e in result.errors),
                })
                continue
            self.records.update(record.id, expected_status=RecordStatus.SUCCESS, status=RecordStatus.ROLLED_BACK)
            summary.rolled_back += 1

        self.migrations.update(
            migration_id,
            rollback_data={
                "executed_at": datetime.utcnow().isoformat(),
                "summary": summary.to_dict(),
            },
        )
        logger.info(
            f"Migration {migration_id} rolled back: {summary.rolled_back}/{summary.total} records, "
            f"{summary.failed} failed"
        )
        return summary.to_dict()

    # Reporting

    def list_records(self, migration_id: str, status: Optional[str] = None, limit: int = 100) -> List[MigrationRecord]:
        self._require(migration_id)
        record_status = None
        if status:
            try:
                record_status = RecordStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown record status: {status}")
        return self.records.list(migration_id, status=record_status, limit=self._positive_int(limit, "limit"))

    def get_status(self, migration_id: str) -> Migration:
        return self._require(migration_id)

    def get_stats(self) -> Dict[str, Any]:
        """Aggregate statistics over all migrations."""
        migrations = self.migrations.list(limit=None)
        total = len(migrations)
        completed = sum(1 for m in migrations if m.status == MigrationStatus.COMPLETED)
        failed = sum(1 for m in migrations if m.status == MigrationStatus.FAILED)
        durations = [m.duration_ms for m in migrations if m.duration_ms is not None]

        by_crm: Dict[str, int] = {}
        for m in migrations:
            by_crm[m.source_crm] = by_crm.get(m.source_crm, 0) + 1

        return {
            "total_migrations": total,
            "completed_migrations": completed,
            "failed_migrations": failed,
            "total_records_migrated": sum(m.migrated_records for m in migrations),
            "success_rate": round(completed / total * 100) if total else 0,
            "avg_migration_time_ms": round(sum(durations) / len(durations)) if durations else 0,
            "migrations_by_crm": by_crm,
        }

    def get_migration_history(self, migration_id: str) -> Dict[str, Any]:
        """Timeline of a migration's events, oldest first."""
        migration = self._require(migration_id)
        events: List[Tuple[datetime, str, Dict[str, Any]]] = [
            (migration.created_at, "created", {"name": migration.name, "source_crm": migration.source_crm}),
        ]

        if migration.started_at:
            events.append((migration.started_at, "started", {"total_records": migration.total_records}))

        if migration.completed_at:
            finished = migration.status in (MigrationStatus.COMPLETED, MigrationStatus.ROLLBACK)
            events.append((
                migration.completed_at,
                "completed" if finished else migration.status.value,
                {"migrated": migration.migrated_records, "failed": migration.failed_records},
            ))

        executed_at = migration.rollback_data.get("executed_at")
        if executed_at:
            events.append((datetime.fromisoformat(executed_at), "rollback", migration.rollback_data.get("summary", {})))

        for entry in migration.statistics.get("transformations", []):
            events.append((
                datetime.fromisoformat(entry["applied_at"]),
                "transformed",
                {"records": entry["records"], "types": entry["types"]},
            ))

        for entry in migration.error_log:
            timestamp = entry.get("timestamp")
            if not timestamp:
                continue
            events.append((
                datetime.fromisoformat(timestamp),
                "error",
                {"message": entry.get("error"), "record_index": entry.get("record_index")},
            ))

        events.sort(key=lambda e: e[0])
        return {
            "migration_id": migration_id,
            "history": [
                {"event": event, "timestamp": timestamp.isoformat(), "details": details}
                for timestamp, event, details in events
            ],
            "current_status": migration.status.value,
            "can_rollback": migration.can_rollback,
        }

    def export_migration(self, migration_id: str, export_format: str = "json") -> Dict[str, Any]:
        """
        Export a migration's summary, mappings and records.

        Args:
            migration_id: Migration to export
            export_format: json (full document) or csv (one row per record)

        Returns:
            ``{"format", "data", "filename"}``
        """
        export_format = (export_format or "json").lower()
        if export_format not in ("json", "csv"):
            raise ValidationError(f"Unsupported export format: {export_format}")

        migration = self._require(migration_id)
        records = self.records.list(migration_id)
        filename = f"migration_{migration_id}_export.{export_format}"

        if export_format == "csv":
            source_fields = list(migration.config.get("source_fields") or [])
            if not source_fields and records:
                source_fields = list(records[0].source_data)

            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(["index", "status", "error"] + [f"source_{f}" for f in source_fields])
            for record in records:
                writer.writerow(
                    [record.record_index, record.status.value, record.error_message or ""]
                    + ["" if record.source_data.get(f) is None else record.source_data.get(f) for f in source_fields]
                )
            return {"format": "csv", "data": buffer.getvalue(), "filename": filename}

        data = {
            "migration": {
                "id": migration.id,
                "name": migration.name,
                "source_crm": migration.source_crm,
                "status": migration.status.value,
                "statistics": migration.statistics,
                "created_at": migration.created_at.isoformat(),
                "completed_at": migration.completed_at.isoformat() if migration.completed_at else None,
            },
            "summary": {
                "total_records": migration.total_records,
                "migrated": migration.migrated_records,
                "failed": migration.failed_records,
            },
            "mappings": [m.to_dict() for m in self.migrations.get_mappings(migration_id)],
            "records": [
                {
                    "index": r.record_index,
                    "status": r.status.value,
                    "source_data": r.source_data,
                    "target_data": r.target_data,
                    "error": r.error_message,
                }
                for r in records
            ],
            "exported_at": datetime.utcnow().isoformat(),
        }
        return {"format": "json", "data": data, "filename": filename}

    # Templates

    def save_template(
        self,
        name: str,
        source_crm: str,
        mappings: List[Any],
        is_public: bool = False,
        description: str = ""
    ) -> MappingTemplate:
        return self.templates.save(
            name=name,
            source_crm=source_crm,
            mappings=self._coerce_mappings(mappings or []),
            description=description,
            is_public=is_public,
        )

    def apply_template(self, migration_id: str, template_id: str) -> List[FieldMapping]:
        """Replace a migration's mapping set with a template's."""
        if not template_id:
            raise ValidationError("template_id is required")
        self._require_editable(migration_id)
        mappings = self.templates.apply(template_id)
        saved = self._store_mappings(migration_id, mappings)
        logger.info(f"Applied template {template_id} to migration {migration_id}")
        return saved

    def create_template_from_migration(
        self,
        migration_id: str,
        template_config: Optional[Dict[str, Any]] = None
    ) -> MappingTemplate:
        template_config = template_config or {}
        if not template_config.get("name"):
            raise ValidationError("template_config.name is required")
        migration = self._require(migration_id)
        return self.templates.create_from_migration(
            migration,
            self.migrations.get_mappings(migration_id),
            template_config,
        )

    def clone_migration(self, migration_id: str, name: Optional[str] = None) -> Tuple[Migration, int]:
        """
        Copy a migration's source records and mappings into a new migration.

        Returns:
            Tuple of (new migration, number of mappings cloned)
        """
        original = self._require(migration_id)
        mappings = [
            FieldMapping.from_dict({**m.to_dict(), "is_auto_mapped": False})
            for m in self.migrations.get_mappings(migration_id)
        ]
        records = self.records.list(migration_id)

        clone = self.migrations.create(Migration(
            name=name or f"{original.name} (copy)",
            source_crm=original.source_crm,
            source_file_type=original.source_file_type,
            total_records=len(records),
            config={**original.config, "cloned_from": original.id},
            warnings=list(original.warnings),
        ))
        self.records.bulk_create([
            MigrationRecord(migration_id=clone.id, record_index=r.record_index, source_data=r.source_data)
            for r in records
        ])
        if mappings:
            self.migrations.replace_mappings(clone.id, mappings)
            clone = self.migrations.transition(clone.id, [MigrationStatus.PENDING], MigrationStatus.MAPPING) or clone

        logger.info(f"Cloned migration {migration_id} into {clone.id} ({len(mappings)} mappings)")
        return clone, len(mappings)

    # Suggestions, validation and previews

    def generate_ai_mappings(self, detected_fields: List[Any], source_crm: Optional[str] = None) -> List[FieldMapping]:
        """
        Suggest mappings for a list of fields.

        Provider suggestions are used when available; otherwise keyword
        heuristics fill in.

        Args:
            detected_fields: Field names, or ``{"name", "type", "sample_values"}`` dicts
            source_crm: Source connector key
        """
        if not detected_fields:
            raise ValidationError("detected_fields is required")

        fields = [self._parsed_field(f) for f in detected_fields]
        connector_fields = self.catalog.field_definitions(source_crm)

        mappings = self.suggester.suggest(fields, connector_fields, source_crm)
        if not mappings:
            logger.info("No provider suggestions; falling back to keyword heuristics")
            mappings = MappingSuggester(HeuristicSuggestionProvider()).suggest(fields, connector_fields, source_crm)
        return mappings

    def validate_migration(self, migration_id: str) -> Dict[str, Any]:
        """
        Run the validation rules over the pending records of a migration.

        Validation results are stored on the records and the summary in the
        migration statistics; the migration status is not changed.
        """
        migration = self._require(migration_id)
        mappings = self.migrations.get_mappings(migration_id)
        if not mappings:
            raise ValidationError("No field mappings defined")

        pending = self.records.list(migration_id, status=RecordStatus.PENDING)
        summary = self.validator.validate_records(pending, mappings)

        issues = []
        for record in pending:
            self.records.update(
                record.id,
                validation_errors=record.validation_errors,
                validation_warnings=record.validation_warnings,
            )
            if record.validation_errors and len(issues) < MAX_REPORTED_ISSUES:
                issues.append({
                    "record_index": record.record_index,
                    "errors": [e.to_dict() for e in record.validation_errors],
                })

        self.migrations.update(migration_id, statistics={**migration.statistics, "validation": summary.to_dict()})
        return {**summary.to_dict(), "errors": issues}

    def get_validation_rules(self) -> List[Dict[str, Any]]:
        return [rule.to_dict() for rule in self.validator.rules]

    def check_duplicates(
        self,
        migration_id: str,
        duplicate_fields: Optional[List[str]] = None,
        threshold: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Find duplicates among a migration's pending records and against
        existing companies, flagging the records involved.

        Args:
            migration_id: Migration to check
            duplicate_fields: Source fields to compare
            threshold: Name similarity (0-1) counted as a match
        """
        threshold = DEFAULT_SIMILARITY_THRESHOLD if threshold is None else threshold
        try:
            threshold = float(threshold)
        except (TypeError, ValueError):
            raise ValidationError("threshold must be a number between 0 and 1")
        if not 0 <= threshold <= 1:
            raise ValidationError("threshold must be a number between 0 and 1")

        migration = self._require(migration_id)
        fields = list(duplicate_fields or DEFAULT_DUPLICATE_FIELDS)
        records = self.records.list(migration_id, status=RecordStatus.PENDING)
        field_targets = {
            m.source_field: m.target_field
            for m in self.migrations.get_mappings(migration_id)
            if m.target_table == "companies"
        }

        detector = DuplicateDetector(threshold)
        internal = detector.find_internal(records, fields)
        external = detector.find_external(records, fields, self.destination.rows("companies"), field_targets)

        by_index = {r.record_index: r for r in records}
        flagged = set()
        for match in internal + external:
            if match.record_index in flagged:
                continue
            if match.match_type == "internal":
                duplicate_of = by_index[match.matched_record_index].id
            else:
                duplicate_of = match.matched_id
            self.records.update(by_index[match.record_index].id, is_duplicate=True, duplicate_of=duplicate_of)
            flagged.add(match.record_index)

        result = {
            "total_checked": len(records),
            "duplicates_found": len(flagged),
            "internal_duplicates": [m.to_dict() for m in internal],
            "external_duplicates": [m.to_dict() for m in external],
            "fields_checked": fields,
            "threshold": threshold,
        }
        self.migrations.update(
            migration_id,
            statistics={**migration.statistics, "duplicates": {
                "total_checked": len(records),
                "duplicates_found": len(flagged),
            }},
        )
        logger.info(
            f"Migration {migration_id}: {len(internal)} internal and {len(external)} external duplicates"
        )
        return result

    def preview_transformation(self, source_data: Dict[str, Any], transformation: Any) -> Dict[str, Any]:
        """Apply advanced transformations to one record without saving anything."""
        if not isinstance(source_data, dict):
            raise ValidationError("source_data must be an object")
        if isinstance(transformation, dict):
            transformation = [transformation]
        if not transformation or not isinstance(transformation, list):
            raise ValidationError("transformation is required")

        return {
            "original": source_data,
            "transformed": self.transformer.preview(source_data, transformation),
        }

    def apply_transformations(self, migration_id: str, transformations: Any) -> Dict[str, Any]:
        """
        Apply advanced transformations to the source data of every pending record.

        All records are transformed before any is saved, so an invalid
        transformation changes nothing. Only migrations that have not
        started can be transformed.

        Args:
            migration_id: Migration to transform
            transformations: One transformation or a list of them, as for previews

        Returns:
            Count of records updated
        """
        if isinstance(transformations, dict):
            transformations = [transformations]
        if not transformations or not isinstance(transformations, list):
            raise ValidationError("transformations is required")

        migration = self._require(migration_id)
        if migration.status not in EDITABLE_STATUSES:
            raise PreconditionError(f"Cannot transform records of a migration in status '{migration.status.value}'")

        pending = self.records.list(migration_id, status=RecordStatus.PENDING)
        try:
            transformed = [(r, self.transformer.preview(r.source_data, transformations)) for r in pending]
        except (AttributeError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid transformation: {e}") from e

        count = 0
        for record, source_data in transformed:
            if self.records.update(record.id, expected_status=RecordStatus.PENDING, source_data=source_data):
                count += 1

        applied = migration.statistics.get("transformations", []) + [{
            "applied_at": datetime.utcnow().isoformat(),
            "records": count,
            "types": [t.get("type") for t in transformations],
        }]
        self.migrations.update(migration_id, statistics={**migration.statistics, "transformations": applied})
        logger.info(f"Applied {len(transformations)} transformations to {count} records of migration {migration_id}")
        return {"transformed": count}

    # Helpers

    def _require(self, migration_id: str) -> Migration:
        if not migration_id:
            raise ValidationError("migration_id is required")
        migration = self.migrations.get(migration_id)
        if migration is None:
            raise NotFoundError(f"Migration not found: {migration_id}")
        return migration

    def _require_editable(self, migration_id: str) -> Migration:
        migration = self._require(migration_id)
        if migration.status not in EDITABLE_STATUSES:
            raise PreconditionError(f"Cannot change mappings of a migration in status '{migration.status.value}'")
        return migration

    def _store_mappings(self, migration_id: str, mappings: List[FieldMapping]) -> List[FieldMapping]:
        saved = self.migrations.replace_mappings(migration_id, mappings)
        if saved:
            self.migrations.transition(migration_id, [MigrationStatus.PENDING], MigrationStatus.MAPPING)
        else:
            self.migrations.transition(migration_id, [MigrationStatus.MAPPING], MigrationStatus.PENDING)
        return saved

    def _coerce_mappings(self, mappings: List[Any]) -> List[FieldMapping]:
        """Build mappings from request data, rejecting unknown destinations."""
        if not isinstance(mappings, list):
            raise ValidationError("mappings must be a list")

        result = []
        for item in mappings:
            if isinstance(item, FieldMapping):
                mapping = item
            elif isinstance(item, dict):
                mapping = FieldMapping.from_dict(item)
            else:
                raise ValidationError("Each mapping must be an object")

            if not mapping.source_field or not mapping.target_field:
                raise ValidationError("Each mapping needs source_field and target_field")
            spec = CANONICAL_SCHEMA.get(mapping.target_table)
            if spec is None:
                raise ValidationError(f"Unknown destination table: {mapping.target_table}")
            if mapping.target_field not in spec.fields:
                raise ValidationError(f"Unknown destination field: {mapping.target_table}.{mapping.target_field}")
            result.append(mapping)

        return result

    def _mapping_warnings(self, migration: Migration, mappings: List[FieldMapping]) -> List[str]:
        warnings = duplicate_target_warnings(mappings)
        source_fields = migration.config.get("source_fields")
        if source_fields:
            for mapping in mappings:
                if mapping.source_field not in source_fields:
                    warnings.append(f"Source field '{mapping.source_field}' is not present in the file")
        return warnings

    @staticmethod
    def _parsed_field(value: Any) -> ParsedField:
        if isinstance(value, ParsedField):
            return value
        if isinstance(value, str):
            return ParsedField(name=value)
        if isinstance(value, dict) and value.get("name"):
            try:
                field_type = FieldType(value.get("type") or "string")
            except ValueError:
                field_type = FieldType.STRING
            return ParsedField(
                name=value["name"],
                type=field_type,
                sample_values=list(value.get("sample_values") or [])[:5],
            )
        raise ValidationError("Each detected field needs a name")

    @staticmethod
    def _positive_int(value: Any, name: str) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{name} must be a positive integer")
        if number < 1:
            raise ValidationError(f"{name} must be a positive integer")
        return number
