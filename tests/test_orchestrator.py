"""Tests for MigrationController: lifecycle, rollback and reporting."""

import json

import pytest

from crm_migration.config import EngineConfig
from crm_migration.exceptions import NotFoundError, ParseError, PreconditionError, ValidationError
from crm_migration.models.migration import MigrationStatus
from crm_migration.models.record import RecordStatus
from crm_migration.orchestrator import MigrationController
from crm_migration.services.llm_inference import HeuristicSuggestionProvider, MappingSuggester, StaticSuggestionProvider


async def run_to_end(controller, migration_id):
    await controller.run_migration(migration_id)
    await controller.join()
    return controller.get_status(migration_id)


@pytest.fixture
def mapped_migration(controller, companies_csv, company_mappings):
    migration, _ = controller.create_migration("Q1 import", "universal", companies_csv, "csv", company_mappings)
    return migration


class TestCreateMigration:
    """Test suite for migration creation and mapping sets."""

    def test_creates_pending_records(self, controller, companies_csv):
        migration, warnings = controller.create_migration("Q1 import", "hubspot", companies_csv, "csv")

        assert migration.status == MigrationStatus.PENDING
        assert migration.total_records == 5
        assert migration.config["raw_content"] == companies_csv
        assert warnings == []
        records = controller.list_records(migration.id)
        assert [r.record_index for r in records] == [0, 1, 2, 3, 4]
        assert all(r.status == RecordStatus.PENDING for r in records)

    def test_mappings_move_to_mapping(self, mapped_migration, controller):
        assert mapped_migration.status == MigrationStatus.MAPPING
        assert len(controller.migrations.get_mappings(mapped_migration.id)) == 4

    def test_required_fields(self, controller, companies_csv):
        with pytest.raises(ValidationError):
            controller.create_migration("", "hubspot", companies_csv, "csv")
        with pytest.raises(ValidationError):
            controller.create_migration("Q1", "hubspot", "", "csv")

    def test_unparseable_content(self, controller):
        with pytest.raises(ParseError):
            controller.create_migration("Q1", "hubspot", "{oops", "json")
        assert controller.list_migrations() == []

    def test_records_beyond_cap_are_dropped_with_warning(self, destination, companies_csv):
        controller = MigrationController(config=EngineConfig(record_batch_cap=3), destination=destination)
        migration, warnings = controller.create_migration("Capped", "universal", companies_csv, "csv")

        assert migration.total_records == 3
        assert any("only the first 3" in w for w in warnings)
        assert migration.warnings == warnings

    def test_raw_content_preview_is_truncated(self, destination, companies_csv):
        controller = MigrationController(config=EngineConfig(raw_preview_chars=10), destination=destination)
        migration, _ = controller.create_migration("Q1", "universal", companies_csv, "csv")

        assert migration.config["raw_content"] == companies_csv[:10]

    def test_unknown_destination_field_is_rejected(self, controller, companies_csv):
        with pytest.raises(ValidationError, match="companies.revenue"):
            controller.create_migration(
                "Q1", "universal", companies_csv, "csv",
                [{"source_field": "name", "target_field": "revenue"}],
            )

    def test_update_mappings_replaces_set_and_warns(self, mapped_migration, controller):
        mappings, warnings = controller.update_mappings(mapped_migration.id, [
            {"source_field": "name", "target_field": "name"},
            {"source_field": "city", "target_field": "name"},
            {"source_field": "website", "target_field": "website"},
        ])

        assert len(mappings) == 3
        assert any("mapped from both" in w for w in warnings)
        assert "Source field 'website' is not present in the file" in warnings

    def test_clearing_mappings_returns_to_pending(self, mapped_migration, controller):
        controller.update_mappings(mapped_migration.id, [])

        assert controller.get_status(mapped_migration.id).status == MigrationStatus.PENDING

    def test_unknown_migration(self, controller):
        with pytest.raises(NotFoundError):
            controller.get_status("does-not-exist")


class TestMigrationLifecycle:
    """Test suite for running, pausing, cancelling and resuming."""

    @pytest.mark.asyncio
    async def test_partial_failure_completes(self, mapped_migration, controller, destination):
        message = await controller.run_migration(mapped_migration.id)
        assert "5 records" in message
        await controller.join()

        migration = controller.get_status(mapped_migration.id)
        assert migration.status == MigrationStatus.COMPLETED
        assert (migration.migrated_records, migration.failed_records) == (4, 1)
        assert migration.progress == 100.0
        assert migration.started_at is not None and migration.completed_at is not None

        failed = controller.list_records(mapped_migration.id, status="failed")
        assert [r.record_index for r in failed] == [2]
        assert failed[0].error_message == "Required field 'name' is empty"
        assert migration.error_log[0]["record_index"] == 2

        assert destination.count("companies") == 4
        success = controller.list_records(mapped_migration.id, status="success")
        row = destination.get("companies", success[0].target_record_id)
        assert row["email"] == "info@acme.com"
        assert success[0].target_table == "companies"

    @pytest.mark.asyncio
    async def test_run_without_mappings_keeps_status(self, controller, companies_csv):
        migration, _ = controller.create_migration("Q1", "universal", companies_csv, "csv")

        with pytest.raises(ValidationError, match="No field mappings defined"):
            await controller.run_migration(migration.id)

        assert controller.get_status(migration.id).status == MigrationStatus.PENDING

    @pytest.mark.asyncio
    async def test_run_twice_is_rejected(self, mapped_migration, controller):
        await controller.run_migration(mapped_migration.id)

        with pytest.raises(PreconditionError):
            await controller.run_migration(mapped_migration.id)
        await controller.join()

    @pytest.mark.asyncio
    async def test_resume_after_completion_changes_nothing(self, mapped_migration, controller):
        before = await run_to_end(controller, mapped_migration.id)

        with pytest.raises(PreconditionError):
            await controller.resume_migration(mapped_migration.id)
        await controller.join()

        after = controller.get_status(mapped_migration.id)
        assert after.status == MigrationStatus.COMPLETED
        assert (after.migrated_records, after.failed_records) == (before.migrated_records, before.failed_records)

    @pytest.mark.asyncio
    async def test_pause_then_resume(self, mapped_migration, controller, destination):
        await controller.run_migration(mapped_migration.id)
        paused = controller.pause_migration(mapped_migration.id)
        assert paused.status == MigrationStatus.PAUSED
        await controller.join()

        assert controller.get_status(mapped_migration.id).migrated_records == 0
        assert destination.count("companies") == 0

        resumed = await controller.resume_migration(mapped_migration.id)
        assert resumed.status == MigrationStatus.RUNNING
        await controller.join()

        migration = controller.get_status(mapped_migration.id)
        assert migration.status == MigrationStatus.COMPLETED
        assert (migration.migrated_records, migration.failed_records) == (4, 1)

    @pytest.mark.asyncio
    async def test_pause_requires_running(self, mapped_migration, controller):
        with pytest.raises(PreconditionError):
            controller.pause_migration(mapped_migration.id)

    @pytest.mark.asyncio
    async def test_cancel_stops_processing(self, mapped_migration, controller, destination):
        await controller.run_migration(mapped_migration.id)
        cancelled = controller.cancel_migration(mapped_migration.id)
        await controller.join()

        assert cancelled.status == MigrationStatus.CANCELLED
        assert cancelled.completed_at is not None
        assert destination.count("companies") == 0
        with pytest.raises(PreconditionError):
            controller.cancel_migration(mapped_migration.id)

    def test_cancel_before_running(self, mapped_migration, controller):
        assert controller.cancel_migration(mapped_migration.id).status == MigrationStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_mappings_are_frozen_once_running(self, mapped_migration, controller, company_mappings):
        await run_to_end(controller, mapped_migration.id)

        with pytest.raises(PreconditionError):
            controller.update_mappings(mapped_migration.id, company_mappings)

    @pytest.mark.asyncio
    async def test_crashed_job_fails_migration(self, mapped_migration, controller):
        async def crash(migration_id):
            raise RuntimeError("worker exploded")

        controller.runner.job = crash
        await controller.run_migration(mapped_migration.id)
        await controller.join()

        migration = controller.get_status(mapped_migration.id)
        assert migration.status == MigrationStatus.FAILED
        assert "worker exploded" in migration.error_log[-1]["error"]

    @pytest.mark.asyncio
    async def test_multi_table_records(self, controller, destination):
        content = json.dumps([
            {"company": "Acme", "contact": "Ana", "visit": "2024-02-01"},
            {"company": "Globex", "contact": "Luis", "visit": "never"},
        ])
        migration, _ = controller.create_migration("Multi", "universal", content, "json", [
            {"source_field": "company", "target_field": "name"},
            {"source_field": "contact", "target_table": "company_contacts", "target_field": "name"},
            {"source_field": "visit", "target_table": "visits", "target_field": "date", "transform": "date"},
        ])

        migration = await run_to_end(controller, migration.id)

        assert (migration.migrated_records, migration.failed_records) == (1, 1)
        assert destination.count("companies") == 1
        success = controller.list_records(migration.id, status="success")[0]
        assert [t["table"] for t in success.target_rows] == ["companies", "company_contacts", "visits"]
        assert destination.rows("visits")[0]["date"] == "2024-02-01"


class TestRollback:
    """Test suite for rolling back completed migrations."""

    @pytest.mark.asyncio
    async def test_rollback_round_trip(self, mapped_migration, controller, destination):
        await run_to_end(controller, mapped_migration.id)

        summary = controller.rollback_migration(mapped_migration.id)

        assert summary == {"total": 4, "rolled_back": 4, "failed": 0, "errors": []}
        assert destination.count("companies") == 0
        migration = controller.get_status(mapped_migration.id)
        assert migration.status == MigrationStatus.ROLLBACK
        assert migration.can_rollback is False
        assert migration.rollback_data["summary"]["rolled_back"] == 4
        assert len(controller.list_records(mapped_migration.id, status="rolled_back")) == 4
        assert len(controller.list_records(mapped_migration.id, status="failed")) == 1

    @pytest.mark.asyncio
    async def test_second_rollback_is_rejected(self, mapped_migration, controller):
        await run_to_end(controller, mapped_migration.id)
        controller.rollback_migration(mapped_migration.id)

        with pytest.raises(PreconditionError):
            controller.rollback_migration(mapped_migration.id)

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self, mapped_migration, controller, destination):
        await run_to_end(controller, mapped_migration.id)

        summary = controller.rollback_migration(mapped_migration.id, {"dry_run": True})

        assert summary["dry_run"] is True
        assert summary["total"] == 4
        assert destination.count("companies") == 4
        assert controller.get_status(mapped_migration.id).status == MigrationStatus.COMPLETED

    def test_rollback_requires_completed(self, mapped_migration, controller):
        with pytest.raises(PreconditionError):
            controller.rollback_migration(mapped_migration.id)

    @pytest.mark.asyncio
    async def test_rows_deleted_elsewhere_are_reported(self, mapped_migration, controller, destination):
        await run_to_end(controller, mapped_migration.id)
        first = controller.list_records(mapped_migration.id, status="success")[0]
        destination.delete("companies", first.target_record_id)

        summary = controller.rollback_migration(mapped_migration.id)

        assert (summary["rolled_back"], summary["failed"]) == (3, 1)
        assert summary["errors"][0]["record_index"] == first.record_index


class TestReporting:
    """Test suite for stats, history, export and cloning."""

    @pytest.mark.asyncio
    async def test_stats(self, mapped_migration, controller, companies_csv):
        await run_to_end(controller, mapped_migration.id)
        controller.create_migration("Other", "hubspot", companies_csv, "csv")

        stats = controller.get_stats()

        assert stats["total_migrations"] == 2
        assert stats["completed_migrations"] == 1
        assert stats["failed_migrations"] == 0
        assert stats["total_records_migrated"] == 4
        assert stats["success_rate"] == 50
        assert stats["migrations_by_crm"] == {"universal": 1, "hubspot": 1}
        assert stats["avg_migration_time_ms"] >= 0

    def test_stats_without_migrations(self, controller):
        assert controller.get_stats()["success_rate"] == 0

    @pytest.mark.asyncio
    async def test_history(self, mapped_migration, controller):
        await run_to_end(controller, mapped_migration.id)
        controller.rollback_migration(mapped_migration.id)

        history = controller.get_migration_history(mapped_migration.id)
        events = [h["event"] for h in history["history"]]

        assert events[0] == "created"
        assert events[1] == "started"
        assert {"error", "completed", "rollback"} <= set(events)
        assert events[-1] == "rollback"
        assert history["current_status"] == "rollback"
        assert history["can_rollback"] is False

    @pytest.mark.asyncio
    async def test_export_json_and_csv(self, mapped_migration, controller):
        await run_to_end(controller, mapped_migration.id)

        exported = controller.export_migration(mapped_migration.id)
        assert exported["filename"].endswith(".json")
        assert exported["data"]["summary"] == {"total_records": 5, "migrated": 4, "failed": 1}
        assert len(exported["data"]["mappings"]) == 4

        exported = controller.export_migration(mapped_migration.id, "csv")
        lines = exported["data"].splitlines()
        assert lines[0] == "index,status,error,source_name,source_email,source_phone,source_city"
        assert len(lines) == 6
        assert lines[3].startswith("2,failed,Required field 'name' is empty")

    def test_export_rejects_unknown_format(self, mapped_migration, controller):
        with pytest.raises(ValidationError):
            controller.export_migration(mapped_migration.id, "xml")

    @pytest.mark.asyncio
    async def test_clone(self, mapped_migration, controller):
        await run_to_end(controller, mapped_migration.id)

        clone, cloned = controller.clone_migration(mapped_migration.id)

        assert cloned == 4
        assert clone.name == "Q1 import (copy)"
        assert clone.status == MigrationStatus.MAPPING
        assert clone.config["cloned_from"] == mapped_migration.id
        assert controller.records.count(clone.id, RecordStatus.PENDING) == 5

        clone = await run_to_end(controller, clone.id)
        assert clone.migrated_records == 4


class TestTemplates:
    """Test suite for templates applied through the controller."""

    def test_save_and_apply(self, controller, companies_csv, company_mappings):
        template = controller.save_template("Basic", "universal", company_mappings, description="Companies only")
        migration, _ = controller.create_migration("Q1", "universal", companies_csv, "csv")

        mappings = controller.apply_template(migration.id, template.id)

        assert len(mappings) == 4
        assert controller.get_status(migration.id).status == MigrationStatus.MAPPING
        assert controller.list_templates("universal")[0].usage_count == 1

    @pytest.mark.asyncio
    async def test_template_from_migration(self, mapped_migration, controller):
        with pytest.raises(ValidationError):
            controller.create_template_from_migration(mapped_migration.id, {})

        await run_to_end(controller, mapped_migration.id)
        template = controller.create_template_from_migration(mapped_migration.id, {"name": "From Q1"})

        assert template.success_rate == 80.0
        assert len(template.field_mappings) == 4


class TestSuggestionsAndChecks:
    """Test suite for suggestions, validation, duplicates and previews."""

    def test_heuristic_fallback(self, controller):
        mappings = controller.generate_ai_mappings(["Nombre", "Correo", "Misc"], "universal")

        assert [m.target_field for m in mappings] == ["name", "email", "notes"]

    def test_provider_suggestions_win(self, destination):
        provider = StaticSuggestionProvider([{"source_field": "Misc", "target_field": "sector", "confidence": 0.8}])
        controller = MigrationController(suggester=MappingSuggester(provider), destination=destination)

        mappings = controller.generate_ai_mappings([{"name": "Misc", "type": "string"}])

        assert [(m.source_field, m.target_field) for m in mappings] == [("Misc", "sector")]

    def test_analyze_file_falls_back_to_heuristics(self, controller, companies_csv):
        analysis = controller.analyze_file(companies_csv, "csv")

        assert analysis.record_count == 5
        assert [(m.source_field, m.target_field) for m in analysis.suggested_mappings] == [
            ("name", "name"), ("email", "email"), ("phone", "phone"), ("city", "city"),
        ]

    def test_analyze_file_uses_connector_definitions(self, controller):
        analysis = controller.analyze_file("Name,BillingCity,BillingStreet\nAcme,Madrid,Gran Via 1\n", "csv", "salesforce")
        by_source = {m.source_field: m for m in analysis.suggested_mappings}

        assert by_source["BillingCity"].target_field == "city"
        assert by_source["BillingCity"].confidence == 0.95

    def test_analyze_file_prefers_provider_suggestions(self, destination, companies_csv):
        provider = StaticSuggestionProvider([{"source_field": "city", "target_field": "city", "confidence": 0.9}])
        controller = MigrationController(
            suggester=MappingSuggester(provider, fallback=HeuristicSuggestionProvider()), destination=destination,
        )

        analysis = controller.analyze_file(companies_csv, "csv")

        assert [m.source_field for m in analysis.suggested_mappings] == ["city"]

    def test_validate_migration(self, controller, company_mappings):
        content = "name,email,phone,city\nAcme,info@acme.com,600123123,Madrid\nGlobex,not-an-email,600123124,Bilbao\n"
        migration, _ = controller.create_migration("Q1", "universal", content, "csv", company_mappings)

        result = controller.validate_migration(migration.id)

        assert (result["passed"], result["failed"]) == (1, 1)
        assert result["can_proceed"] is False
        assert result["errors"][0]["record_index"] == 1
        updated = controller.get_status(migration.id)
        assert updated.status == MigrationStatus.MAPPING
        assert updated.statistics["validation"]["failed"] == 1
        record = controller.list_records(migration.id)[1]
        assert record.validation_errors[0].rule == "email_format"

    def test_validation_rules(self, controller):
        names = {r["name"] for r in controller.get_validation_rules()}

        assert {"email_format", "phone_format", "name_length"} <= names

    def test_check_duplicates(self, controller, destination, company_mappings):
        destination.insert_existing("companies", {"name": "Initech Corporation"})
        content = (
            "name,email\n"
            "Acme,info@acme.com\n"
            "ACME,INFO@acme.com\n"
            "Initech Corporatio,contact@initech.com\n"
        )
        migration, _ = controller.create_migration("Q1", "universal", content, "csv", company_mappings[:2])

        result = controller.check_duplicates(migration.id, ["name", "email"])

        assert result["total_checked"] == 3
        assert result["duplicates_found"] == 2
        assert {m["record_index"] for m in result["internal_duplicates"]} == {1}
        assert [m["record_index"] for m in result["external_duplicates"]] == [2]
        flagged = [r for r in controller.list_records(migration.id) if r.is_duplicate]
        assert [r.record_index for r in flagged] == [1, 2]

    def test_check_duplicates_rejects_bad_threshold(self, mapped_migration, controller):
        with pytest.raises(ValidationError):
            controller.check_duplicates(mapped_migration.id, threshold=1.5)

    def test_preview_transformation(self, controller):
        preview = controller.preview_transformation(
            {"phone": "600 123 123"}, {"type": "normalize_phone", "field": "phone"}
        )

        assert preview["original"] == {"phone": "600 123 123"}
        assert preview["transformed"]["phone"] == "+34600123123"


class TestApplyTransformations:
    """Test suite for transforming the source data of pending records."""

    @pytest.mark.asyncio
    async def test_transformed_data_is_migrated(self, mapped_migration, controller, destination):
        result = controller.apply_transformations(
            mapped_migration.id, {"type": "uppercase", "field": "city"}
        )
        assert result == {"transformed": 5}

        records = controller.list_records(mapped_migration.id)
        assert records[0].source_data["city"] == "MADRID"

        await run_to_end(controller, mapped_migration.id)
        assert sorted(r["city"] for r in destination.rows("companies")) == [
            "BARCELONA", "BILBAO", "MADRID", "SEVILLA",
        ]

    def test_new_fields_can_be_derived(self, mapped_migration, controller):
        controller.apply_transformations(mapped_migration.id, [{
            "type": "concat", "field": "name", "target_field": "label",
            "params": {"fields": ["name", "city"], "separator": " - "},
        }])

        assert controller.list_records(mapped_migration.id)[0].source_data["label"] == "Acme Corp - Madrid"

    def test_invalid_transformation_changes_nothing(self, mapped_migration, controller):
        with pytest.raises(ValidationError):
            controller.apply_transformations(mapped_migration.id, [
                {"type": "uppercase", "field": "city"},
                {"type": "reverse", "field": "city"},
            ])

        assert controller.list_records(mapped_migration.id)[0].source_data["city"] == "Madrid"

    def test_transformations_are_required(self, mapped_migration, controller):
        with pytest.raises(ValidationError):
            controller.apply_transformations(mapped_migration.id, [])

    @pytest.mark.asyncio
    async def test_started_migration_is_rejected(self, mapped_migration, controller):
        await run_to_end(controller, mapped_migration.id)

        with pytest.raises(PreconditionError):
            controller.apply_transformations(mapped_migration.id, {"type": "trim", "field": "city"})

    def test_recorded_in_history(self, mapped_migration, controller):
        controller.apply_transformations(mapped_migration.id, {"type": "trim", "field": "city"})

        history = controller.get_migration_history(mapped_migration.id)["history"]
        transformed = [h for h in history if h["event"] == "transformed"]

        assert transformed[0]["details"] == {"records": 5, "types": ["trim"]}


class TestFromConfig:
    """Test suite for building a controller from configuration."""

    def test_in_memory_by_default(self):
        controller = MigrationController.from_config(EngineConfig())

        assert controller.destination.__class__.__name__ == "InMemoryDestinationStore"

    @pytest.mark.asyncio
    async def test_sql_destination(self, companies_csv, company_mappings):
        controller = MigrationController.from_config(EngineConfig(database_url="sqlite://"))
        migration, _ = controller.create_migration("Q1", "universal", companies_csv, "csv", company_mappings)

        migration = await run_to_end(controller, migration.id)

        assert migration.migrated_records == 4
        assert controller.destination.count("companies") == 4
        controller.destination.engine.dispose()
