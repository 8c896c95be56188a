"""Unit tests for document models and settings."""

import pytest
from pydantic import ValidationError

from geoimport.models import (
    ApiKeyAuth,
    BasicAuth,
    DuplicateEntry,
    Duplicates,
    ImportJob,
    JobError,
    MongoSettings,
    NoAuth,
    PipelineSettings,
    ProcessingStage,
    ScheduledImport,
)


# =============================================================================
# Scheduled Import
# =============================================================================

class TestScheduledImport:
    def test_defaults(self):
        schedule = ScheduledImport(scheduled_import_id="s", name="Feed", source_url="https://x/a.csv")
        assert isinstance(schedule.auth_config, NoAuth)
        assert schedule.import_name_template == "{{name}} - {{date}}"
        assert schedule.retry_config.max_retries == 3
        assert schedule.advanced_options.max_file_size_mb == 100
        assert schedule.execution_history == []

    def test_auth_is_discriminated_by_type(self):
        schedule = ScheduledImport(
            scheduled_import_id="s", name="Feed", source_url="https://x/a.csv",
            auth_config={"type": "basic", "username": "u", "password": "p"},
        )
        assert isinstance(schedule.auth_config, BasicAuth)

        schedule = ScheduledImport.model_validate({
            "scheduled_import_id": "s", "name": "Feed", "source_url": "https://x/a.csv",
            "auth_config": {"type": "api-key", "api_key": "k"},
        })
        assert isinstance(schedule.auth_config, ApiKeyAuth)
        assert schedule.auth_config.api_key_header == "X-API-Key"

    def test_unknown_auth_type_rejected(self):
        with pytest.raises(ValidationError):
            ScheduledImport(
                scheduled_import_id="s", name="Feed", source_url="https://x/a.csv",
                auth_config={"type": "oauth"},
            )

    def test_bearer_requires_token(self):
        with pytest.raises(ValidationError):
            ScheduledImport(
                scheduled_import_id="s", name="Feed", source_url="https://x/a.csv",
                auth_config={"type": "bearer"},
            )


# =============================================================================
# Import Job
# =============================================================================

class TestImportJob:
    def test_defaults(self):
        job = ImportJob(import_job_id="j", import_file_id="f", dataset_id="d")
        assert job.stage == ProcessingStage.ANALYZE_DUPLICATES
        assert job.progress.total == 0
        assert job.duplicates.strategy == "enabled"
        assert job.lease is None
        assert job.last_error is None

    def test_stage_from_string(self):
        job = ImportJob(import_job_id="j", import_file_id="f", dataset_id="d", stage="geocode-batch")
        assert job.stage == ProcessingStage.GEOCODE_BATCH

    def test_last_error_ignores_row_errors(self):
        job = ImportJob(
            import_job_id="j", import_file_id="f", dataset_id="d",
            errors=[
                JobError(error="stage broke", stage="detect-schema"),
                JobError(row=4, error="bad row"),
            ],
        )
        assert job.last_error == "stage broke"

    def test_duplicate_row_numbers(self):
        duplicates = Duplicates(
            internal=[DuplicateEntry(row_number=3, unique_id="u", first_occurrence=0)],
            external=[DuplicateEntry(row_number=5, unique_id="v", existing_event_id="e")],
        )
        assert duplicates.row_numbers() == {3, 5}


# =============================================================================
# Settings
# =============================================================================

class TestSettings:
    def test_mongo_connection_string(self, monkeypatch):
        monkeypatch.setenv("MONGO_HOST", "db.internal")
        monkeypatch.setenv("MONGO_INITDB_ROOT_USERNAME", "root")
        monkeypatch.setenv("MONGO_INITDB_ROOT_PASSWORD", "pw")
        monkeypatch.setenv("MONGO_DATABASE", "events")

        settings = MongoSettings()

        assert settings.connection_string == "mongodb://root:pw@db.internal:27017/events?authSource=admin"

    def test_pipeline_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("IMPORT_EVENT_BATCH_SIZE", "250")
        monkeypatch.setenv("IMPORT_TEST_MODE", "true")

        settings = PipelineSettings()

        assert settings.event_creation_batch_size == 250
        assert settings.test_mode is True
        assert settings.lease_seconds == 900

    def test_pipeline_settings_validation(self):
        with pytest.raises(ValidationError):
            PipelineSettings(event_creation_batch_size=0)
