"""
Shared pytest fixtures for the import pipeline tests.

Provides reusable documents and an in-memory MongoDB resource so tests
do not need running services.
"""

import csv
import shutil
from datetime import datetime, timezone
from unittest.mock import Mock

import mongomock
import pytest

from geoimport.models import (
    Dataset,
    FieldMappings,
    IdStrategy,
    IdStrategyType,
    ImportFile,
    ImportJob,
    PipelineSettings,
    ProcessingStage,
    ScheduledImport,
)
from services.dagster.import_pipelines.resources import MongoDBResource


# =============================================================================
# MongoDB Fixtures
# =============================================================================

@pytest.fixture
def mongomock_client():
    """In-memory MongoDB client for tests."""
    return mongomock.MongoClient()


@pytest.fixture
def mongo_resource(monkeypatch, mongomock_client):
    """MongoDBResource configured to use the mongomock client."""
    monkeypatch.setattr(
        "services.dagster.import_pipelines.resources.mongodb_resource.MongoClient",
        lambda *args, **kwargs: mongomock_client,
    )
    return MongoDBResource(connection_string="mongodb://localhost:27017")


@pytest.fixture
def mock_log():
    """Stand-in for context.log."""
    return Mock()


@pytest.fixture
def settings():
    """Small batches and no retry waits."""
    return PipelineSettings(
        duplicate_analysis_batch_size=3,
        schema_detection_batch_size=3,
        event_creation_batch_size=3,
        test_mode=True,
    )


# =============================================================================
# Document Fixtures
# =============================================================================

@pytest.fixture
def fixed_now():
    return datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def sample_rows():
    """Five rows; the fourth repeats the first row's external id."""
    return [
        {"id": "A1", "title": "Street festival", "date": "2024-03-01", "address": "1 Main St, Springfield"},
        {"id": "A2", "title": "Book fair", "date": "2024-03-02", "address": "2 Oak Ave, Springfield"},
        {"id": "A3", "title": "Farmers market", "date": "2024-03-03", "address": "1 Main St, Springfield"},
        {"id": "A1", "title": "Street festival", "date": "2024-03-01", "address": "1 Main St, Springfield"},
        {"id": "A5", "title": "Night run", "date": "2024-03-05", "address": None},
    ]


@pytest.fixture
def sample_dataset():
    return Dataset(
        dataset_id="ds-1",
        name="Community events",
        catalog_id="cat-1",
        id_strategy=IdStrategy(type=IdStrategyType.EXTERNAL, external_id_path="id"),
    )


@pytest.fixture
def sample_import_file():
    return ImportFile(
        import_file_id="file-1",
        filename="events.csv",
        original_name="events.csv",
        mime_type="text/csv",
        file_size=512,
        catalog_id="cat-1",
        user_id="user-1",
    )


@pytest.fixture
def sample_import_job():
    return ImportJob(
        import_job_id="job-1",
        import_file_id="file-1",
        dataset_id="ds-1",
        user_id="user-1",
        stage=ProcessingStage.ANALYZE_DUPLICATES,
    )


@pytest.fixture
def sample_mappings():
    return FieldMappings(title_path="title", timestamp_path="date", location_path="address")


@pytest.fixture
def sample_schedule():
    return ScheduledImport(
        scheduled_import_id="sched-1",
        name="Council feed",
        source_url="https://data.example.org/events.csv",
        catalog_id="cat-1",
        dataset_id="ds-1",
        user_id="user-1",
        frequency="hourly",
    )


@pytest.fixture
def csv_file(tmp_path, sample_rows):
    """Write ``sample_rows`` to a CSV file and return its path."""
    path = tmp_path / "events.csv"
    with open(path, "w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=["id", "title", "date", "address"])
        writer.writeheader()
        for row in sample_rows:
            writer.writerow({k: ("" if v is None else v) for k, v in row.items()})
    return str(path)


@pytest.fixture
def mock_minio(csv_file):
    """MinIO stand-in whose downloads copy ``csv_file``; ``put_file`` is a Mock."""
    minio = Mock()
    minio.download_import_file.side_effect = lambda filename, local_path: shutil.copyfile(csv_file, local_path)
    minio.put_file.side_effect = lambda file: file["name"]
    return minio


@pytest.fixture
def seeded(mongo_resource, sample_dataset, sample_import_file, sample_import_job):
    """MongoDB resource holding the sample dataset, import file and import job."""
    mongo_resource.insert_dataset(sample_dataset)
    mongo_resource.insert_import_file(sample_import_file)
    mongo_resource.insert_import_job(sample_import_job)
    return mongo_resource


@pytest.fixture
def queued_tasks(mongo_resource):
    """Callable returning ``(task, input)`` for every queued pipeline task, oldest first."""

    def _queued():
        collection = mongo_resource._get_collection(mongo_resource.PIPELINE_TASKS)
        return [(doc["task"], doc["input"]) for doc in collection.find()]

    return _queued


@pytest.fixture
def add_job(mongo_resource, sample_dataset, sample_import_file, sample_import_job):
    """Insert the sample dataset and file; returns a callable adding the job at a given stage."""
    mongo_resource.insert_dataset(sample_dataset)
    mongo_resource.insert_import_file(sample_import_file)

    def _add(stage, **fields):
        job = sample_import_job.model_copy(update={"stage": stage, **fields})
        mongo_resource.insert_import_job(job)
        return job

    return _add
