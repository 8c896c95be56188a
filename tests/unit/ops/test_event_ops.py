# =============================================================================
# Unit Tests: Event Ops
# =============================================================================

import csv
import shutil
from unittest.mock import Mock

import mongomock
import pytest
from pymongo.errors import WriteError

from geoimport.events import build_event
from geoimport.models import (
    CoordinateSourceType,
    DuplicateEntry,
    Duplicates,
    DuplicateSummary,
    GeocodingResult,
    ImportFileStatus,
    ProcessingStage,
    Progress,
    User,
)
from services.dagster.import_pipelines.ops.event_ops import _create_events

MAIN_ST = "1 Main St, Springfield"
OAK_AVE = "2 Oak Ave, Springfield"


def _located(lat, lng):
    return GeocodingResult(latitude=lat, longitude=lng, confidence=0.9, provider="nominatim")


@pytest.fixture
def events_job(add_job, sample_mappings):
    """Add job-1 at create-events; row 3 repeats row 0."""

    def _add(geocoding_results, **fields):
        defaults = dict(
            progress=Progress(total=5),
            duplicates=Duplicates(
                internal=[DuplicateEntry(row_number=3, unique_id="ds-1:ext:A1", first_occurrence=0)],
                summary=DuplicateSummary(total_rows=5, unique_rows=4, internal_duplicates=1),
            ),
            detected_field_mappings=sample_mappings,
            geocoding_results=geocoding_results,
            dataset_schema_version=1,
        )
        return add_job(ProcessingStage.CREATE_EVENTS, **{**defaults, **fields})

    return _add


def _event(mongodb, unique_id):
    return mongodb._get_collection(mongodb.EVENTS).find_one({"unique_id": unique_id})


# =============================================================================
# Batches
# =============================================================================

def test_full_batch_creates_events_and_requeues(events_job, mongo_resource, mock_minio, settings, mock_log, queued_tasks):
    events_job({MAIN_ST: _located(39.78, -89.65)})

    result = _create_events(mongo_resource, mock_minio, "job-1", 0, settings, mock_log)

    assert result["status"] == "batch_processed"
    assert result["created"] == 3
    job = mongo_resource.get_import_job("job-1")
    assert job.progress.created_events == 3
    assert job.progress.processed_rows == 3
    assert job.progress.geocoded_rows == 2
    assert job.progress.event_batches == 1
    assert queued_tasks() == [("create_events_job", {"import_job_id": "job-1", "batch_number": 1})]

    festival = _event(mongo_resource, "ds-1:ext:A1")
    assert festival["name"] == "Street festival"
    assert festival["location"] == {"latitude": 39.78, "longitude": -89.65}
    assert festival["coordinate_source"]["type"] == CoordinateSourceType.GEOCODED.value
    assert festival["source_row"] == 0
    assert festival["schema_version_number"] == 1

    fair = _event(mongo_resource, "ds-1:ext:A2")
    assert fair["location"] is None
    assert fair["geocoding_info"]["original_address"] == OAK_AVE


def test_last_batch_hands_over_to_geocode_events(events_job, mongo_resource, mock_minio, settings, mock_log, queued_tasks):
    events_job({MAIN_ST: _located(39.78, -89.65)})
    _create_events(mongo_resource, mock_minio, "job-1", 0, settings, mock_log)

    result = _create_events(mongo_resource, mock_minio, "job-1", 1, settings, mock_log)

    assert result["status"] == "geocoding_pending"
    assert result["created"] == 1
    assert mongo_resource.get_import_job("job-1").stage == ProcessingStage.GEOCODE_EVENTS
    assert queued_tasks()[-1] == ("geocode_events_job", {"import_job_id": "job-1", "batch_number": 0})
    # The duplicate row never becomes a second event
    assert mongo_resource._get_collection(mongo_resource.EVENTS).count_documents({}) == 4


def test_last_batch_completes_when_everything_is_located(
    events_job, mongo_resource, mock_minio, settings, mock_log
):
    events_job({MAIN_ST: _located(39.78, -89.65), OAK_AVE: _located(39.80, -89.64)})
    _create_events(mongo_resource, mock_minio, "job-1", 0, settings, mock_log)

    result = _create_events(mongo_resource, mock_minio, "job-1", 1, settings, mock_log)

    assert result["status"] == "completed"
    job = mongo_resource.get_import_job("job-1")
    assert job.stage == ProcessingStage.COMPLETED
    assert job.results == {"total_events": 4, "duplicates_skipped": 1, "geocoded": 3, "errors": 0}
    assert mongo_resource.get_import_file("file-1").status == ImportFileStatus.COMPLETED
    assert mongo_resource.get_usage("user-1").total_events_created == 4


def test_persisted_batch_is_skipped(events_job, mongo_resource, mock_minio, settings, mock_log):
    events_job({})
    _create_events(mongo_resource, mock_minio, "job-1", 0, settings, mock_log)
    mock_minio.download_import_file.reset_mock()

    result = _create_events(mongo_resource, mock_minio, "job-1", 0, settings, mock_log)

    assert result["status"] == "skipped"
    mock_minio.download_import_file.assert_not_called()
    assert mongo_resource.get_import_job("job-1").progress.created_events == 3


def test_rerun_after_interrupted_batch_counts_rows_once(
    events_job, mongo_resource, mock_minio, sample_dataset, sample_mappings, sample_rows, settings, mock_log
):
    job = events_job({})
    # An earlier run stored the first two events, then died before recording the batch
    interrupted = [
        build_event(sample_rows[i], i, sample_dataset, "job-1", sample_mappings, {}, 1) for i in range(2)
    ]
    mongo_resource.upsert_events(interrupted)
    assert job.progress.event_batches == 0

    result = _create_events(mongo_resource, mock_minio, "job-1", 0, settings, mock_log)

    assert result["status"] == "batch_processed"
    stored = mongo_resource.get_import_job("job-1")
    assert stored.progress.processed_rows == 3
    assert stored.progress.created_events == 3
    assert stored.progress.event_batches == 1
    assert mongo_resource._get_collection(mongo_resource.EVENTS).count_documents({}) == 3

    again = _create_events(mongo_resource, mock_minio, "job-1", 0, settings, mock_log)

    assert again["status"] == "skipped"
    assert mongo_resource.get_import_job("job-1").progress.processed_rows == 3


# =============================================================================
# Errors and Quotas
# =============================================================================

def test_rows_without_id_are_recorded_as_errors(events_job, mongo_resource, settings, mock_log, tmp_path):
    path = tmp_path / "gaps.csv"
    with open(path, "w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(["id", "title", "date", "address"])
        writer.writerow(["B1", "Open day", "2024-04-01", ""])
        writer.writerow(["", "No id here", "2024-04-02", ""])
    minio = Mock()
    minio.download_import_file.side_effect = lambda filename, local_path: shutil.copyfile(path, local_path)
    events_job({}, progress=Progress(total=2), duplicates=Duplicates())

    result = _create_events(mongo_resource, minio, "job-1", 0, settings, mock_log)

    assert result["created"] == 1
    assert result["failed"] == 1
    job = mongo_resource.get_import_job("job-1")
    assert job.stage == ProcessingStage.COMPLETED
    (error,) = job.errors
    assert error.row == 1
    assert "external id" in error.error
    assert job.progress.failed_rows == 1
    assert job.results["errors"] == 1


def test_rejected_event_write_is_a_row_error(events_job, mongo_resource, mock_minio, settings, mock_log, monkeypatch):
    events_job({})
    original = mongomock.collection.Collection.find_one_and_update

    def _reject_fair(self, filter, update, *args, **kwargs):
        if filter.get("unique_id") == "ds-1:ext:A2":
            raise WriteError("Document failed validation", code=121)
        return original(self, filter, update, *args, **kwargs)

    monkeypatch.setattr(mongomock.collection.Collection, "find_one_and_update", _reject_fair)

    result = _create_events(mongo_resource, mock_minio, "job-1", 0, settings, mock_log)

    assert result["status"] == "batch_processed"
    assert result["created"] == 2
    assert result["failed"] == 1
    job = mongo_resource.get_import_job("job-1")
    assert job.stage == ProcessingStage.CREATE_EVENTS
    (error,) = job.errors
    assert error.row == 1
    assert error.error.startswith("Failed to store event:")
    assert job.progress.processed_rows == 3
    assert job.progress.created_events == 2
    assert job.progress.failed_rows == 1
    assert _event(mongo_resource, "ds-1:ext:A2") is None


def test_events_per_import_quota(events_job, mongo_resource, mock_minio, settings, mock_log):
    user = User(user_id="user-1", custom_quotas={"max_events_per_import": 3})
    mongo_resource._get_collection(mongo_resource.USERS).insert_one(user.model_dump())
    events_job({})

    with pytest.raises(RuntimeError, match="per-import limit of 3"):
        _create_events(mongo_resource, mock_minio, "job-1", 0, settings, mock_log)

    job = mongo_resource.get_import_job("job-1")
    assert job.stage == ProcessingStage.FAILED
    assert job.error_classification == "user-action"
    assert mongo_resource._get_collection(mongo_resource.EVENTS).count_documents({}) == 0
