# =============================================================================
# Unit Tests: URL Fetch Ops
# =============================================================================

from unittest.mock import Mock

import pytest

from geoimport.fetch import calculate_data_hash
from geoimport.models import (
    ImportFile,
    ImportFileStatus,
    RetryConfig,
    ScheduleStatus,
    UrlFetchMetadata,
    User,
)
from services.dagster.import_pipelines.ops.url_fetch_ops import UrlFetchRequest, _fetch_url_import

URL = "https://data.example.org/events.csv"
BODY = b"id,title\nA1,Street festival\n"


def _response(status=200, headers=None, reason="OK"):
    response = Mock()
    response.status_code = status
    response.reason = reason
    response.headers = {"content-type": "text/csv", "etag": '"v2"'} if headers is None else headers
    response.iter_content.return_value = iter([BODY] if status == 200 else [])
    return response


def _session(*responses):
    session = Mock()
    session.get.side_effect = list(responses)
    return session


@pytest.fixture
def schedule(mongo_resource, sample_schedule):
    sample_schedule.retry_config = RetryConfig(max_retries=0)
    sample_schedule.last_etag = '"v1"'
    mongo_resource.insert_scheduled_import(sample_schedule)
    return sample_schedule


def _scheduled_request():
    return UrlFetchRequest(
        source_url=URL,
        catalog_id="cat-1",
        dataset_id="ds-1",
        user_id="user-1",
        scheduled_import_id="sched-1",
        import_name="Council feed 2024-03-15",
        triggered_by="schedule",
    )


# =============================================================================
# Manual Fetch
# =============================================================================

def test_manual_fetch_creates_import_file(mongo_resource, mock_minio, settings, mock_log, fixed_now, queued_tasks):
    request = UrlFetchRequest(source_url=URL, catalog_id="cat-1", user_id="user-1", import_name="Spring events")

    result = _fetch_url_import(mongo_resource, mock_minio, request, settings, mock_log, now=fixed_now, session=_session(_response()))

    assert result["success"] is True
    assert result["is_duplicate"] is False
    import_file = mongo_resource.get_import_file(result["import_file_id"])
    assert import_file.original_name == "Spring events.csv"
    assert import_file.filename.startswith("url-import-1710498600000-")
    assert import_file.filename.endswith(".csv")
    assert import_file.status == ImportFileStatus.PENDING
    assert import_file.dataset_mapping is None
    assert import_file.url_fetch.content_hash == calculate_data_hash(BODY)
    assert import_file.url_fetch.etag == '"v2"'
    assert import_file.metadata == {"import_name": "Spring events", "triggered_by": "manual"}

    (upload,) = [c.args[0] for c in mock_minio.put_file.call_args_list]
    assert upload["data"] == BODY
    assert upload["name"] == import_file.filename
    assert queued_tasks() == [("dataset_detection_job", {"import_file_id": import_file.import_file_id})]
    assert mongo_resource.get_usage("user-1").url_fetches_today == 1


def test_manual_fetch_sends_auth_headers(mongo_resource, mock_minio, settings, mock_log):
    session = _session(_response())
    request = UrlFetchRequest(source_url=URL, auth_config={"type": "bearer", "bearer_token": "t0k"})

    _fetch_url_import(mongo_resource, mock_minio, request, settings, mock_log, session=session)

    headers = session.get.call_args.kwargs["headers"]
    assert headers["Authorization"] == "Bearer t0k"
    assert "If-None-Match" not in headers


def test_same_content_in_catalog_is_a_duplicate(mongo_resource, mock_minio, settings, mock_log, queued_tasks):
    mongo_resource.insert_import_file(
        ImportFile(
            import_file_id="earlier",
            filename="url-import-1.csv",
            mime_type="text/csv",
            catalog_id="cat-1",
            status=ImportFileStatus.COMPLETED,
            url_fetch=UrlFetchMetadata(
                source_url=URL, content_hash=calculate_data_hash(BODY), content_type="text/csv", file_size=len(BODY)
            ),
        )
    )
    request = UrlFetchRequest(source_url=URL, catalog_id="cat-1")

    result = _fetch_url_import(mongo_resource, mock_minio, request, settings, mock_log, session=_session(_response()))

    assert result == {"success": True, "import_file_id": "earlier", "is_duplicate": True, "error": None}
    mock_minio.put_file.assert_not_called()
    assert queued_tasks() == []


def test_failure_is_returned_not_raised(mongo_resource, mock_minio, settings, mock_log):
    request = UrlFetchRequest(source_url=URL)
    session = _session(*[_response(status=503, reason="Service Unavailable") for _ in range(4)])

    result = _fetch_url_import(mongo_resource, mock_minio, request, settings, mock_log, session=session)

    assert result["success"] is False
    assert result["error"] == "HTTP 503: Service Unavailable"
    assert session.get.call_count == 4


def test_url_fetch_quota(mongo_resource, mock_minio, settings, mock_log):
    user = User(user_id="user-1", custom_quotas={"max_url_fetches_per_day": 0})
    mongo_resource._get_collection(mongo_resource.USERS).insert_one(user.model_dump())
    session = _session(_response())

    result = _fetch_url_import(mongo_resource, mock_minio, UrlFetchRequest(source_url=URL, user_id="user-1"), settings, mock_log, session=session)

    assert result["success"] is False
    assert "Daily URL fetch limit reached" in result["error"]
    session.get.assert_not_called()


# =============================================================================
# Scheduled Fetch
# =============================================================================

def test_scheduled_fetch_records_success(schedule, mongo_resource, mock_minio, settings, mock_log, fixed_now):
    session = _session(_response(headers={"content-type": "text/csv", "etag": '"v2"', "last-modified": "Fri, 15 Mar 2024 09:00:00 GMT"}))

    result = _fetch_url_import(mongo_resource, mock_minio, _scheduled_request(), settings, mock_log, now=fixed_now, session=session)

    assert session.get.call_args.kwargs["headers"]["If-None-Match"] == '"v1"'
    import_file = mongo_resource.get_import_file(result["import_file_id"])
    assert import_file.original_name == "Council feed 2024-03-15.csv"
    assert import_file.dataset_mapping.single_dataset_id == "ds-1"
    assert import_file.url_fetch.scheduled_import_id == "sched-1"

    stored = mongo_resource.get_scheduled_import("sched-1")
    assert stored.last_status == ScheduleStatus.SUCCESS
    assert stored.last_etag == '"v2"'
    assert stored.last_modified == "Fri, 15 Mar 2024 09:00:00 GMT"
    assert stored.statistics.successful_runs == 1
    (record,) = stored.execution_history
    assert record.job_id == import_file.import_file_id


def test_not_modified_counts_as_success(schedule, mongo_resource, mock_minio, settings, mock_log, queued_tasks):
    session = _session(_response(status=304, headers={}, reason="Not Modified"))

    result = _fetch_url_import(mongo_resource, mock_minio, _scheduled_request(), settings, mock_log, session=session)

    assert result["success"] is True
    assert result["is_duplicate"] is True
    assert result["import_file_id"] is None
    mock_minio.put_file.assert_not_called()
    assert queued_tasks() == []
    stored = mongo_resource.get_scheduled_import("sched-1")
    assert stored.last_status == ScheduleStatus.SUCCESS
    assert stored.last_etag == '"v1"'


def test_scheduled_failure_updates_statistics(schedule, mongo_resource, mock_minio, settings, mock_log):
    session = _session(_response(status=404, reason="Not Found"))

    result = _fetch_url_import(mongo_resource, mock_minio, _scheduled_request(), settings, mock_log, session=session)

    assert result["error"] == "HTTP 404: Not Found"
    stored = mongo_resource.get_scheduled_import("sched-1")
    assert stored.last_status == ScheduleStatus.FAILED
    assert stored.last_error == "HTTP 404: Not Found"
    assert stored.current_retries == 1
    assert stored.statistics.failed_runs == 1


def test_missing_schedule(mongo_resource, mock_minio, settings, mock_log):
    result = _fetch_url_import(mongo_resource, mock_minio, _scheduled_request(), settings, mock_log, session=_session())

    assert result["success"] is False
    assert "Scheduled import not found" in result["error"]
