"""
Unit tests for MinIOResource.

Tests all methods with mocked minio.Minio client to avoid network calls.
"""

from unittest.mock import Mock, patch

import pytest
from minio.error import S3Error

from services.dagster.import_pipelines.resources import MinIOResource

MINIO = "services.dagster.import_pipelines.resources.minio_resource.Minio"


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def minio_resource():
    """Create a MinIOResource instance with test configuration."""
    return MinIOResource(
        endpoint="localhost:9000",
        access_key="test_access",
        secret_key="test_secret",
        use_ssl=False,
        import_bucket="test-imports",
    )


def _s3_error(code, resource):
    return S3Error(
        code=code,
        message="error",
        resource=resource,
        request_id="test",
        host_id="test",
        response=Mock(status=404),
    )


# =============================================================================
# Test: get_client
# =============================================================================

def test_get_client(minio_resource):
    with patch(MINIO) as mock_minio:
        minio_resource.get_client()

        mock_minio.assert_called_once_with(
            "localhost:9000",
            access_key="test_access",
            secret_key="test_secret",
            secure=False,
        )


# =============================================================================
# Test: put_file
# =============================================================================

def test_put_file_uploads_bytes(minio_resource):
    mock_client = Mock()
    with patch(MINIO, return_value=mock_client):
        key = minio_resource.put_file(
            {"data": b"id,title\n", "mimetype": "text/csv", "name": "url-import-1.csv", "size": 9}
        )

    assert key == "url-import-1.csv"
    args, kwargs = mock_client.put_object.call_args
    assert args[0] == "test-imports"
    assert args[1] == "url-import-1.csv"
    assert args[2].read() == b"id,title\n"
    assert kwargs == {"length": 9, "content_type": "text/csv"}


def test_put_file_defaults(minio_resource):
    mock_client = Mock()
    with patch(MINIO, return_value=mock_client):
        minio_resource.put_file({"data": b"abc", "name": "blob.bin"})

    _, kwargs = mock_client.put_object.call_args
    assert kwargs == {"length": 3, "content_type": "application/octet-stream"}


def test_put_file_missing_bucket(minio_resource):
    mock_client = Mock()
    mock_client.put_object.side_effect = _s3_error("NoSuchBucket", "test-imports")
    with patch(MINIO, return_value=mock_client):
        with pytest.raises(RuntimeError, match="does not exist"):
            minio_resource.put_file({"data": b"abc", "name": "blob.bin"})


# =============================================================================
# Test: download_import_file
# =============================================================================

def test_download_import_file_writes_chunks(minio_resource, tmp_path):
    response = Mock()
    response.stream.return_value = [b"id,title\n", b"A1,Fair\n"]
    mock_client = Mock()
    mock_client.get_object.return_value = response
    target = tmp_path / "nested" / "events.csv"

    with patch(MINIO, return_value=mock_client):
        minio_resource.download_import_file("events.csv", str(target))

    assert target.read_bytes() == b"id,title\nA1,Fair\n"
    mock_client.get_object.assert_called_once_with("test-imports", "events.csv")
    response.close.assert_called_once()
    response.release_conn.assert_called_once()


def test_download_import_file_missing_key(minio_resource, tmp_path):
    mock_client = Mock()
    mock_client.get_object.side_effect = _s3_error("NoSuchKey", "missing.csv")

    with patch(MINIO, return_value=mock_client):
        with pytest.raises(RuntimeError, match="not found"):
            minio_resource.download_import_file("missing.csv", str(tmp_path / "x.csv"))
