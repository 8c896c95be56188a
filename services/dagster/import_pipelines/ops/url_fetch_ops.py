# =============================================================================
# URL Fetch Ops - download a remote file and hand it to the import pipeline
# =============================================================================
# Used for manual URL imports and by the schedule manager. A failed fetch is
# a result, not an exception: schedule statistics are updated and the op
# returns the error so the run itself succeeds.
# =============================================================================

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
from dagster import Field, OpExecutionContext, Permissive, op
from pydantic import BaseModel, TypeAdapter
from pydantic import Field as ModelField

from geoimport.fetch import FetchOptions, build_auth_headers, build_filename, fetch_with_retry
from geoimport.models import (
    AdvancedOptions,
    AuthConfig,
    DatasetMapping,
    ImportFile,
    ImportFileStatus,
    NoAuth,
    PipelineSettings,
    QuotaType,
    RetryConfig,
    ScheduledImport,
    UrlFetchMetadata,
    UsageType,
)
from geoimport.quota import enforce_quota
from geoimport.scheduling import record_failure, record_success


__all__ = ["UrlFetchRequest", "url_fetch_op"]

DATASET_DETECTION_TASK = "dataset_detection_job"


class UrlFetchRequest(BaseModel):
    """Input of a url-fetch task."""

    source_url: str = ModelField(..., description="URL to download")
    catalog_id: Optional[str] = ModelField(None, description="Catalog the file is imported into")
    dataset_id: Optional[str] = ModelField(None, description="Target dataset for every sheet")
    user_id: Optional[str] = ModelField(None, description="Owning user, for quotas")
    scheduled_import_id: Optional[str] = ModelField(None, description="Schedule that triggered the fetch")
    import_name: Optional[str] = ModelField(None, description="Human-facing import name")
    triggered_by: str = ModelField("manual", description="'schedule' or 'manual'")
    auth_config: Optional[dict[str, Any]] = ModelField(None, description="Auth for manual fetches")


def _fetch_options(
    auth: Optional[AuthConfig],
    retry: RetryConfig,
    advanced: AdvancedOptions,
    schedule: Optional[ScheduledImport],
    settings: PipelineSettings,
) -> FetchOptions:
    use_cache = schedule is not None and advanced.use_http_cache
    return FetchOptions(
        headers=build_auth_headers(auth),
        timeout_seconds=advanced.timeout_minutes * 60,
        max_size_bytes=int(advanced.max_file_size_mb * 1024 * 1024),
        max_retries=retry.max_retries,
        retry_delay_seconds=retry.retry_delay_minutes * 60,
        exponential_backoff=retry.exponential_backoff,
        expected_content_type=advanced.expected_content_type,
        etag=schedule.last_etag if use_cache else None,
        last_modified=schedule.last_modified if use_cache else None,
        test_mode=settings.test_mode,
    )


def _fetch_url_import(
    mongodb,
    minio,
    request: UrlFetchRequest,
    settings: PipelineSettings,
    log,
    now: Optional[datetime] = None,
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:
    """
    Core logic for a URL import.

    Args:
        mongodb: MongoDBResource instance
        minio: MinIOResource instance
        request: What to fetch and on whose behalf
        settings: Pipeline settings (test mode skips retry waits)
        log: Logger instance (context.log)
        now: Clock override for tests
        session: Optional requests session

    Returns:
        Dict with success, import_file_id, is_duplicate and error
    """
    now = now or datetime.now(timezone.utc)
    started = time.monotonic()
    schedule = None

    try:
        if request.scheduled_import_id:
            schedule = mongodb.get_scheduled_import(request.scheduled_import_id)
            if schedule is None:
                raise RuntimeError(f"Scheduled import not found: {request.scheduled_import_id}")

        enforce_quota(
            mongodb.get_user(request.user_id),
            mongodb.get_usage(request.user_id),
            QuotaType.URL_FETCHES_PER_DAY,
            1,
            now,
        )
        mongodb.increment_usage(request.user_id, UsageType.URL_FETCHES_TODAY, 1, now)

        if schedule is not None:
            options = _fetch_options(
                schedule.auth_config, schedule.retry_config, schedule.advanced_options, schedule, settings
            )
            skip_duplicates = schedule.advanced_options.skip_duplicate_checking
        else:
            auth = TypeAdapter(AuthConfig).validate_python(request.auth_config) if request.auth_config else NoAuth()
            options = _fetch_options(auth, RetryConfig(), AdvancedOptions(), None, settings)
            skip_duplicates = False

        result = fetch_with_retry(request.source_url, options, session=session)
        cache_fields = {"last_etag": result.etag, "last_modified": result.last_modified}

        duplicate_of = None
        if result.not_modified:
            log.info(f"{request.source_url} not modified since last fetch")
        elif not skip_duplicates:
            duplicate_of = mongodb.find_completed_file_by_hash(request.catalog_id, result.content_hash)
            if duplicate_of is not None:
                log.info(
                    f"Content of {request.source_url} matches import file {duplicate_of.import_file_id}; "
                    f"not re-importing"
                )

        if result.not_modified or duplicate_of is not None:
            if schedule is not None:
                mongodb.update_scheduled_import(
                    schedule.scheduled_import_id,
                    {
                        **record_success(schedule, now, time.monotonic() - started, None, request.triggered_by),
                        **cache_fields,
                    },
                )
            return {
                "success": True,
                "import_file_id": duplicate_of.import_file_id if duplicate_of else None,
                "is_duplicate": True,
                "error": None,
            }

        filename = build_filename(result.file_extension, now)
        minio.put_file(
            {"data": result.data, "mimetype": result.mime_type, "name": filename, "size": result.content_length}
        )

        import_name = request.import_name or (schedule.name if schedule else filename)
        import_file = ImportFile(
            import_file_id=uuid.uuid4().hex,
            filename=filename,
            original_name=f"{import_name}{result.file_extension}",
            mime_type=result.mime_type,
            file_size=result.content_length,
            catalog_id=request.catalog_id,
            user_id=request.user_id,
            status=ImportFileStatus.PENDING,
            dataset_mapping=(
                DatasetMapping(mode="single", single_dataset_id=request.dataset_id)
                if request.dataset_id else None
            ),
            url_fetch=UrlFetchMetadata(
                source_url=request.source_url,
                content_hash=result.content_hash,
                content_type=result.mime_type,
                file_size=result.content_length,
                fetched_at=now,
                attempts=result.attempts,
                scheduled_import_id=request.scheduled_import_id,
                etag=result.etag,
                last_modified=result.last_modified,
            ),
            metadata={"import_name": import_name, "triggered_by": request.triggered_by},
        )
        mongodb.insert_import_file(import_file)
        mongodb.enqueue_task(DATASET_DETECTION_TASK, {"import_file_id": import_file.import_file_id})
        log.info(
            f"Fetched {result.content_length} bytes from {request.source_url} in {result.attempts} attempt(s); "
            f"created import file {import_file.import_file_id}"
        )

        if schedule is not None:
            mongodb.update_scheduled_import(
                schedule.scheduled_import_id,
                {
                    **record_success(
                        schedule, now, time.monotonic() - started, import_file.import_file_id, request.triggered_by
                    ),
                    **cache_fields,
                },
            )
        return {
            "success": True,
            "import_file_id": import_file.import_file_id,
            "is_duplicate": False,
            "error": None,
        }

    except Exception as e:
        log.error(f"URL fetch failed for {request.source_url}: {e}")
        if schedule is not None:
            mongodb.update_scheduled_import(
                schedule.scheduled_import_id,
                record_failure(schedule, now, str(e), time.monotonic() - started, request.triggered_by),
            )
        return {"success": False, "import_file_id": None, "is_duplicate": False, "error": str(e)}


@op(
    config_schema={
        "source_url": Field(str, description="URL to download"),
        "catalog_id": Field(str, is_required=False),
        "dataset_id": Field(str, is_required=False),
        "user_id": Field(str, is_required=False),
        "scheduled_import_id": Field(str, is_required=False),
        "import_name": Field(str, is_required=False),
        "triggered_by": Field(str, default_value="manual", is_required=False),
        "auth_config": Field(Permissive(), is_required=False, description="Auth for manual fetches"),
    },
    required_resource_keys={"mongodb", "minio"},
)
def url_fetch_op(context: OpExecutionContext) -> dict:
    """
    Fetch a remote CSV/XLSX file and queue dataset detection for it.

    Returns:
        Dict with success, import_file_id, is_duplicate and error
    """
    return _fetch_url_import(
        mongodb=context.resources.mongodb,
        minio=context.resources.minio,
        request=UrlFetchRequest(**context.op_config),
        settings=PipelineSettings(),
        log=context.log,
    )
