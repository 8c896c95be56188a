# =============================================================================
# Event Ops - create-events stage
# =============================================================================
# Turns one batch of non-duplicate rows per execution into events. Row-level
# failures are recorded on the job and never stop the batch.
# =============================================================================

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dagster import OpExecutionContext, op

from geoimport.events import build_event
from geoimport.models import (
    CoordinateSourceType,
    ImportJob,
    JobError,
    PipelineSettings,
    ProcessingStage,
    QuotaType,
)
from geoimport.quota import enforce_quota
from geoimport.readers import read_batch
from geoimport.transforms import apply_transforms
from .common_ops import (
    STAGE_OP_CONFIG,
    complete_import_job,
    load_dataset,
    load_import_file,
    local_import_file,
    queue_stage,
    run_stage,
)


__all__ = ["create_events_op"]


def _create_events(
    mongodb,
    minio,
    import_job_id: str,
    batch_number: int,
    settings: PipelineSettings,
    log,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Core logic for one event creation batch.

    Events are upserted by (dataset_id, unique_id) so a re-executed batch
    never creates a second copy. A short batch ends the stage: the job moves
    to geocode-events when events still lack a location, otherwise it
    completes.
    """
    now = now or datetime.now(timezone.utc)

    def handle(job: ImportJob) -> Dict[str, Any]:
        if batch_number < job.progress.event_batches:
            log.info(f"Event batch {batch_number} of import job {job.import_job_id} already persisted; skipping")
            return {"status": "skipped", "reason": "batch already processed"}

        dataset = load_dataset(mongodb, job.dataset_id)
        if batch_number == 0:
            unique_rows = max(0, job.progress.total - len(job.duplicates.row_numbers()))
            enforce_quota(
                mongodb.get_user(job.user_id),
                mongodb.get_usage(job.user_id),
                QuotaType.EVENTS_PER_IMPORT,
                unique_rows,
                now,
            )

        import_file = load_import_file(mongodb, job.import_file_id)
        batch_size = settings.event_creation_batch_size
        start_row = batch_number * batch_size
        with local_import_file(minio, import_file, log) as local_path:
            rows = read_batch(local_path, import_file.mime_type, job.sheet_index, start_row, batch_size)

        skip_rows = job.duplicates.row_numbers()
        events = []
        errors = []
        for offset, raw_row in enumerate(rows):
            row_number = start_row + offset
            if row_number in skip_rows:
                continue
            row = apply_transforms(raw_row, dataset.import_transforms)
            try:
                events.append(
                    build_event(
                        row,
                        row_number,
                        dataset,
                        job.import_job_id,
                        job.detected_field_mappings,
                        job.geocoding_results,
                        job.dataset_schema_version,
                    )
                )
            except ValueError as e:
                errors.append(JobError(row=row_number, error=str(e), stage=ProcessingStage.CREATE_EVENTS.value))

        created, write_failures = mongodb.upsert_events(events) if events else (0, [])
        for event, message in write_failures:
            errors.append(
                JobError(
                    row=event.source_row,
                    error=f"Failed to store event: {message}",
                    stage=ProcessingStage.CREATE_EVENTS.value,
                )
            )
        failed_ids = {event.unique_id for event, _ in write_failures}
        stored = [e for e in events if e.unique_id not in failed_ids]
        if errors:
            log.warning(f"{len(errors)} row(s) failed in event batch {batch_number} of import job {job.import_job_id}")

        geocoded = sum(1 for e in stored if e.coordinate_source.type == CoordinateSourceType.GEOCODED)
        committed = mongodb.commit_event_batch(
            job.import_job_id,
            batch_number,
            {
                "processed_rows": len(stored) + len(errors),
                "created_events": created,
                "geocoded_rows": geocoded,
                "failed_rows": len(errors),
            },
            errors,
        )
        if not committed:
            log.info(f"Event batch {batch_number} of import job {job.import_job_id} was committed by another run; skipping")
            return {"status": "skipped", "reason": "batch already processed"}
        log.info(
            f"Event batch {batch_number} of import job {job.import_job_id}: "
            f"{created} created, {len(errors)} failed, {len(rows)} rows read"
        )

        batch_result = {
            "batch_number": batch_number,
            "rows": len(rows),
            "created": created,
            "failed": len(errors),
        }
        if len(rows) == batch_size:
            queue_stage(mongodb, job.import_job_id, ProcessingStage.CREATE_EVENTS, log, batch_number + 1)
            return {"status": "batch_processed", **batch_result}

        if mongodb.count_events_needing_geocoding(job.import_job_id):
            mongodb.advance_import_job(job, ProcessingStage.GEOCODE_EVENTS)
            queue_stage(mongodb, job.import_job_id, ProcessingStage.GEOCODE_EVENTS, log)
            return {"status": "geocoding_pending", **batch_result}

        return {**complete_import_job(mongodb, job, log), **batch_result}

    return run_stage(
        mongodb, import_job_id, ProcessingStage.CREATE_EVENTS,
        owner=f"create-events:{import_job_id}:{batch_number}",
        lease_seconds=settings.lease_seconds,
        log=log,
        handler=handle,
    )


@op(
    config_schema=STAGE_OP_CONFIG,
    required_resource_keys={"mongodb", "minio"},
)
def create_events_op(context: OpExecutionContext) -> dict:
    """Create events for one batch of an import job's rows."""
    return _create_events(
        mongodb=context.resources.mongodb,
        minio=context.resources.minio,
        import_job_id=context.op_config["import_job_id"],
        batch_number=context.op_config["batch_number"],
        settings=PipelineSettings(),
        log=context.log,
    )
