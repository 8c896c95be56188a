# =============================================================================
# Common Ops - Shared plumbing for stage handlers
# =============================================================================
# Every stage op follows the same shape: load the import job, take its
# advisory lease, do one unit of work, persist, queue the next unit, release
# the lease. Stage-level failures mark the job failed and are re-raised.
# =============================================================================

import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional

from dagster import Field

from geoimport.exceptions import QuotaExceededError
from geoimport.models import Dataset, ImportFile, ImportFileStatus, ImportJob, ProcessingStage, UsageType
from geoimport.recovery import ErrorClassification, classify_error
from geoimport.stages import TERMINAL_STAGES, task_for_stage


__all__ = [
    "STAGE_OP_CONFIG",
    "StageOutcome",
    "queue_stage",
    "run_stage",
    "load_dataset",
    "load_import_file",
    "local_import_file",
    "complete_import_job",
]

STAGE_OP_CONFIG = {
    "import_job_id": Field(str, description="Import job to process"),
    "batch_number": Field(int, default_value=0, is_required=False, description="Batch to process"),
}

StageOutcome = Dict[str, Any]


def queue_stage(
    mongodb,
    import_job_id: str,
    stage: ProcessingStage,
    log,
    batch_number: int = 0,
) -> Optional[str]:
    """Queue the task that performs ``stage``. Stages without a task queue nothing."""
    task = task_for_stage(stage)
    if task is None:
        return None
    task_id = mongodb.enqueue_task(task, {"import_job_id": import_job_id, "batch_number": batch_number})
    log.info(f"Queued {task} for import job {import_job_id} (batch {batch_number})")
    return task_id


def run_stage(
    mongodb,
    import_job_id: str,
    stage: ProcessingStage,
    owner: str,
    lease_seconds: int,
    log,
    handler: Callable[[ImportJob], StageOutcome],
) -> StageOutcome:
    """
    Run ``handler`` for an import job that is at ``stage``.

    Skips (without error) when the job has moved past ``stage`` or another
    execution holds the job's lease.

    Raises:
        RuntimeError: If the job is missing or the handler fails; the job is
            marked failed first
    """
    job = mongodb.get_import_job(import_job_id)
    if job is None:
        raise RuntimeError(f"Import job not found: {import_job_id}")

    if job.stage != stage:
        log.info(
            f"Import job {import_job_id} is at '{job.stage.value}', not '{stage.value}'; skipping"
        )
        return {"status": "skipped", "reason": f"stage is {job.stage.value}"}

    token = mongodb.acquire_lease(import_job_id, owner, lease_seconds)
    if token is None:
        log.info(f"Import job {import_job_id} is leased by another execution; skipping")
        return {"status": "skipped", "reason": "lease held"}

    try:
        return handler(job)
    except QuotaExceededError as e:
        log.error(f"Quota exceeded for import job {import_job_id}: {e}")
        mongodb.fail_import_job(
            import_job_id, str(e), stage=stage.value,
            classification=ErrorClassification.USER_ACTION.value,
        )
        _refresh_import_file_status(mongodb, job.import_file_id, log)
        raise RuntimeError(f"Stage '{stage.value}' failed for import job {import_job_id}: {e}") from e
    except Exception as e:
        log.error(f"Stage '{stage.value}' failed for import job {import_job_id}: {e}")
        mongodb.fail_import_job(
            import_job_id, str(e), stage=stage.value,
            classification=classify_error(str(e)).classification.value,
        )
        _refresh_import_file_status(mongodb, job.import_file_id, log)
        raise RuntimeError(f"Stage '{stage.value}' failed for import job {import_job_id}: {e}") from e
    finally:
        mongodb.release_lease(import_job_id, token)


def load_dataset(mongodb, dataset_id: str) -> Dataset:
    dataset = mongodb.get_dataset(dataset_id)
    if dataset is None:
        raise RuntimeError(f"Dataset not found: {dataset_id}")
    return dataset


def load_import_file(mongodb, import_file_id: str) -> ImportFile:
    import_file = mongodb.get_import_file(import_file_id)
    if import_file is None:
        raise RuntimeError(f"Import file not found: {import_file_id}")
    return import_file


@contextmanager
def local_import_file(minio, import_file: ImportFile, log) -> Iterator[str]:
    """Download an import file to a temp path that is removed on exit."""
    suffix = Path(import_file.filename).suffix or ".csv"
    temp_file = tempfile.NamedTemporaryFile(delete=False, suffix=suffix)
    temp_file_path = temp_file.name
    temp_file.close()

    try:
        minio.download_import_file(import_file.filename, temp_file_path)
        log.debug(f"Downloaded import file '{import_file.filename}' to {temp_file_path}")
        yield temp_file_path
    finally:
        try:
            Path(temp_file_path).unlink(missing_ok=True)
        except OSError as e:
            log.warning(f"Failed to clean up temporary file {temp_file_path}: {e}")


def _refresh_import_file_status(mongodb, import_file_id: str, log) -> None:
    """Close out the import file once every one of its jobs is terminal."""
    jobs = mongodb.find_import_jobs_for_file(import_file_id)
    if not jobs or any(j.stage not in TERMINAL_STAGES for j in jobs):
        return
    failed = any(j.stage == ProcessingStage.FAILED for j in jobs)
    status = ImportFileStatus.FAILED if failed else ImportFileStatus.COMPLETED
    mongodb.update_import_file(
        import_file_id,
        {"status": status.value, "completed_at": datetime.now(timezone.utc)},
    )
    log.info(f"Import file {import_file_id} finished with status '{status.value}'")


def complete_import_job(mongodb, job: ImportJob, log) -> StageOutcome:
    """
    Move a job to ``completed``, write its results summary and count the
    created events against the owner's quota.
    """
    current = mongodb.get_import_job(job.import_job_id) or job
    summary = current.duplicates.summary
    results = {
        "total_events": current.progress.created_events,
        "duplicates_skipped": summary.internal_duplicates + summary.external_duplicates,
        "geocoded": current.progress.geocoded_rows,
        "errors": len(current.errors),
    }
    mongodb.advance_import_job(job, ProcessingStage.COMPLETED, {"results": results})
    mongodb.increment_usage(current.user_id, UsageType.TOTAL_EVENTS_CREATED, current.progress.created_events)
    log.info(
        f"Import job {job.import_job_id} completed: {results['total_events']} events, "
        f"{results['duplicates_skipped']} duplicates skipped, {results['errors']} errors"
    )
    _refresh_import_file_status(mongodb, current.import_file_id, log)
    return {"status": "completed", **results}
