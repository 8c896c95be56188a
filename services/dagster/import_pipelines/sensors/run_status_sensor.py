# =============================================================================
# Run Status Sensor - import job failure tracking
# =============================================================================
# A stage op marks its own import job failed before raising. This sensor
# covers runs that die without reaching that code (crash, cancellation,
# config errors) so the import job does not sit in a non-terminal stage.
# =============================================================================

"""Run failure sensor for import job lifecycle tracking."""

from dagster import (
    DagsterRunStatus,
    DefaultSensorStatus,
    RunFailureSensorContext,
    run_failure_sensor,
)

from geoimport.models import ImportFileStatus, MongoSettings
from geoimport.recovery import classify_error
from geoimport.stages import TERMINAL_STAGES
from ..resources import MongoDBResource


__all__ = ["import_run_failure_sensor", "handle_failed_run"]


def _get_mongodb() -> MongoDBResource:
    """Create a MongoDB resource using settings from environment."""
    settings = MongoSettings()
    return MongoDBResource(connection_string=settings.connection_string, database=settings.database)


def handle_failed_run(mongodb, run_id: str, status: DagsterRunStatus, tags: dict, log) -> str | None:
    """
    Mark the import job (or import file) behind a failed run as failed.

    Returns:
        The id of the document that was updated, or None
    """
    if status == DagsterRunStatus.CANCELED:
        error_message = f"Run canceled. See Dagster UI for details: {run_id}"
    else:
        error_message = f"Run failed. See Dagster UI for details: {run_id}"

    import_job_id = tags.get("import_job_id")
    if import_job_id:
        job = mongodb.get_import_job(import_job_id)
        if job is None:
            log.warning(f"Run {run_id} references unknown import job {import_job_id}")
            return None
        if job.stage in TERMINAL_STAGES:
            log.debug(f"Import job {import_job_id} already {job.stage.value}; nothing to do")
            return None
        mongodb.fail_import_job(
            import_job_id, error_message, stage=job.stage.value,
            classification=classify_error(error_message).classification.value,
        )
        log.info(f"Marked import job {import_job_id} failed after run {run_id}")
        return import_job_id

    import_file_id = tags.get("import_file_id")
    if import_file_id:
        import_file = mongodb.get_import_file(import_file_id)
        if import_file is None or import_file.status in (ImportFileStatus.COMPLETED, ImportFileStatus.FAILED):
            return None
        mongodb.update_import_file(
            import_file_id, {"status": ImportFileStatus.FAILED.value, "error_log": error_message}
        )
        log.info(f"Marked import file {import_file_id} failed after run {run_id}")
        return import_file_id

    log.debug(f"Run {run_id} carries no import job or import file tag")
    return None


@run_failure_sensor(
    name="import_run_failure_sensor",
    description="Marks import jobs failed when their runs fail or are canceled",
    default_status=DefaultSensorStatus.RUNNING,
)
def import_run_failure_sensor(context: RunFailureSensorContext):
    dagster_run = context.dagster_run
    handle_failed_run(
        _get_mongodb(),
        dagster_run.run_id,
        dagster_run.status,
        dict(dagster_run.tags),
        context.log,
    )
