# =============================================================================
# Maintenance Ops - lease cleanup, stuck schedules and error recovery
# =============================================================================

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from dagster import Field, OpExecutionContext, op

from geoimport.models import MAX_EXECUTION_HISTORY, ExecutionRecord, PipelineSettings, ScheduleStatus
from geoimport.recovery import RetryPolicy, determine_recovery_stage, next_retry_at, resume_batch_number
from geoimport.scheduling import ensure_utc
from .common_ops import queue_stage


__all__ = ["maintenance_op"]

RECOVERY_BATCH_LIMIT = 10


def _clear_leases(mongodb, now: datetime, log) -> int:
    cleared = mongodb.clear_expired_leases(now)
    if cleared:
        log.info(f"Cleared {cleared} expired import job lease(s)")
    return cleared


def _reset_stuck_schedules(mongodb, now: datetime, threshold_minutes: int, dry_run: bool, log) -> Dict[str, Any]:
    """Fail schedules left in 'running' longer than the threshold."""
    cutoff = now - timedelta(minutes=threshold_minutes)
    stuck = mongodb.find_stuck_scheduled_imports(cutoff)
    reset = []
    for schedule in stuck:
        minutes = int((now - ensure_utc(schedule.last_run)).total_seconds() // 60)
        message = f"Import was stuck in running state for {minutes} minutes"
        if dry_run:
            log.info(f"[dry-run] Would reset scheduled import {schedule.scheduled_import_id}: {message}")
        else:
            record = ExecutionRecord(executed_at=now, status=ScheduleStatus.FAILED, error=message)
            history = ([record] + list(schedule.execution_history))[:MAX_EXECUTION_HISTORY]
            mongodb.update_scheduled_import(
                schedule.scheduled_import_id,
                {
                    "last_status": ScheduleStatus.FAILED.value,
                    "last_error": message,
                    "execution_history": [r.model_dump() for r in history],
                },
            )
            log.warning(f"Reset scheduled import {schedule.scheduled_import_id}: {message}")
        reset.append(schedule.scheduled_import_id)
    return {"found": len(stuck), "reset": 0 if dry_run else len(reset), "scheduled_import_ids": reset}


def _recover_failed_jobs(mongodb, now: datetime, policy: RetryPolicy, log) -> Dict[str, int]:
    """
    Schedule retries for recoverable failures and re-drive the ones that
    are due. Permanent and user-action failures stay failed.
    """
    scheduled = 0
    for job in mongodb.find_failed_import_jobs(policy.max_retries):
        retry_at = next_retry_at(job, policy, now)
        if retry_at is None:
            continue
        mongodb.update_import_job(job.import_job_id, {"next_retry_at": retry_at})
        scheduled += 1
        log.info(
            f"Import job {job.import_job_id} scheduled for retry {job.retry_attempts + 1} "
            f"at {retry_at.isoformat()}"
        )

    retried = 0
    for job in mongodb.find_retry_due_import_jobs(now, limit=RECOVERY_BATCH_LIMIT):
        stage = determine_recovery_stage(job)
        try:
            mongodb.update_import_job(
                job.import_job_id,
                {
                    "stage": stage.value,
                    "retry_attempts": job.retry_attempts + 1,
                    "next_retry_at": None,
                    "error_classification": None,
                },
            )
            batch_number = resume_batch_number(job, stage)
            queue_stage(mongodb, job.import_job_id, stage, log, batch_number)
            retried += 1
            log.info(
                f"Recovering import job {job.import_job_id} at stage '{stage.value}', batch {batch_number}"
            )
        except Exception as e:
            log.error(f"Failed to recover import job {job.import_job_id}: {e}")

    return {"retries_scheduled": scheduled, "jobs_retried": retried}


def _run_maintenance(
    mongodb,
    settings: PipelineSettings,
    log,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    policy = RetryPolicy(
        max_retries=settings.max_retries,
        base_delay_seconds=settings.retry_base_delay_seconds,
        max_delay_seconds=settings.retry_max_delay_seconds,
        backoff_multiplier=settings.retry_backoff_multiplier,
    )
    return {
        "leases_cleared": _clear_leases(mongodb, now, log),
        "stuck_schedules": _reset_stuck_schedules(
            mongodb, now, settings.stuck_schedule_threshold_minutes, dry_run, log
        ),
        "recovery": _recover_failed_jobs(mongodb, now, policy, log),
    }


@op(
    config_schema={
        "dry_run": Field(bool, default_value=False, is_required=False, description="Report stuck schedules only"),
    },
    required_resource_keys={"mongodb"},
)
def maintenance_op(context: OpExecutionContext) -> dict:
    """Clear expired leases, reset stuck schedules and retry recoverable failures."""
    return _run_maintenance(
        mongodb=context.resources.mongodb,
        settings=PipelineSettings(),
        log=context.log,
        dry_run=context.op_config["dry_run"],
    )
