# =============================================================================
# Schedule Manager Sensor - triggers due scheduled URL imports
# =============================================================================

"""Schedule manager sensor for recurring URL imports."""

from datetime import datetime, timezone

from dagster import DefaultSensorStatus, SensorEvaluationContext, SkipReason, sensor

from geoimport.models import ScheduleStatus
from geoimport.scheduling import calculate_next_run, record_failure, render_import_name, should_run_now
from ..resources import MongoDBResource


__all__ = ["schedule_manager_sensor", "trigger_due_schedules"]

URL_FETCH_TASK = "url_fetch_job"


def trigger_due_schedules(mongodb, now: datetime, log) -> dict:
    """
    Queue a url-fetch task for every enabled schedule that is due.

    A schedule that fails to trigger is recorded as a failed run; the other
    schedules are still evaluated.

    Returns:
        Dict with checked, triggered and errors counts
    """
    schedules = mongodb.find_enabled_scheduled_imports()
    triggered = 0
    errors = 0

    for schedule in schedules:
        try:
            if not should_run_now(schedule, now):
                continue

            import_name = render_import_name(schedule, now)
            mongodb.update_scheduled_import(
                schedule.scheduled_import_id,
                {
                    "last_run": now,
                    "next_run": calculate_next_run(schedule, now),
                    "last_status": ScheduleStatus.RUNNING.value,
                },
            )
            mongodb.enqueue_task(
                URL_FETCH_TASK,
                {
                    "source_url": schedule.source_url,
                    "catalog_id": schedule.catalog_id,
                    "dataset_id": schedule.dataset_id,
                    "user_id": schedule.user_id,
                    "scheduled_import_id": schedule.scheduled_import_id,
                    "import_name": import_name,
                    "triggered_by": "schedule",
                },
            )
            triggered += 1
            log.info(f"Triggered scheduled import {schedule.scheduled_import_id} as '{import_name}'")
        except Exception as e:
            errors += 1
            log.error(f"Failed to trigger scheduled import {schedule.scheduled_import_id}: {e}")
            try:
                mongodb.update_scheduled_import(
                    schedule.scheduled_import_id, record_failure(schedule, now, str(e))
                )
            except Exception as update_error:
                log.error(
                    f"Failed to record failure for scheduled import {schedule.scheduled_import_id}: "
                    f"{update_error}"
                )

    return {"checked": len(schedules), "triggered": triggered, "errors": errors}


@sensor(
    minimum_interval_seconds=60,
    default_status=DefaultSensorStatus.RUNNING,
    name="schedule_manager_sensor",
    description="Queues url-fetch tasks for enabled scheduled imports that are due",
)
def schedule_manager_sensor(context: SensorEvaluationContext, mongodb: MongoDBResource):
    """Evaluate every enabled schedule once per tick."""
    try:
        summary = trigger_due_schedules(mongodb, datetime.now(timezone.utc), context.log)
    except Exception as e:
        context.log.error(f"Failed to load scheduled imports: {e}")
        yield SkipReason(f"Error loading scheduled imports: {e}")
        return

    yield SkipReason(
        f"Checked {summary['checked']} schedule(s): {summary['triggered']} triggered, "
        f"{summary['errors']} error(s)"
    )
