# =============================================================================
# Task Queue Sensor - pipeline-tasks collection -> Dagster runs
# =============================================================================
# Stage ops queue their follow-up work as documents in ``pipeline-tasks``.
# This sensor claims pending tasks and launches the matching job, passing the
# task input as the entry op's config.
# =============================================================================

"""Task queue sensor that dispatches queued pipeline tasks."""

from dagster import (
    DefaultSensorStatus,
    RunRequest,
    SensorEvaluationContext,
    SkipReason,
    sensor,
)

from ..jobs import (
    TASK_ENTRY_OPS,
    analyze_duplicates_job,
    approve_schema_job,
    create_events_job,
    create_schema_version_job,
    dataset_detection_job,
    detect_schema_job,
    geocode_batch_job,
    geocode_events_job,
    reject_schema_job,
    url_fetch_job,
    validate_schema_job,
)
from ..resources import MongoDBResource


__all__ = ["task_queue_sensor", "build_task_run_request"]

MAX_TASKS_PER_TICK = 50

# Task input keys copied onto run tags for lifecycle tracking
TAGGED_INPUT_KEYS = ("import_job_id", "import_file_id", "scheduled_import_id")


def build_task_run_request(task: dict) -> RunRequest:
    """
    Build the RunRequest for one claimed task document.

    Raises:
        ValueError: If the task names no known job
    """
    job_name = task["task"]
    op_name = TASK_ENTRY_OPS.get(job_name)
    if op_name is None:
        raise ValueError(f"Unknown task '{job_name}'")

    # Optional op config fields reject explicit nulls
    task_input = {k: v for k, v in (task.get("input") or {}).items() if v is not None}
    tags = {"task_id": task["task_id"], "task": job_name}
    for key in TAGGED_INPUT_KEYS:
        if task_input.get(key):
            tags[key] = str(task_input[key])
    if "batch_number" in task_input:
        tags["batch_number"] = str(task_input["batch_number"])

    return RunRequest(
        run_key=task["task_id"],
        job_name=job_name,
        run_config={"ops": {op_name: {"config": task_input}}},
        tags=tags,
    )


@sensor(
    jobs=[
        dataset_detection_job,
        analyze_duplicates_job,
        detect_schema_job,
        validate_schema_job,
        approve_schema_job,
        reject_schema_job,
        create_schema_version_job,
        geocode_batch_job,
        create_events_job,
        geocode_events_job,
        url_fetch_job,
    ],
    minimum_interval_seconds=10,
    default_status=DefaultSensorStatus.RUNNING,
    name="task_queue_sensor",
    description="Launches runs for tasks queued in the pipeline-tasks collection",
)
def task_queue_sensor(context: SensorEvaluationContext, mongodb: MongoDBResource):
    """
    Claim pending tasks (oldest first) and yield one RunRequest per task.

    Claimed tasks are marked dispatched before the run is requested, and the
    task id is the run key, so a task is launched at most once.
    """
    try:
        tasks = mongodb.claim_pending_tasks(limit=MAX_TASKS_PER_TICK)
    except Exception as e:
        context.log.error(f"Failed to claim pending tasks: {e}")
        yield SkipReason(f"Error claiming tasks: {e}")
        return

    if not tasks:
        yield SkipReason("No pending tasks")
        return

    for task in tasks:
        try:
            run_request = build_task_run_request(task)
        except (KeyError, ValueError) as e:
            context.log.error(f"Skipping invalid task {task.get('task_id')}: {e}")
            continue
        context.log.info(f"Dispatching task {task['task_id']} ({task['task']})")
        yield run_request
