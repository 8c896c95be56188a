"""Dagster Jobs - One job per pipeline task.

Jobs are launched by the task queue sensor from ``pipeline-tasks`` documents.
``TASK_ENTRY_OPS`` names the op whose config receives the task input.
"""

from .stage_jobs import (
    analyze_duplicates_job,
    approve_schema_job,
    create_events_job,
    create_schema_version_job,
    dataset_detection_job,
    detect_schema_job,
    geocode_batch_job,
    geocode_events_job,
    reject_schema_job,
    validate_schema_job,
)
from .url_fetch_job import url_fetch_job
from .maintenance_job import maintenance_job, maintenance_schedule

TASK_ENTRY_OPS: dict[str, str] = {
    "dataset_detection_job": "detect_datasets_op",
    "analyze_duplicates_job": "analyze_duplicates_op",
    "detect_schema_job": "detect_schema_op",
    "validate_schema_job": "validate_schema_op",
    "approve_schema_job": "approve_schema_op",
    "reject_schema_job": "reject_schema_op",
    "create_schema_version_job": "create_schema_version_op",
    "geocode_batch_job": "geocode_batch_op",
    "create_events_job": "create_events_op",
    "geocode_events_job": "geocode_events_op",
    "url_fetch_job": "url_fetch_op",
}

__all__ = [
    "TASK_ENTRY_OPS",
    "dataset_detection_job",
    "analyze_duplicates_job",
    "detect_schema_job",
    "validate_schema_job",
    "approve_schema_job",
    "reject_schema_job",
    "create_schema_version_job",
    "geocode_batch_job",
    "create_events_job",
    "geocode_events_job",
    "url_fetch_job",
    "maintenance_job",
    "maintenance_schedule",
]
