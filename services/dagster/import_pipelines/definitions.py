"""Dagster Definitions - Repository Configuration.

Defines jobs, resources, schedules and sensors for the geo event import
pipeline.
"""

from dagster import Definitions, EnvVar

from .jobs import (
    analyze_duplicates_job,
    approve_schema_job,
    create_events_job,
    create_schema_version_job,
    dataset_detection_job,
    detect_schema_job,
    geocode_batch_job,
    geocode_events_job,
    maintenance_job,
    maintenance_schedule,
    reject_schema_job,
    url_fetch_job,
    validate_schema_job,
)
from .resources import GeocodingResource, MinIOResource, MongoDBResource
from .sensors import import_run_failure_sensor, schedule_manager_sensor, task_queue_sensor


# =============================================================================
# Definitions
# =============================================================================

defs = Definitions(
    jobs=[
        dataset_detection_job,
        analyze_duplicates_job,
        detect_schema_job,
        validate_schema_job,
        approve_schema_job,  # Manual: launched for jobs at await-approval
        reject_schema_job,  # Manual: launched for jobs at await-approval
        create_schema_version_job,
        geocode_batch_job,
        create_events_job,
        geocode_events_job,
        url_fetch_job,
        maintenance_job,
    ],
    resources={
        "minio": MinIOResource(
            endpoint=EnvVar("MINIO_ENDPOINT"),
            access_key=EnvVar("MINIO_ROOT_USER"),
            secret_key=EnvVar("MINIO_ROOT_PASSWORD"),
            use_ssl=False,
            import_bucket="import-files",
        ),
        "mongodb": MongoDBResource(
            connection_string=EnvVar("MONGO_CONNECTION_STRING"),
            database="geo_events",
        ),
        "geocoder": GeocodingResource(
            user_agent=EnvVar("GEOCODER_USER_AGENT"),
            min_delay_seconds=1.0,
        ),
    },
    schedules=[maintenance_schedule],
    sensors=[
        task_queue_sensor,  # Dispatch: pipeline-tasks -> runs
        schedule_manager_sensor,  # Scheduling: queues due url-fetch tasks
        import_run_failure_sensor,  # Lifecycle: fails import jobs whose runs die
    ],
)
