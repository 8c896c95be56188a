"""Import pipeline stage jobs.

Each job runs a single op: one execution performs one unit of work for one
import job (or, for dataset detection, one import file) and queues the next
unit in the ``pipeline-tasks`` collection. Chaining happens through the task
queue sensor, not through op dependencies.
"""

from dagster import job

from ..ops import (
    analyze_duplicates_op,
    approve_schema_op,
    create_events_op,
    create_schema_version_op,
    detect_datasets_op,
    detect_schema_op,
    geocode_batch_op,
    geocode_events_op,
    reject_schema_op,
    validate_schema_op,
)


@job(
    name="dataset_detection_job",
    description="List the sheets of an import file and create one import job per sheet",
)
def dataset_detection_job():
    detect_datasets_op()


@job(
    name="analyze_duplicates_job",
    description="Find internal and external duplicate rows of an import job",
)
def analyze_duplicates_job():
    analyze_duplicates_op()


@job(
    name="detect_schema_job",
    description="Fold one batch of rows into the progressive schema builder",
)
def detect_schema_job():
    detect_schema_op()


@job(
    name="validate_schema_job",
    description="Compare the detected schema with the current version and apply the approval policy",
)
def validate_schema_job():
    validate_schema_op()


@job(
    name="approve_schema_job",
    description="Approve the schema of an import job awaiting approval",
)
def approve_schema_job():
    approve_schema_op()


@job(
    name="reject_schema_job",
    description="Reject the schema of an import job awaiting approval",
)
def reject_schema_job():
    reject_schema_op()


@job(
    name="create_schema_version_job",
    description="Persist an approved schema as a new dataset schema version",
)
def create_schema_version_job():
    create_schema_version_op()


@job(
    name="geocode_batch_job",
    description="Geocode the unique addresses of an import job before event creation",
)
def geocode_batch_job():
    geocode_batch_op()


@job(
    name="create_events_job",
    description="Create events for one batch of rows",
)
def create_events_job():
    create_events_op()


@job(
    name="geocode_events_job",
    description="Geocode events created without a location and complete the import job",
)
def geocode_events_job():
    geocode_events_op()
