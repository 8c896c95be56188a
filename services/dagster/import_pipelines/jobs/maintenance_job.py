"""Periodic housekeeping for the import pipeline."""

from dagster import ScheduleDefinition, job

from ..ops import maintenance_op


@job(
    name="maintenance_job",
    description="Clear expired leases, reset stuck schedules and retry recoverable import failures",
)
def maintenance_job():
    maintenance_op()


maintenance_schedule = ScheduleDefinition(
    name="maintenance_schedule",
    job=maintenance_job,
    cron_schedule="*/5 * * * *",
    execution_timezone="UTC",
)
