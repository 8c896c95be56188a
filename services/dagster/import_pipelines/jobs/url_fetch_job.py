"""URL import job, run for manual URL imports and by the schedule manager."""

from dagster import job

from ..ops import url_fetch_op


@job(
    name="url_fetch_job",
    description="Download a remote CSV/XLSX file, store it and queue dataset detection",
)
def url_fetch_job():
    url_fetch_op()
