"""Dagster Ops - One op per import pipeline task."""

from .intake_ops import detect_datasets_op
from .duplicate_ops import analyze_duplicates_op
from .schema_ops import (
    approve_schema_op,
    create_schema_version_op,
    detect_schema_op,
    reject_schema_op,
    validate_schema_op,
)
from .geocoding_ops import geocode_batch_op, geocode_events_op
from .event_ops import create_events_op
from .url_fetch_ops import url_fetch_op
from .maintenance_ops import maintenance_op

__all__ = [
    "detect_datasets_op",
    "analyze_duplicates_op",
    "detect_schema_op",
    "validate_schema_op",
    "approve_schema_op",
    "reject_schema_op",
    "create_schema_version_op",
    "geocode_batch_op",
    "create_events_op",
    "geocode_events_op",
    "url_fetch_op",
    "maintenance_op",
]
