"""Dagster Sensors - Task dispatch, scheduling and run lifecycle."""

from .task_queue_sensor import task_queue_sensor
from .schedule_manager_sensor import schedule_manager_sensor
from .run_status_sensor import import_run_failure_sensor

__all__ = [
    "task_queue_sensor",
    "schedule_manager_sensor",
    "import_run_failure_sensor",
]
