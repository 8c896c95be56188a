"""
Unit tests for schedule_manager_sensor.

Schedules live in the mongomock-backed resource; time is fixed so due
checks are deterministic.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from dagster import SkipReason

from geoimport.models import ScheduleStatus
from services.dagster.import_pipelines.sensors.schedule_manager_sensor import (
    URL_FETCH_TASK,
    schedule_manager_sensor,
    trigger_due_schedules,
)


_schedule_manager_sensor_fn = schedule_manager_sensor._raw_fn


@pytest.fixture
def due_schedule(mongo_resource, sample_schedule, fixed_now):
    sample_schedule.next_run = fixed_now - timedelta(minutes=1)
    mongo_resource.insert_scheduled_import(sample_schedule)
    return sample_schedule


# =============================================================================
# Test: trigger_due_schedules
# =============================================================================

def test_due_schedule_queues_url_fetch(due_schedule, mongo_resource, mock_log, fixed_now, queued_tasks):
    summary = trigger_due_schedules(mongo_resource, fixed_now, mock_log)

    assert summary == {"checked": 1, "triggered": 1, "errors": 0}
    assert queued_tasks() == [
        (
            URL_FETCH_TASK,
            {
                "source_url": "https://data.example.org/events.csv",
                "catalog_id": "cat-1",
                "dataset_id": "ds-1",
                "user_id": "user-1",
                "scheduled_import_id": "sched-1",
                "import_name": "Council feed - 2024-03-15",
                "triggered_by": "schedule",
            },
        )
    ]

    stored = mongo_resource.get_scheduled_import("sched-1")
    assert stored.last_status == ScheduleStatus.RUNNING
    assert stored.last_run.replace(tzinfo=timezone.utc) == fixed_now
    assert stored.next_run.replace(tzinfo=timezone.utc) == datetime(2024, 3, 15, 11, 0, tzinfo=timezone.utc)


def test_schedule_not_yet_due(mongo_resource, sample_schedule, mock_log, fixed_now, queued_tasks):
    sample_schedule.next_run = fixed_now + timedelta(minutes=5)
    mongo_resource.insert_scheduled_import(sample_schedule)

    summary = trigger_due_schedules(mongo_resource, fixed_now, mock_log)

    assert summary == {"checked": 1, "triggered": 0, "errors": 0}
    assert queued_tasks() == []


def test_disabled_schedules_are_not_checked(mongo_resource, sample_schedule, mock_log, fixed_now):
    sample_schedule.enabled = False
    sample_schedule.next_run = fixed_now - timedelta(minutes=1)
    mongo_resource.insert_scheduled_import(sample_schedule)

    assert trigger_due_schedules(mongo_resource, fixed_now, mock_log)["checked"] == 0


def test_trigger_failure_is_recorded(sample_schedule, mock_log, fixed_now):
    sample_schedule.next_run = fixed_now - timedelta(minutes=1)
    mongodb = Mock()
    mongodb.find_enabled_scheduled_imports.return_value = [sample_schedule]
    mongodb.enqueue_task.side_effect = RuntimeError("queue unavailable")

    summary = trigger_due_schedules(mongodb, fixed_now, mock_log)

    assert summary == {"checked": 1, "triggered": 0, "errors": 1}
    schedule_id, fields = mongodb.update_scheduled_import.call_args.args
    assert schedule_id == "sched-1"
    assert fields["last_status"] == ScheduleStatus.FAILED.value
    assert fields["last_error"] == "queue unavailable"
    assert fields["statistics"]["failed_runs"] == 1


# =============================================================================
# Test: sensor evaluation
# =============================================================================

def test_sensor_reports_summary(due_schedule, mongo_resource):
    context = Mock()

    results = list(_schedule_manager_sensor_fn(context, mongo_resource))

    assert len(results) == 1
    assert isinstance(results[0], SkipReason)
    assert "Checked 1 schedule(s)" in results[0].skip_message


def test_sensor_skips_when_schedules_cannot_load():
    context = Mock()
    mongodb = Mock()
    mongodb.find_enabled_scheduled_imports.side_effect = RuntimeError("connection refused")

    results = list(_schedule_manager_sensor_fn(context, mongodb))

    assert isinstance(results[0], SkipReason)
    assert "Error loading scheduled imports" in results[0].skip_message
