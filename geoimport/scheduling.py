# =============================================================================
# Schedule Evaluator
# =============================================================================
# Next-run arithmetic for scheduled imports (fixed frequencies and 5-field
# cron expressions, always in UTC), due checks, import name templating and
# run statistics bookkeeping.
# =============================================================================

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlparse

from croniter import croniter

from geoimport.exceptions import ScheduleConfigError
from geoimport.models import (
    MAX_EXECUTION_HISTORY,
    ExecutionRecord,
    Frequency,
    ScheduledImport,
    ScheduleStatus,
    ScheduleType,
)

__all__ = [
    "FALLBACK_INTERVAL",
    "ensure_utc",
    "next_frequency_run",
    "next_cron_run",
    "next_execution_time",
    "calculate_next_run",
    "has_valid_schedule",
    "should_run_now",
    "render_import_name",
    "record_success",
    "record_failure",
]

logger = logging.getLogger(__name__)

FALLBACK_INTERVAL = timedelta(hours=24)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by MongoDB) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def next_frequency_run(frequency: Frequency, base: datetime) -> datetime:
    """
    Next anchor time strictly after ``base``.

    hourly: next full hour; daily: next midnight; weekly: next Sunday
    midnight; monthly: midnight on the 1st of the next month.
    """
    base = ensure_utc(base).replace(second=0, microsecond=0)
    frequency = Frequency(frequency)

    if frequency == Frequency.HOURLY:
        return base.replace(minute=0) + timedelta(hours=1)

    midnight = base.replace(hour=0, minute=0)
    if frequency == Frequency.DAILY:
        return midnight + timedelta(days=1)
    if frequency == Frequency.WEEKLY:
        # Monday=0 .. Sunday=6; from a Sunday go a full week ahead
        days_until_sunday = (6 - midnight.weekday()) or 7
        return midnight + timedelta(days=days_until_sunday)

    # monthly
    if midnight.month == 12:
        return midnight.replace(year=midnight.year + 1, month=1, day=1)
    return midnight.replace(month=midnight.month + 1, day=1)


def next_cron_run(expression: str, base: datetime) -> datetime:
    """
    Next occurrence of a 5-field cron expression strictly after ``base``.

    Raises:
        ScheduleConfigError: If the expression is not a valid 5-field cron
    """
    if not expression or len(expression.split()) != 5:
        raise ScheduleConfigError(f"Invalid cron expression: {expression}")
    try:
        iterator = croniter(expression, ensure_utc(base))
    except (ValueError, KeyError) as e:
        raise ScheduleConfigError(f"Invalid cron expression: {expression} ({e})") from e
    return ensure_utc(iterator.get_next(datetime))


def has_valid_schedule(schedule: ScheduledImport) -> bool:
    if schedule.schedule_type == ScheduleType.FREQUENCY:
        return schedule.frequency is not None
    if schedule.schedule_type == ScheduleType.CRON:
        return bool(schedule.cron_expression)
    return False


def next_execution_time(schedule: ScheduledImport, base: datetime) -> datetime:
    """
    First run time after ``base`` for the schedule's type.

    Raises:
        ScheduleConfigError: If the schedule is not configured
    """
    if schedule.schedule_type == ScheduleType.FREQUENCY and schedule.frequency:
        return next_frequency_run(schedule.frequency, base)
    if schedule.schedule_type == ScheduleType.CRON and schedule.cron_expression:
        return next_cron_run(schedule.cron_expression, base)
    raise ScheduleConfigError("Invalid schedule configuration")


def calculate_next_run(schedule: ScheduledImport, now: datetime) -> datetime:
    """
    Next run strictly after ``now``, stepping forward from ``last_run``.

    A schedule that cannot be evaluated retries in 24 hours instead of
    getting stuck.
    """
    now = ensure_utc(now)
    base = ensure_utc(schedule.last_run) if schedule.last_run else now
    try:
        candidate = next_execution_time(schedule, base)
        while candidate <= now:
            candidate = next_execution_time(schedule, candidate)
        return candidate
    except ScheduleConfigError as e:
        logger.error(
            f"Failed to calculate next run for scheduled import {schedule.scheduled_import_id}: {e}; "
            f"retrying in {FALLBACK_INTERVAL}"
        )
        return now + FALLBACK_INTERVAL


def should_run_now(schedule: ScheduledImport, now: datetime) -> bool:
    if not schedule.enabled or not has_valid_schedule(schedule):
        return False
    now = ensure_utc(now)

    if schedule.next_run is not None:
        return now >= ensure_utc(schedule.next_run)

    base = ensure_utc(schedule.last_run) if schedule.last_run else now
    try:
        return now >= next_execution_time(schedule, base)
    except ScheduleConfigError as e:
        logger.warning(f"Invalid schedule configuration for {schedule.scheduled_import_id}: {e}")
        return False


def render_import_name(schedule: ScheduledImport, now: datetime) -> str:
    """Fill {{name}}, {{date}}, {{time}} and {{url}} in the name template."""
    now = ensure_utc(now)
    template = schedule.import_name_template or "{{name}} - {{date}}"
    return (
        template.replace("{{name}}", schedule.name)
        .replace("{{date}}", now.date().isoformat())
        .replace("{{time}}", now.strftime("%H:%M:%S"))
        .replace("{{url}}", urlparse(schedule.source_url).hostname or "")
    )


def _push_history(schedule: ScheduledImport, record: ExecutionRecord) -> list[ExecutionRecord]:
    return ([record] + list(schedule.execution_history))[:MAX_EXECUTION_HISTORY]


def record_success(
    schedule: ScheduledImport,
    now: datetime,
    duration: float,
    job_id: Optional[str] = None,
    triggered_by: str = "schedule",
) -> dict:
    """
    Fields to $set on a scheduled import after a successful run.

    ``average_duration`` is a running average in seconds over successful runs.
    """
    stats = schedule.statistics.model_copy()
    stats.total_runs += 1
    stats.successful_runs += 1
    stats.average_duration = (
        stats.average_duration * (stats.successful_runs - 1) + duration
    ) / stats.successful_runs

    record = ExecutionRecord(
        executed_at=now, status=ScheduleStatus.SUCCESS, duration=duration,
        job_id=job_id, triggered_by=triggered_by,
    )
    return {
        "last_status": ScheduleStatus.SUCCESS.value,
        "last_error": None,
        "current_retries": 0,
        "statistics": stats.model_dump(),
        "execution_history": [r.model_dump() for r in _push_history(schedule, record)],
    }


def record_failure(
    schedule: ScheduledImport,
    now: datetime,
    error: str,
    duration: Optional[float] = None,
    triggered_by: str = "schedule",
) -> dict:
    """Fields to $set on a scheduled import after a failed run."""
    stats = schedule.statistics.model_copy()
    stats.total_runs += 1
    stats.failed_runs += 1

    record = ExecutionRecord(
        executed_at=now, status=ScheduleStatus.FAILED, duration=duration,
        error=error, triggered_by=triggered_by,
    )
    return {
        "last_status": ScheduleStatus.FAILED.value,
        "last_error": error,
        "current_retries": schedule.current_retries + 1,
        "statistics": stats.model_dump(),
        "execution_history": [r.model_dump() for r in _push_history(schedule, record)],
    }
