"""Unit tests for error classification and retry backoff."""

from datetime import datetime, timedelta, timezone

import pytest

from geoimport.models import ImportJob, JobError, ProcessingStage, Progress
from geoimport.recovery import (
    ErrorClassification,
    RetryPolicy,
    classify_error,
    determine_recovery_stage,
    next_retry_at,
    resume_batch_number,
    retry_delay_seconds,
)

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def _failed_job(error: str, attempts: int = 0, last_successful=None) -> ImportJob:
    return ImportJob(
        import_job_id="job-1",
        import_file_id="file-1",
        dataset_id="ds-1",
        stage=ProcessingStage.FAILED,
        errors=[JobError(row=None, error=error)],
        retry_attempts=attempts,
        last_successful_stage=last_successful,
    )


@pytest.mark.parametrize(
    "message,expected,retryable",
    [
        ("ENOENT: no such file", ErrorClassification.PERMANENT, False),
        ("Daily URL fetch limit reached; quota exceeded", ErrorClassification.USER_ACTION, False),
        ("403 Forbidden", ErrorClassification.PERMANENT, False),
        ("429 Too Many Requests", ErrorClassification.RECOVERABLE, True),
        ("Connection reset by peer", ErrorClassification.RECOVERABLE, True),
        ("Out of memory", ErrorClassification.RECOVERABLE, True),
        ("Schema validation failed", ErrorClassification.USER_ACTION, True),
        ("Something odd happened", ErrorClassification.RECOVERABLE, True),
        (None, ErrorClassification.RECOVERABLE, True),
    ],
)
def test_classify_error(message, expected, retryable):
    classified = classify_error(message)
    assert classified.classification == expected
    assert classified.retryable is retryable


def test_retry_delay_is_capped():
    policy = RetryPolicy(base_delay_seconds=30, max_delay_seconds=300, backoff_multiplier=2)
    assert [retry_delay_seconds(a, policy) for a in range(6)] == [30, 60, 120, 240, 300, 300]


class TestNextRetryAt:
    def test_recoverable_error_backs_off(self):
        job = _failed_job("connection timed out", attempts=1)
        assert next_retry_at(job, RetryPolicy(), NOW) == NOW + timedelta(seconds=60)

    def test_exhausted_retries(self):
        job = _failed_job("connection timed out", attempts=3)
        assert next_retry_at(job, RetryPolicy(max_retries=3), NOW) is None

    def test_permanent_error_is_not_retried(self):
        assert next_retry_at(_failed_job("file not found"), RetryPolicy(), NOW) is None

    def test_user_action_error_is_not_retried(self):
        assert next_retry_at(_failed_job("Schema rejected: wrong columns"), RetryPolicy(), NOW) is None


class TestDetermineRecoveryStage:
    def test_schema_errors_restart_validation(self):
        job = _failed_job("schema mismatch", last_successful=ProcessingStage.GEOCODE_BATCH)
        assert determine_recovery_stage(job) == ProcessingStage.VALIDATE_SCHEMA

    def test_resumes_after_last_successful_stage(self):
        job = _failed_job("timeout", last_successful=ProcessingStage.GEOCODE_BATCH)
        assert determine_recovery_stage(job) == ProcessingStage.CREATE_EVENTS

    def test_without_success_restarts_from_duplicates(self):
        assert determine_recovery_stage(_failed_job("timeout")) == ProcessingStage.ANALYZE_DUPLICATES


class TestResumeBatchNumber:
    def test_batch_stages_resume_at_their_counters(self):
        job = _failed_job("timeout").model_copy(update={"progress": Progress(schema_batches=4, event_batches=2)})

        assert resume_batch_number(job, ProcessingStage.DETECT_SCHEMA) == 4
        assert resume_batch_number(job, ProcessingStage.CREATE_EVENTS) == 2

    def test_other_stages_start_at_zero(self):
        job = _failed_job("timeout").model_copy(update={"progress": Progress(schema_batches=4, event_batches=2)})

        assert resume_batch_number(job, ProcessingStage.GEOCODE_BATCH) == 0
        assert resume_batch_number(job, ProcessingStage.VALIDATE_SCHEMA) == 0
