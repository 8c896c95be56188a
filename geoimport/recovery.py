# =============================================================================
# Error Recovery
# =============================================================================
# Classifies stage failures and computes the exponential backoff used by the
# maintenance task to re-drive recoverable imports. Independent of the
# immediate in-request retries done by the URL fetcher.
# =============================================================================

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from geoimport.models import ImportJob, ProcessingStage
from geoimport.stages import BATCH_STAGES, next_stage_after

__all__ = [
    "ErrorClassification",
    "ClassifiedError",
    "RetryPolicy",
    "classify_error",
    "retry_delay_seconds",
    "next_retry_at",
    "determine_recovery_stage",
    "resume_batch_number",
]


class ErrorClassification(str, Enum):
    RECOVERABLE = "recoverable"
    PERMANENT = "permanent"
    USER_ACTION = "user-action"


class ClassifiedError(BaseModel):
    classification: ErrorClassification
    retryable: bool
    reason: str


class RetryPolicy(BaseModel):
    max_retries: int = 3
    base_delay_seconds: float = 30
    max_delay_seconds: float = 300
    backoff_multiplier: float = 2


# (keywords, classification, retryable, reason); first match wins.
_RULES: list[tuple[tuple[str, ...], ErrorClassification, bool, str]] = [
    (("enoent", "file not found", "no such file", "nosuchkey"), ErrorClassification.PERMANENT, False, "Source file is missing"),
    (("quota", "limit exceeded", "limit reached"), ErrorClassification.USER_ACTION, False, "Quota exceeded"),
    (("permission", "unauthorized", "forbidden"), ErrorClassification.PERMANENT, False, "Permission denied"),
    (("rate limit", "429", "too many requests"), ErrorClassification.RECOVERABLE, True, "Rate limited"),
    (("connection", "timeout", "timed out", "econnrefused", "network"), ErrorClassification.RECOVERABLE, True, "Transient network error"),
    (("memory", "resource"), ErrorClassification.RECOVERABLE, True, "Resource exhaustion"),
    (("schema", "validation"), ErrorClassification.USER_ACTION, True, "Schema or validation problem"),
]


def classify_error(message: Optional[str]) -> ClassifiedError:
    """Classify an error message; unknown errors are treated as recoverable."""
    text = (message or "").lower()
    for keywords, classification, retryable, reason in _RULES:
        if any(k in text for k in keywords):
            return ClassifiedError(classification=classification, retryable=retryable, reason=reason)
    return ClassifiedError(classification=ErrorClassification.RECOVERABLE, retryable=True, reason="Unknown error")


def retry_delay_seconds(attempt: int, policy: RetryPolicy) -> float:
    """min(base * multiplier^attempt, max); attempt is 0-based."""
    return min(policy.base_delay_seconds * (policy.backoff_multiplier ** attempt), policy.max_delay_seconds)


def next_retry_at(job: ImportJob, policy: RetryPolicy, now: datetime) -> Optional[datetime]:
    """When the job should next be retried, or None when it should stay failed."""
    if job.retry_attempts >= policy.max_retries:
        return None
    classified = classify_error(job.last_error)
    if classified.classification != ErrorClassification.RECOVERABLE or not classified.retryable:
        return None
    return now + timedelta(seconds=retry_delay_seconds(job.retry_attempts, policy))


def determine_recovery_stage(job: ImportJob) -> ProcessingStage:
    """Schema problems restart at validation; otherwise resume after the last good stage."""
    last_error = (job.last_error or "").lower()
    if "schema" in last_error:
        return ProcessingStage.VALIDATE_SCHEMA
    return next_stage_after(job.last_successful_stage)


def resume_batch_number(job: ImportJob, stage: ProcessingStage) -> int:
    """First batch a recovered stage still has to run; batches already persisted are skipped."""
    if stage not in BATCH_STAGES:
        return 0
    if stage == ProcessingStage.DETECT_SCHEMA:
        return job.progress.schema_batches
    return job.progress.event_batches
