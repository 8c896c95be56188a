# =============================================================================
# Quota Gate
# =============================================================================
# Pure quota arithmetic. Loading users and usage counters is the document
# store's job; this module only decides whether an amount of work fits.
# =============================================================================

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel

from geoimport.exceptions import QuotaExceededError
from geoimport.models import DAILY_QUOTAS, UNLIMITED, QuotaType, UsageType, User, UserUsage

__all__ = [
    "QUOTA_USAGE",
    "QuotaCheckResult",
    "next_daily_reset",
    "is_stale_daily_usage",
    "current_usage",
    "check_quota",
    "quota_error_message",
    "enforce_quota",
]

# Quota type -> usage counter compared against it. Per-request quotas have none.
QUOTA_USAGE: dict[QuotaType, Optional[UsageType]] = {
    QuotaType.ACTIVE_SCHEDULES: UsageType.CURRENT_ACTIVE_SCHEDULES,
    QuotaType.URL_FETCHES_PER_DAY: UsageType.URL_FETCHES_TODAY,
    QuotaType.FILE_UPLOADS_PER_DAY: UsageType.FILE_UPLOADS_TODAY,
    QuotaType.IMPORT_JOBS_PER_DAY: UsageType.IMPORT_JOBS_TODAY,
    QuotaType.TOTAL_EVENTS: UsageType.TOTAL_EVENTS_CREATED,
    QuotaType.EVENTS_PER_IMPORT: None,
    QuotaType.FILE_SIZE_MB: None,
}


class QuotaCheckResult(BaseModel):
    allowed: bool
    current: int
    limit: int
    remaining: int
    reset_time: Optional[datetime] = None
    quota_type: QuotaType


def next_daily_reset(now: datetime) -> datetime:
    """Next midnight UTC."""
    midnight = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=1)


def is_stale_daily_usage(usage: Optional[UserUsage], now: datetime) -> bool:
    if usage is None or usage.last_reset_date is None:
        return True
    last = usage.last_reset_date
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    return last.astimezone(timezone.utc).date() < now.astimezone(timezone.utc).date()


def current_usage(usage: Optional[UserUsage], usage_type: UsageType, now: datetime) -> int:
    """Counter value, treating daily counters from a previous UTC day as zero."""
    if usage is None:
        return 0
    if usage_type in DAILY_QUOTAS.values() and is_stale_daily_usage(usage, now):
        return 0
    return int(getattr(usage, usage_type.value, 0))


def check_quota(
    user: Optional[User],
    usage: Optional[UserUsage],
    quota_type: QuotaType,
    amount: int = 1,
    now: Optional[datetime] = None,
) -> QuotaCheckResult:
    """
    Decide whether ``amount`` more units fit in the user's quota.

    For per-request quotas (events per import, file size) ``amount`` is the
    request size itself and there is no running counter. A missing user is
    unrestricted.
    """
    now = now or datetime.now(timezone.utc)
    if user is None:
        return QuotaCheckResult(allowed=True, current=0, limit=UNLIMITED, remaining=UNLIMITED, quota_type=quota_type)

    limit = int(getattr(user.effective_quotas(), quota_type.value))
    usage_type = QUOTA_USAGE[quota_type]
    current = current_usage(usage, usage_type, now) if usage_type else 0
    reset_time = next_daily_reset(now) if quota_type in DAILY_QUOTAS else None

    if limit == UNLIMITED:
        return QuotaCheckResult(
            allowed=True, current=current, limit=limit, remaining=UNLIMITED,
            reset_time=reset_time, quota_type=quota_type,
        )

    if usage_type is None:
        allowed = amount <= limit
        remaining = max(0, limit - amount)
        current = amount
    else:
        allowed = current + amount <= limit
        remaining = max(0, limit - current)

    return QuotaCheckResult(
        allowed=allowed, current=current, limit=limit, remaining=remaining,
        reset_time=reset_time, quota_type=quota_type,
    )


def quota_error_message(result: QuotaCheckResult) -> str:
    c, limit = result.current, result.limit
    messages = {
        QuotaType.ACTIVE_SCHEDULES: f"Maximum active schedules reached ({c}/{limit}). Disable an existing schedule first.",
        QuotaType.URL_FETCHES_PER_DAY: f"Daily URL fetch limit reached ({c}/{limit}). Resets at midnight UTC.",
        QuotaType.FILE_UPLOADS_PER_DAY: f"Daily file upload limit reached ({c}/{limit}). Resets at midnight UTC.",
        QuotaType.IMPORT_JOBS_PER_DAY: f"Daily import job limit reached ({c}/{limit}). Resets at midnight UTC.",
        QuotaType.TOTAL_EVENTS: f"Total events limit reached ({c}/{limit}). Contact an administrator to raise your quota.",
        QuotaType.EVENTS_PER_IMPORT: f"Import would create {c} events, exceeding the per-import limit of {limit}.",
        QuotaType.FILE_SIZE_MB: f"File size of {c}MB exceeds the limit of {limit}MB.",
    }
    return messages[result.quota_type]


def enforce_quota(
    user: Optional[User],
    usage: Optional[UserUsage],
    quota_type: QuotaType,
    amount: int = 1,
    now: Optional[datetime] = None,
) -> QuotaCheckResult:
    """check_quota that raises QuotaExceededError when not allowed."""
    result = check_quota(user, usage, quota_type, amount, now)
    if not result.allowed:
        raise QuotaExceededError(
            quota_type.value, result.current, result.limit, quota_error_message(result), result.reset_time
        )
    return result
