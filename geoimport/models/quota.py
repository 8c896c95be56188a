# =============================================================================
# Quota Models
# =============================================================================
# Trust levels, default limits per level, and per-user usage counters.
# =============================================================================

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel, Field

__all__ = [
    "TrustLevel",
    "QuotaType",
    "UsageType",
    "UserQuotas",
    "DEFAULT_QUOTAS",
    "DAILY_QUOTAS",
    "UNLIMITED",
    "User",
    "UserUsage",
]

UNLIMITED = -1


class TrustLevel(IntEnum):
    UNTRUSTED = 0
    BASIC = 1
    REGULAR = 2
    TRUSTED = 3
    POWER_USER = 4
    UNLIMITED = 5


class QuotaType(str, Enum):
    ACTIVE_SCHEDULES = "max_active_schedules"
    URL_FETCHES_PER_DAY = "max_url_fetches_per_day"
    FILE_UPLOADS_PER_DAY = "max_file_uploads_per_day"
    EVENTS_PER_IMPORT = "max_events_per_import"
    TOTAL_EVENTS = "max_total_events"
    IMPORT_JOBS_PER_DAY = "max_import_jobs_per_day"
    FILE_SIZE_MB = "max_file_size_mb"


class UsageType(str, Enum):
    URL_FETCHES_TODAY = "url_fetches_today"
    FILE_UPLOADS_TODAY = "file_uploads_today"
    IMPORT_JOBS_TODAY = "import_jobs_today"
    TOTAL_EVENTS_CREATED = "total_events_created"
    CURRENT_ACTIVE_SCHEDULES = "current_active_schedules"


class UserQuotas(BaseModel):
    max_active_schedules: int = 5
    max_url_fetches_per_day: int = 20
    max_file_uploads_per_day: int = 10
    max_events_per_import: int = 10_000
    max_total_events: int = 50_000
    max_import_jobs_per_day: int = 20
    max_file_size_mb: int = 50


DEFAULT_QUOTAS: dict[TrustLevel, UserQuotas] = {
    TrustLevel.UNTRUSTED: UserQuotas(
        max_active_schedules=0,
        max_url_fetches_per_day=0,
        max_file_uploads_per_day=1,
        max_events_per_import=100,
        max_total_events=100,
        max_import_jobs_per_day=1,
        max_file_size_mb=1,
    ),
    TrustLevel.BASIC: UserQuotas(
        max_active_schedules=1,
        max_url_fetches_per_day=5,
        max_file_uploads_per_day=3,
        max_events_per_import=1_000,
        max_total_events=5_000,
        max_import_jobs_per_day=5,
        max_file_size_mb=10,
    ),
    TrustLevel.REGULAR: UserQuotas(),
    TrustLevel.TRUSTED: UserQuotas(
        max_active_schedules=20,
        max_url_fetches_per_day=100,
        max_file_uploads_per_day=50,
        max_events_per_import=50_000,
        max_total_events=500_000,
        max_import_jobs_per_day=100,
        max_file_size_mb=100,
    ),
    TrustLevel.POWER_USER: UserQuotas(
        max_active_schedules=100,
        max_url_fetches_per_day=500,
        max_file_uploads_per_day=200,
        max_events_per_import=200_000,
        max_total_events=2_000_000,
        max_import_jobs_per_day=500,
        max_file_size_mb=500,
    ),
    TrustLevel.UNLIMITED: UserQuotas(
        max_active_schedules=UNLIMITED,
        max_url_fetches_per_day=UNLIMITED,
        max_file_uploads_per_day=UNLIMITED,
        max_events_per_import=UNLIMITED,
        max_total_events=UNLIMITED,
        max_import_jobs_per_day=UNLIMITED,
        max_file_size_mb=1_000,
    ),
}

# Quota type -> usage counter. Daily counters reset at midnight UTC.
DAILY_QUOTAS: dict[QuotaType, UsageType] = {
    QuotaType.URL_FETCHES_PER_DAY: UsageType.URL_FETCHES_TODAY,
    QuotaType.FILE_UPLOADS_PER_DAY: UsageType.FILE_UPLOADS_TODAY,
    QuotaType.IMPORT_JOBS_PER_DAY: UsageType.IMPORT_JOBS_TODAY,
}


class User(BaseModel):
    user_id: str
    trust_level: TrustLevel = TrustLevel.REGULAR
    custom_quotas: dict[str, int] = Field(default_factory=dict, description="Overrides per quota type")

    def effective_quotas(self) -> UserQuotas:
        base = DEFAULT_QUOTAS[self.trust_level]
        return base.model_copy(update=self.custom_quotas)


class UserUsage(BaseModel):
    user_id: str
    url_fetches_today: int = 0
    file_uploads_today: int = 0
    import_jobs_today: int = 0
    total_events_created: int = 0
    current_active_schedules: int = 0
    last_reset_date: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
