# =============================================================================
# Scheduled Import Model
# =============================================================================
# Recurring URL fetch configuration plus its run statistics and bounded
# execution history.
# =============================================================================

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

__all__ = [
    "MAX_EXECUTION_HISTORY",
    "NoAuth",
    "ApiKeyAuth",
    "BearerAuth",
    "BasicAuth",
    "AuthConfig",
    "ScheduleType",
    "Frequency",
    "ScheduleStatus",
    "RetryConfig",
    "AdvancedOptions",
    "ScheduleStatistics",
    "ExecutionRecord",
    "ScheduledImport",
]

MAX_EXECUTION_HISTORY = 10


class NoAuth(BaseModel):
    type: Literal["none"] = "none"
    custom_headers: dict[str, str] = Field(default_factory=dict)


class ApiKeyAuth(BaseModel):
    type: Literal["api-key"] = "api-key"
    api_key: str
    api_key_header: str = "X-API-Key"
    custom_headers: dict[str, str] = Field(default_factory=dict)


class BearerAuth(BaseModel):
    type: Literal["bearer"] = "bearer"
    bearer_token: str
    custom_headers: dict[str, str] = Field(default_factory=dict)


class BasicAuth(BaseModel):
    type: Literal["basic"] = "basic"
    username: str
    password: str
    custom_headers: dict[str, str] = Field(default_factory=dict)


AuthConfig = Annotated[
    Union[NoAuth, ApiKeyAuth, BearerAuth, BasicAuth],
    Field(discriminator="type"),
]


class ScheduleType(str, Enum):
    FREQUENCY = "frequency"
    CRON = "cron"


class Frequency(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ScheduleStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class RetryConfig(BaseModel):
    max_retries: int = Field(3, ge=0, description="Retries after the first attempt")
    retry_delay_minutes: float = Field(5, ge=0, description="Base delay between attempts")
    exponential_backoff: bool = Field(True, description="Double the delay after each attempt")


class AdvancedOptions(BaseModel):
    timeout_minutes: float = Field(30, gt=0)
    max_file_size_mb: float = Field(100, gt=0)
    skip_duplicate_checking: bool = False
    expected_content_type: Optional[str] = None
    use_http_cache: bool = Field(True, description="Send conditional request headers")


class ScheduleStatistics(BaseModel):
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    average_duration: float = Field(0.0, description="Running average in seconds")


class ExecutionRecord(BaseModel):
    executed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: ScheduleStatus
    duration: Optional[float] = Field(None, description="Seconds")
    job_id: Optional[str] = None
    error: Optional[str] = None
    triggered_by: str = "schedule"


class ScheduledImport(BaseModel):
    """
    Scheduled import document.

    Invariants: ``next_run >= last_run``; ``execution_history`` is
    most-recent-first and never longer than MAX_EXECUTION_HISTORY.
    """

    scheduled_import_id: str
    name: str
    source_url: str
    enabled: bool = True
    catalog_id: Optional[str] = None
    dataset_id: Optional[str] = None
    user_id: Optional[str] = None
    auth_config: AuthConfig = Field(default_factory=NoAuth)
    schedule_type: ScheduleType = ScheduleType.FREQUENCY
    frequency: Optional[Frequency] = None
    cron_expression: Optional[str] = None
    import_name_template: str = "{{name}} - {{date}}"
    retry_config: RetryConfig = Field(default_factory=RetryConfig)
    advanced_options: AdvancedOptions = Field(default_factory=AdvancedOptions)
    statistics: ScheduleStatistics = Field(default_factory=ScheduleStatistics)
    execution_history: list[ExecutionRecord] = Field(default_factory=list)
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    last_status: Optional[ScheduleStatus] = None
    last_error: Optional[str] = None
    current_retries: int = 0
    last_etag: Optional[str] = None
    last_modified: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
