# =============================================================================
# Data Models Library
# =============================================================================
# Pydantic models for the geo event import pipeline.
# =============================================================================

"""
Data models for the import pipeline.

This library provides:
- ImportJob: per-sheet pipeline state
- ImportFile: accepted source files
- Dataset / SchemaVersion: dataset configuration and approved schemas
- StructuralSchema: typed schema tree and change records
- FieldStatistics / SchemaBuilderState: resumable inference state
- Event: terminal geolocated records
- ScheduledImport: recurring URL fetch configuration
- Quota models and configuration settings
"""

from .schema import (
    ChangeType,
    FieldKind,
    SchemaChange,
    SchemaComparison,
    SchemaField,
    Severity,
    StructuralSchema,
    escape_field_name,
    is_top_level_path,
    split_field_path,
)
from .statistics import (
    EnumValue,
    FieldStatistics,
    NumericStats,
    SchemaBuilderState,
    TypeConflict,
)
from .dataset import (
    Dataset,
    DeduplicationConfig,
    FieldMappingOverrides,
    IdStrategy,
    IdStrategyType,
    ImportTransform,
    SchemaConfig,
    SchemaVersion,
)
from .import_job import (
    DuplicateEntry,
    Duplicates,
    DuplicateSummary,
    FieldMappings,
    GeocodingResult,
    ImportJob,
    JobError,
    Lease,
    ProcessingStage,
    Progress,
    SchemaValidation,
)
from .import_file import (
    DatasetMapping,
    ImportFile,
    ImportFileStatus,
    SheetMapping,
    UrlFetchMetadata,
)
from .event import (
    CoordinateSource,
    CoordinateSourceType,
    Event,
    GeocodingInfo,
    Location,
)
from .scheduled_import import (
    MAX_EXECUTION_HISTORY,
    AdvancedOptions,
    ApiKeyAuth,
    AuthConfig,
    BasicAuth,
    BearerAuth,
    ExecutionRecord,
    Frequency,
    NoAuth,
    RetryConfig,
    ScheduledImport,
    ScheduleStatistics,
    ScheduleStatus,
    ScheduleType,
)
from .quota import (
    DAILY_QUOTAS,
    DEFAULT_QUOTAS,
    UNLIMITED,
    QuotaType,
    TrustLevel,
    UsageType,
    User,
    UserQuotas,
    UserUsage,
)
from .config import (
    MinIOSettings,
    MongoSettings,
    PipelineSettings,
)

__all__ = [
    # Schema
    "ChangeType",
    "FieldKind",
    "SchemaChange",
    "SchemaComparison",
    "SchemaField",
    "Severity",
    "StructuralSchema",
    "escape_field_name",
    "is_top_level_path",
    "split_field_path",
    # Statistics
    "EnumValue",
    "FieldStatistics",
    "NumericStats",
    "SchemaBuilderState",
    "TypeConflict",
    # Dataset
    "Dataset",
    "DeduplicationConfig",
    "FieldMappingOverrides",
    "IdStrategy",
    "IdStrategyType",
    "ImportTransform",
    "SchemaConfig",
    "SchemaVersion",
    # Import job
    "DuplicateEntry",
    "Duplicates",
    "DuplicateSummary",
    "FieldMappings",
    "GeocodingResult",
    "ImportJob",
    "JobError",
    "Lease",
    "ProcessingStage",
    "Progress",
    "SchemaValidation",
    # Import file
    "DatasetMapping",
    "ImportFile",
    "ImportFileStatus",
    "SheetMapping",
    "UrlFetchMetadata",
    # Event
    "CoordinateSource",
    "CoordinateSourceType",
    "Event",
    "GeocodingInfo",
    "Location",
    # Scheduled import
    "MAX_EXECUTION_HISTORY",
    "AdvancedOptions",
    "ApiKeyAuth",
    "AuthConfig",
    "BasicAuth",
    "BearerAuth",
    "ExecutionRecord",
    "Frequency",
    "NoAuth",
    "RetryConfig",
    "ScheduledImport",
    "ScheduleStatistics",
    "ScheduleStatus",
    "ScheduleType",
    # Quota
    "DAILY_QUOTAS",
    "DEFAULT_QUOTAS",
    "UNLIMITED",
    "QuotaType",
    "TrustLevel",
    "UsageType",
    "User",
    "UserQuotas",
    "UserUsage",
    # Config
    "MinIOSettings",
    "MongoSettings",
    "PipelineSettings",
]
