# =============================================================================
# Import Job Model
# =============================================================================
# One file (sheet) travelling through the import pipeline. All cross-batch
# state lives on this document so every stage execution can resume from it.
# =============================================================================

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .schema import SchemaChange
from .statistics import SchemaBuilderState

__all__ = [
    "ProcessingStage",
    "JobError",
    "Progress",
    "DuplicateEntry",
    "DuplicateSummary",
    "Duplicates",
    "SchemaValidation",
    "FieldMappings",
    "GeocodingResult",
    "Lease",
    "ImportJob",
]


class ProcessingStage(str, Enum):
    """Stages of the import state machine."""

    DETECT_DATASET = "detect-dataset"
    ANALYZE_DUPLICATES = "analyze-duplicates"
    DETECT_SCHEMA = "detect-schema"
    VALIDATE_SCHEMA = "validate-schema"
    AWAIT_APPROVAL = "await-approval"
    CREATE_SCHEMA_VERSION = "create-schema-version"
    GEOCODE_BATCH = "geocode-batch"
    CREATE_EVENTS = "create-events"
    GEOCODE_EVENTS = "geocode-events"
    COMPLETED = "completed"
    FAILED = "failed"


class JobError(BaseModel):
    row: Optional[int] = Field(None, description="Row number, or None for stage-level errors")
    error: str = Field(..., description="Error message")
    stage: Optional[str] = Field(None, description="Stage in which the error occurred")
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Progress(BaseModel):
    total: int = Field(0, description="Rows in the sheet")
    processed_rows: int = Field(0, description="Rows handled by event creation")
    created_events: int = Field(0, description="Events persisted")
    geocoded_rows: int = Field(0, description="Rows that received geocoded coordinates")
    duplicates_skipped: int = Field(0, description="Duplicate rows skipped")
    failed_rows: int = Field(0, description="Rows that failed event creation")
    schema_batches: int = Field(0, description="Schema detection batches folded into the builder state")
    event_batches: int = Field(0, description="Event creation batches persisted")


class DuplicateEntry(BaseModel):
    row_number: int = Field(..., description="Absolute 0-based row number")
    unique_id: str = Field(..., description="Unique id that collided")
    first_occurrence: Optional[int] = Field(None, description="Row of the first occurrence (internal)")
    existing_event_id: Optional[str] = Field(None, description="Existing event (external)")


class DuplicateSummary(BaseModel):
    total_rows: int = 0
    unique_rows: int = 0
    internal_duplicates: int = 0
    external_duplicates: int = 0


class Duplicates(BaseModel):
    strategy: str = Field("enabled", description="'enabled' or 'disabled'")
    internal: list[DuplicateEntry] = Field(default_factory=list)
    external: list[DuplicateEntry] = Field(default_factory=list)
    summary: DuplicateSummary = Field(default_factory=DuplicateSummary)

    def row_numbers(self) -> set[int]:
        """Absolute row numbers every downstream stage must skip."""
        return {d.row_number for d in self.internal} | {d.row_number for d in self.external}


class SchemaValidation(BaseModel):
    is_compatible: bool = True
    breaking_changes: list[SchemaChange] = Field(default_factory=list)
    new_fields: list[SchemaChange] = Field(default_factory=list)
    requires_approval: bool = False
    approval_reason: Optional[str] = None
    change_summary: Optional[str] = None
    approved: Optional[bool] = Field(None, description="Human decision, once made")
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None


class FieldMappings(BaseModel):
    title_path: Optional[str] = None
    description_path: Optional[str] = None
    timestamp_path: Optional[str] = None
    latitude_path: Optional[str] = None
    longitude_path: Optional[str] = None
    location_path: Optional[str] = Field(None, description="Free-text address column")
    location_name_path: Optional[str] = Field(None, description="Venue / place name column")


class GeocodingResult(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    confidence: Optional[float] = None
    normalized_address: Optional[str] = None
    provider: Optional[str] = None


class Lease(BaseModel):
    token: str = Field(..., description="Random token proving ownership")
    owner: Optional[str] = Field(None, description="Task that holds the lease")
    expires_at: datetime = Field(..., description="Lease expiry")


class ImportJob(BaseModel):
    """
    Import job document.

    Attributes:
        import_job_id: Stable identifier (document key)
        import_file_id: Source import file
        dataset_id: Target dataset
        sheet_index: Sheet within the source file (0 for CSV)
        user_id: Owner, used for quota checks
        stage: Current processing stage
        progress: Row counters
        duplicates: Duplicate analysis result
        schema_builder_state: Serialized progressive schema builder
        detected_schema: JSON-Schema shaped document from inference
        schema_validation: Outcome of the schema gate
        detected_field_mappings: Column roles (title, timestamp, address, ...)
        geocoding_results: Trimmed address -> result
        errors: Row and stage level errors
    """

    import_job_id: str = Field(..., description="Import job identifier")
    import_file_id: str = Field(..., description="Source import file")
    dataset_id: str = Field(..., description="Target dataset")
    sheet_index: int = Field(0, description="Sheet index within the source file")
    user_id: Optional[str] = Field(None, description="Owning user")
    stage: ProcessingStage = Field(ProcessingStage.ANALYZE_DUPLICATES)
    progress: Progress = Field(default_factory=Progress)
    duplicates: Duplicates = Field(default_factory=Duplicates)
    schema_builder_state: Optional[SchemaBuilderState] = None
    detected_schema: Optional[dict[str, Any]] = None
    schema_validation: Optional[SchemaValidation] = None
    detected_field_mappings: FieldMappings = Field(default_factory=FieldMappings)
    geocoding_results: dict[str, GeocodingResult] = Field(default_factory=dict)
    geocoding_summary: dict[str, Any] = Field(default_factory=dict)
    dataset_schema_version: Optional[int] = Field(None, description="Linked schema version number")
    errors: list[JobError] = Field(default_factory=list)
    results: dict[str, Any] = Field(default_factory=dict, description="Completion summary")
    last_successful_stage: Optional[ProcessingStage] = None
    error_classification: Optional[str] = None
    retry_attempts: int = 0
    next_retry_at: Optional[datetime] = None
    lease: Optional[Lease] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def last_error(self) -> Optional[str]:
        stage_errors = [e for e in self.errors if e.row is None]
        return stage_errors[-1].error if stage_errors else None
