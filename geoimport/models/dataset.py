# =============================================================================
# Dataset & Schema Version Models
# =============================================================================
# Datasets own the configuration that drives deduplication, schema approval
# and field mapping. Schema versions are immutable approved snapshots.
# =============================================================================

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

__all__ = [
    "IdStrategyType",
    "IdStrategy",
    "DeduplicationConfig",
    "SchemaConfig",
    "FieldMappingOverrides",
    "ImportTransform",
    "Dataset",
    "SchemaVersion",
]


class IdStrategyType(str, Enum):
    EXTERNAL = "external"
    COMPUTED = "computed"
    AUTO = "auto"
    HYBRID = "hybrid"


class IdStrategy(BaseModel):
    type: IdStrategyType = Field(IdStrategyType.AUTO, description="How unique ids are derived")
    external_id_path: Optional[str] = Field(None, description="Row field holding an external id")
    computed_id_fields: list[str] = Field(
        default_factory=list, description="Row fields hashed into a computed id"
    )


class DeduplicationConfig(BaseModel):
    enabled: bool = Field(True, description="Whether duplicate analysis runs")


class SchemaConfig(BaseModel):
    auto_grow: bool = Field(True, description="Accept new fields as the schema grows")
    auto_approve_non_breaking: bool = Field(
        True, description="Approve non-breaking changes without a human"
    )
    locked: bool = Field(False, description="Every schema change needs approval")
    enum_threshold: int = Field(50, description="Enum detection threshold")
    enum_mode: str = Field("count", description="'count' or 'percentage'")


class FieldMappingOverrides(BaseModel):
    """Manual field paths that win over detected mappings."""

    title_path: Optional[str] = None
    description_path: Optional[str] = None
    timestamp_path: Optional[str] = None
    latitude_path: Optional[str] = None
    longitude_path: Optional[str] = None
    location_path: Optional[str] = None
    location_name_path: Optional[str] = None


class ImportTransform(BaseModel):
    type: str = Field("rename", description="Transform type (only 'rename' is supported)")
    from_path: str = Field(..., description="Source field")
    to_path: str = Field(..., description="Target field")
    active: bool = Field(True, description="Whether the transform is applied")


class Dataset(BaseModel):
    """
    Dataset document.

    Attributes:
        dataset_id: Stable identifier
        name: Human-readable name (unique within a catalog)
        catalog_id: Owning catalog
        language: ISO-639-3 code used for field mapping detection
        id_strategy: Unique id derivation for events
        deduplication_config: Duplicate analysis switch
        schema_config: Schema approval policy
        field_mapping_overrides: Manual field mappings
        import_transforms: Rename transforms applied to every row
    """

    dataset_id: str = Field(..., description="Dataset identifier")
    name: str = Field(..., description="Dataset name")
    catalog_id: Optional[str] = Field(None, description="Owning catalog")
    language: str = Field("eng", description="ISO-639-3 language code")
    id_strategy: IdStrategy = Field(default_factory=IdStrategy)
    deduplication_config: DeduplicationConfig = Field(default_factory=DeduplicationConfig)
    schema_config: SchemaConfig = Field(default_factory=SchemaConfig)
    field_mapping_overrides: FieldMappingOverrides = Field(default_factory=FieldMappingOverrides)
    import_transforms: list[ImportTransform] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SchemaVersion(BaseModel):
    """Immutable approved schema for a dataset."""

    dataset_id: str = Field(..., description="Dataset the schema belongs to")
    version_number: int = Field(..., ge=1, description="Monotonic per-dataset version")
    schema_doc: dict[str, Any] = Field(..., description="JSON-Schema shaped document")
    field_metadata: dict[str, Any] = Field(default_factory=dict, description="Per-field statistics summary")
    auto_approved: bool = Field(False, description="Approved without human review")
    approved_by: Optional[str] = Field(None, description="Approving user, if any")
    import_sources: list[str] = Field(default_factory=list, description="Import job ids linked to this version")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
