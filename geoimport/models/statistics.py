# =============================================================================
# Field Statistics Models
# =============================================================================
# Serializable accumulator state for progressive schema inference. The whole
# SchemaBuilderState is persisted on the import job between batches.
# =============================================================================

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

__all__ = [
    "NumericStats",
    "EnumValue",
    "TypeConflict",
    "FieldStatistics",
    "SchemaBuilderState",
]


class NumericStats(BaseModel):
    min: float = Field(..., description="Smallest value seen")
    max: float = Field(..., description="Largest value seen")
    avg: float = Field(..., description="Running average")
    count: int = Field(0, description="Number of numeric values folded into avg")
    is_integer: bool = Field(True, description="Whether every value seen was integral")


class EnumValue(BaseModel):
    value: Any = Field(..., description="Enum value")
    count: int = Field(..., description="Occurrences of this value")
    percent: float = Field(..., description="Share of non-null occurrences, 0-100")


class TypeConflict(BaseModel):
    path: str = Field(..., description="Field path")
    types: dict[str, int] = Field(default_factory=dict, description="Type tag -> occurrences")
    samples: dict[str, list[Any]] = Field(
        default_factory=dict, description="Type tag -> up to 5 sample values"
    )


class FieldStatistics(BaseModel):
    """
    Running per-field aggregate.

    ``value_counts`` is keyed by the JSON encoding of each distinct value and
    stops accepting new keys once ``max_unique_values`` is reached
    (``value_counts_overflow`` is then set). All counters are additive so two
    states can be merged in any order.
    """

    path: str = Field(..., description="Dotted field path")
    occurrences: int = Field(0, description="Times the field was present")
    null_count: int = Field(0, description="Times the field was null/empty")
    type_distribution: dict[str, int] = Field(default_factory=dict, description="Type tag counts")
    numeric_stats: Optional[NumericStats] = Field(None, description="Numeric aggregates")
    value_counts: dict[str, int] = Field(default_factory=dict, description="Bounded distinct value counts")
    value_counts_overflow: bool = Field(False, description="More distinct values than tracked")
    unique_samples: list[Any] = Field(default_factory=list, description="Bounded distinct samples")
    unique_values: int = Field(0, description="Distinct values seen (bounded)")
    formats: dict[str, int] = Field(default_factory=dict, description="String format counts")
    is_enum_candidate: bool = Field(False, description="Whether the field looks like an enum")
    enum_values: list[EnumValue] = Field(default_factory=list, description="Enum values with counts")
    first_seen: Optional[datetime] = Field(None, description="First observation time")
    last_seen: Optional[datetime] = Field(None, description="Last observation time")


class SchemaBuilderState(BaseModel):
    """Resumable state of the progressive schema builder."""

    version: int = Field(0, description="Increments whenever the schema shape changes")
    field_stats: dict[str, FieldStatistics] = Field(default_factory=dict)
    record_count: int = Field(0, description="Non-duplicate rows folded in so far")
    batch_count: int = Field(0, description="Batches processed")
    data_samples: list[dict[str, Any]] = Field(default_factory=list, description="FIFO row samples")
    detected_id_fields: list[str] = Field(default_factory=list)
    detected_geo_fields: dict[str, Optional[str]] = Field(default_factory=dict)
    type_conflicts: dict[str, TypeConflict] = Field(default_factory=dict)
    last_updated: Optional[datetime] = None
