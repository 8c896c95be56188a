# =============================================================================
# Event Model
# =============================================================================
# The terminal artifact of an import: one event per non-duplicate row.
# =============================================================================

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

__all__ = ["CoordinateSourceType", "Location", "CoordinateSource", "GeocodingInfo", "Event"]


class CoordinateSourceType(str, Enum):
    IMPORT = "import"
    GEOCODED = "geocoded"
    NONE = "none"


class Location(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class CoordinateSource(BaseModel):
    type: CoordinateSourceType = CoordinateSourceType.NONE
    confidence: Optional[float] = None
    latitude_column: Optional[str] = None
    longitude_column: Optional[str] = None


class GeocodingInfo(BaseModel):
    original_address: Optional[str] = None
    normalized_address: Optional[str] = None
    provider: Optional[str] = None
    confidence: Optional[float] = None
    attempted: bool = Field(False, description="Whether a post-creation lookup was attempted")


class Event(BaseModel):
    """
    Event document.

    Invariants: a geocoded coordinate source requires an original address;
    a 'none' coordinate source carries no location.
    """

    unique_id: str = Field(..., description="Dataset-scoped unique id")
    dataset_id: str
    import_job_id: str
    name: Optional[str] = None
    description: Optional[str] = None
    event_timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    location: Optional[Location] = None
    location_name: Optional[str] = None
    coordinate_source: CoordinateSource = Field(default_factory=CoordinateSource)
    geocoding_info: Optional[GeocodingInfo] = None
    tags: list[str] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict, description="Original row payload")
    source_row: Optional[int] = None
    schema_version_number: Optional[int] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def check_coordinate_source(self) -> "Event":
        source = self.coordinate_source.type
        if source == CoordinateSourceType.GEOCODED and not (
            self.geocoding_info and self.geocoding_info.original_address
        ):
            raise ValueError("geocoded events require geocoding_info.original_address")
        if source == CoordinateSourceType.NONE and self.location is not None:
            raise ValueError("events without a coordinate source cannot carry a location")
        return self
