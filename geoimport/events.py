# =============================================================================
# Event Materializer
# =============================================================================
# Turns one processed row into an Event document. Coordinates come from the
# row itself (mapped latitude/longitude columns), then from the geocoding
# result map keyed by trimmed address, else the event has no location.
# =============================================================================

import logging
from datetime import date, datetime, timezone
from typing import Any, Optional

from geoimport.duplicates import generate_unique_id, get_by_path
from geoimport.geocoding import normalize_address
from geoimport.models import (
    CoordinateSource,
    CoordinateSourceType,
    Dataset,
    Event,
    FieldMappings,
    GeocodingInfo,
    GeocodingResult,
    Location,
)

__all__ = [
    "FALLBACK_TIMESTAMP_FIELDS",
    "extract_coordinates",
    "extract_timestamp",
    "extract_text",
    "build_event",
]

logger = logging.getLogger(__name__)

FALLBACK_TIMESTAMP_FIELDS = ("timestamp", "date", "datetime", "created_at", "event_date", "event_time")

_DATE_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%d/%m/%Y", "%m/%d/%Y", "%d.%m.%Y", "%Y/%m/%d")


def _as_coordinate(value: Any, bound: float) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if -bound <= value <= bound:
        return float(value)
    return None


def extract_coordinates(
    row: dict[str, Any],
    mappings: FieldMappings,
    geocoding_results: dict[str, GeocodingResult],
) -> tuple[Optional[Location], CoordinateSource, Optional[GeocodingInfo]]:
    """
    Resolve an event location.

    Priority: imported lat/lng columns > geocoded address > none. The
    returned GeocodingInfo is set whenever the row carries an address, so
    events still missing a location can be geocoded later.
    """
    address = normalize_address(get_by_path(row, mappings.location_path)) if mappings.location_path else None
    info = GeocodingInfo(original_address=address) if address else None

    if mappings.latitude_path and mappings.longitude_path:
        lat = _as_coordinate(get_by_path(row, mappings.latitude_path), 90)
        lng = _as_coordinate(get_by_path(row, mappings.longitude_path), 180)
        if lat is not None and lng is not None:
            source = CoordinateSource(
                type=CoordinateSourceType.IMPORT,
                latitude_column=mappings.latitude_path,
                longitude_column=mappings.longitude_path,
            )
            return Location(latitude=lat, longitude=lng), source, info

    if address and address in geocoding_results:
        result = geocoding_results[address]
        info = GeocodingInfo(
            original_address=address,
            normalized_address=result.normalized_address,
            provider=result.provider,
            confidence=result.confidence,
            attempted=True,
        )
        source = CoordinateSource(type=CoordinateSourceType.GEOCODED, confidence=result.confidence)
        return Location(latitude=result.latitude, longitude=result.longitude), source, info

    return None, CoordinateSource(type=CoordinateSourceType.NONE), info


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # Numeric timestamps are epoch milliseconds
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
            for fmt in _DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def extract_timestamp(row: dict[str, Any], timestamp_path: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Mapped timestamp, then common timestamp columns, then ``now``."""
    if timestamp_path:
        parsed = _parse_timestamp(get_by_path(row, timestamp_path))
        if parsed:
            return parsed
    for field in FALLBACK_TIMESTAMP_FIELDS:
        parsed = _parse_timestamp(row.get(field))
        if parsed:
            return parsed
    return now or datetime.now(timezone.utc)


def extract_text(row: dict[str, Any], path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    value = get_by_path(row, path)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def build_event(
    row: dict[str, Any],
    row_number: int,
    dataset: Dataset,
    import_job_id: str,
    mappings: FieldMappings,
    geocoding_results: dict[str, GeocodingResult],
    schema_version_number: Optional[int] = None,
) -> Event:
    """
    Raises:
        ValueError: When the row has no usable unique id or invalid coordinates
    """
    location, coordinate_source, geocoding_info = extract_coordinates(row, mappings, geocoding_results)
    return Event(
        unique_id=generate_unique_id(row, dataset.dataset_id, dataset.id_strategy),
        dataset_id=dataset.dataset_id,
        import_job_id=import_job_id,
        name=extract_text(row, mappings.title_path),
        description=extract_text(row, mappings.description_path),
        event_timestamp=extract_timestamp(row, mappings.timestamp_path),
        location=location,
        location_name=extract_text(row, mappings.location_name_path),
        coordinate_source=coordinate_source,
        geocoding_info=geocoding_info,
        data=row,
        source_row=row_number,
        schema_version_number=schema_version_number,
    )
