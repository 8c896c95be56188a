"""Unit tests for turning rows into events."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from geoimport.events import build_event, extract_coordinates, extract_timestamp
from geoimport.models import (
    CoordinateSource,
    CoordinateSourceType,
    Event,
    FieldMappings,
    GeocodingResult,
    Location,
)

GEOCODED = {
    "1 Main St, Springfield": GeocodingResult(
        latitude=39.8, longitude=-89.6, confidence=0.9, normalized_address="1 Main Street", provider="nominatim"
    )
}


# =============================================================================
# Coordinates
# =============================================================================

class TestExtractCoordinates:
    def test_imported_coordinates_win_over_geocoding(self):
        mappings = FieldMappings(latitude_path="lat", longitude_path="lng", location_path="address")
        row = {"lat": 51.5, "lng": -0.12, "address": "1 Main St, Springfield"}

        location, source, info = extract_coordinates(row, mappings, GEOCODED)

        assert location == Location(latitude=51.5, longitude=-0.12)
        assert source.type == CoordinateSourceType.IMPORT
        assert source.latitude_column == "lat"
        assert info.original_address == "1 Main St, Springfield"

    def test_out_of_range_coordinates_fall_back_to_geocoding(self):
        mappings = FieldMappings(latitude_path="lat", longitude_path="lng", location_path="address")
        row = {"lat": 123.0, "lng": 10.0, "address": "  1 Main St, Springfield "}

        location, source, info = extract_coordinates(row, mappings, GEOCODED)

        assert location.latitude == 39.8
        assert source.type == CoordinateSourceType.GEOCODED
        assert source.confidence == 0.9
        assert info.attempted is True
        assert info.normalized_address == "1 Main Street"

    def test_text_coordinates_are_ignored(self):
        mappings = FieldMappings(latitude_path="lat", longitude_path="lng")
        location, source, info = extract_coordinates({"lat": "51.5", "lng": "0.1"}, mappings, {})
        assert location is None
        assert source.type == CoordinateSourceType.NONE
        assert info is None

    def test_unresolved_address_is_kept_for_later(self):
        mappings = FieldMappings(location_path="address")
        location, source, info = extract_coordinates({"address": "Nowhere"}, mappings, GEOCODED)

        assert location is None
        assert source.type == CoordinateSourceType.NONE
        assert info.original_address == "Nowhere"
        assert info.attempted is False


# =============================================================================
# Timestamps
# =============================================================================

class TestExtractTimestamp:
    NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2024-03-01", datetime(2024, 3, 1, tzinfo=timezone.utc)),
            ("2024-03-01T12:30:00Z", datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)),
            ("01/03/2024", datetime(2024, 3, 1, tzinfo=timezone.utc)),
            (1_700_000_000_000, datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)),
            (datetime(2024, 3, 1, 8, 0), datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)),
        ],
    )
    def test_mapped_field(self, value, expected):
        assert extract_timestamp({"when": value}, "when", self.NOW) == expected

    def test_falls_back_to_common_columns(self):
        row = {"when": "not a date", "event_date": "2024-02-02"}
        assert extract_timestamp(row, "when", self.NOW) == datetime(2024, 2, 2, tzinfo=timezone.utc)

    def test_falls_back_to_now(self):
        assert extract_timestamp({"other": 1}, None, self.NOW) == self.NOW


# =============================================================================
# Event Construction
# =============================================================================

def test_build_event(sample_dataset, sample_mappings):
    row = {"id": "A1", "title": " Street festival ", "date": "2024-03-01", "address": "1 Main St, Springfield"}

    event = build_event(row, 7, sample_dataset, "job-1", sample_mappings, GEOCODED, schema_version_number=2)

    assert event.unique_id == "ds-1:ext:A1"
    assert event.dataset_id == "ds-1"
    assert event.import_job_id == "job-1"
    assert event.name == "Street festival"
    assert event.event_timestamp == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert event.coordinate_source.type == CoordinateSourceType.GEOCODED
    assert event.source_row == 7
    assert event.schema_version_number == 2
    assert event.data == row


def test_build_event_without_id_raises(sample_dataset, sample_mappings):
    with pytest.raises(ValueError):
        build_event({"title": "x"}, 0, sample_dataset, "job-1", sample_mappings, {})


class TestEventInvariants:
    def test_geocoded_requires_original_address(self):
        with pytest.raises(ValidationError):
            Event(
                unique_id="u", dataset_id="d", import_job_id="j",
                location=Location(latitude=1, longitude=1),
                coordinate_source=CoordinateSource(type=CoordinateSourceType.GEOCODED),
            )

    def test_none_source_carries_no_location(self):
        with pytest.raises(ValidationError):
            Event(
                unique_id="u", dataset_id="d", import_job_id="j",
                location=Location(latitude=1, longitude=1),
                coordinate_source=CoordinateSource(type=CoordinateSourceType.NONE),
            )
