"""Pattern detection over accumulated field statistics: enums, ids and coordinates."""

import re
from typing import Optional

from geoimport.models import FieldStatistics, SchemaBuilderState, is_top_level_path, split_field_path

from .field_statistics import refresh_enum_candidate

__all__ = [
    "LATITUDE_PATTERNS",
    "LONGITUDE_PATTERNS",
    "detect_enums",
    "detect_id_fields",
    "detect_geo_fields",
    "numeric_share_in_range",
]

_ID_PATTERNS = [
    re.compile(r"^id$", re.IGNORECASE),
    re.compile(r"^_id$"),
    re.compile(r"^uuid$", re.IGNORECASE),
    re.compile(r"^guid$", re.IGNORECASE),
    re.compile(r"_id$", re.IGNORECASE),
    re.compile(r"[a-z]Id$"),
]

LATITUDE_PATTERNS = [
    re.compile(r"^lat$", re.IGNORECASE),
    re.compile(r"^latitude$", re.IGNORECASE),
    re.compile(r"^lat[_\s-]?deg", re.IGNORECASE),
    re.compile(r"^y[_\s-]?coord", re.IGNORECASE),
    re.compile(r"^breite$", re.IGNORECASE),
    re.compile(r"^breitengrad$", re.IGNORECASE),
    re.compile(r"^latitud$", re.IGNORECASE),
    re.compile(r"^latitudine$", re.IGNORECASE),
    re.compile(r"^breedtegraad$", re.IGNORECASE),
    re.compile(r"lat", re.IGNORECASE),
]

LONGITUDE_PATTERNS = [
    re.compile(r"^lng$", re.IGNORECASE),
    re.compile(r"^lon$", re.IGNORECASE),
    re.compile(r"^long$", re.IGNORECASE),
    re.compile(r"^longitude$", re.IGNORECASE),
    re.compile(r"^lon[_\s-]?deg", re.IGNORECASE),
    re.compile(r"^x[_\s-]?coord", re.IGNORECASE),
    re.compile(r"^länge$", re.IGNORECASE),
    re.compile(r"^laengengrad$", re.IGNORECASE),
    re.compile(r"^längengrad$", re.IGNORECASE),
    re.compile(r"^longitud$", re.IGNORECASE),
    re.compile(r"^longitudine$", re.IGNORECASE),
    re.compile(r"^lengtegraad$", re.IGNORECASE),
    re.compile(r"lng|lon", re.IGNORECASE),
]


def detect_enums(
    state: SchemaBuilderState,
    enum_threshold: int = 50,
    enum_mode: str = "count",
    min_occurrences: int = 3,
) -> None:
    for stats in state.field_stats.values():
        refresh_enum_candidate(stats, enum_threshold, enum_mode, min_occurrences)


def detect_id_fields(state: SchemaBuilderState) -> list[str]:
    """Fields whose name looks like an id and whose values never repeat."""
    detected = []
    for path, stats in state.field_stats.items():
        name = split_field_path(path)[-1]
        if not any(p.search(name) for p in _ID_PATTERNS):
            continue
        non_null = stats.occurrences - stats.null_count
        if non_null == 0 or stats.occurrences < state.record_count * 0.9:
            continue
        if stats.value_counts_overflow or stats.unique_values == non_null:
            detected.append(path)
    return detected


def numeric_share_in_range(stats: FieldStatistics, bound: float) -> float:
    """Share of non-null values that are numeric (or numeric strings) within ±bound."""
    non_null = stats.occurrences - stats.null_count
    if non_null == 0:
        return 0.0
    numeric = stats.type_distribution.get("integer", 0) + stats.type_distribution.get("number", 0)
    numeric_strings = stats.formats.get("numeric", 0)
    if numeric + numeric_strings == 0:
        return 0.0
    ns = stats.numeric_stats
    if numeric and ns is not None and (ns.min < -bound or ns.max > bound):
        return 0.0
    if numeric_strings:
        for sample in stats.unique_samples:
            if isinstance(sample, str):
                try:
                    if abs(float(sample)) > bound:
                        return 0.0
                except ValueError:
                    continue
    return (numeric + numeric_strings) / non_null


def _find_coordinate(
    state: SchemaBuilderState, patterns: list[re.Pattern], bound: float
) -> Optional[str]:
    for pattern in patterns:
        for path, stats in state.field_stats.items():
            if not is_top_level_path(path):
                continue
            if pattern.search(split_field_path(path)[0]) and numeric_share_in_range(stats, bound) >= 0.7:
                return path
    return None


def detect_geo_fields(state: SchemaBuilderState) -> dict[str, Optional[str]]:
    """Latitude/longitude columns by name, confirmed by value ranges."""
    latitude = _find_coordinate(state, LATITUDE_PATTERNS, 90)
    longitude = _find_coordinate(state, LONGITUDE_PATTERNS, 180)
    if latitude and longitude and latitude != longitude:
        return {"latitude": latitude, "longitude": longitude}
    return {}
