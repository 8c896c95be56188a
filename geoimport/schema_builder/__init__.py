"""Progressive schema inference: field statistics, builder and field mapping detection."""

from .builder import BatchResult, ProgressiveSchemaBuilder, SchemaBuilderConfig
from .field_mapping import apply_overrides, detect_field_mappings
from .field_statistics import (
    create_field_stats,
    get_value_type,
    merge_field_stats,
    refresh_enum_candidate,
    update_field_stats,
)
from .pattern_detection import detect_enums, detect_geo_fields, detect_id_fields

__all__ = [
    "BatchResult",
    "ProgressiveSchemaBuilder",
    "SchemaBuilderConfig",
    "apply_overrides",
    "detect_field_mappings",
    "create_field_stats",
    "get_value_type",
    "merge_field_stats",
    "refresh_enum_candidate",
    "update_field_stats",
    "detect_enums",
    "detect_geo_fields",
    "detect_id_fields",
]
