# =============================================================================
# Progressive Schema Builder
# =============================================================================
# Folds batches of rows into per-field statistics and derives a structural
# schema from them. The builder holds no state of its own beyond a
# SchemaBuilderState, so it can be paused after any batch, persisted, and
# resumed in another process.
# =============================================================================

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from geoimport.models import (
    ChangeType,
    FieldKind,
    SchemaBuilderState,
    SchemaChange,
    SchemaField,
    Severity,
    StructuralSchema,
    TypeConflict,
    escape_field_name,
    is_top_level_path,
    split_field_path,
)

from .field_statistics import create_field_stats, get_value_type, merge_field_stats, update_field_stats
from .pattern_detection import detect_enums, detect_geo_fields, detect_id_fields

__all__ = ["SchemaBuilderConfig", "BatchResult", "ProgressiveSchemaBuilder"]

logger = logging.getLogger(__name__)

REQUIRED_OCCURRENCE_RATIO = 0.9
MAX_CONFLICT_SAMPLES = 5

_TAG_KIND = {
    "integer": FieldKind.INTEGER,
    "number": FieldKind.NUMBER,
    "boolean": FieldKind.BOOLEAN,
    "string": FieldKind.STRING,
    "date": FieldKind.STRING,
    "boolean-string": FieldKind.STRING,
    "array": FieldKind.ARRAY,
    "object": FieldKind.OBJECT,
}
_KIND_ORDER = [
    FieldKind.STRING,
    FieldKind.INTEGER,
    FieldKind.NUMBER,
    FieldKind.BOOLEAN,
    FieldKind.ARRAY,
    FieldKind.OBJECT,
]
_FORMAT_NAMES = {"email": "email", "url": "uri", "date_time": "date-time", "date": "date"}


def _family(tag: str) -> Optional[str]:
    """Compatibility family of a type tag; integers and floats share one."""
    kind = _TAG_KIND.get(tag)
    if kind is None:
        return None
    if kind in (FieldKind.INTEGER, FieldKind.NUMBER):
        return "numeric"
    return kind.value


class SchemaBuilderConfig(BaseModel):
    max_samples: int = Field(100, description="Row samples kept in state (FIFO)")
    max_unique_values: int = Field(100, description="Distinct values tracked per field")
    enum_threshold: int = Field(50, description="Enum threshold (count or percent)")
    enum_mode: str = Field("count", description="'count' or 'percentage'")
    max_depth: int = Field(3, description="Nesting depth tracked for objects")
    min_enum_occurrences: int = Field(3, description="Minimum non-null values before enum detection")


class BatchResult(BaseModel):
    schema_changed: bool = False
    changes: list[SchemaChange] = Field(default_factory=list)


class ProgressiveSchemaBuilder:
    """
    Resumable schema inference.

    Usage:
        builder = ProgressiveSchemaBuilder(job.schema_builder_state)
        builder.process_batch(rows)
        job.schema_builder_state = builder.get_state()
    """

    def __init__(
        self,
        state: Optional[SchemaBuilderState] = None,
        config: Optional[SchemaBuilderConfig] = None,
    ):
        self.config = config or SchemaBuilderConfig()
        self.state = state.model_copy(deep=True) if state is not None else SchemaBuilderState()

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def process_batch(self, rows: list[dict[str, Any]]) -> BatchResult:
        """
        Fold a batch of rows into the statistics.

        An empty batch is valid: it only re-runs detection so that enum,
        id and coordinate flags reflect the final counters.
        """
        now = datetime.now(timezone.utc)
        changes: list[SchemaChange] = []

        for row in rows:
            self.state.record_count += 1
            self._record_sample(row)
            for key, value in row.items():
                self._observe(escape_field_name(str(key)), value, 0, changes, now)

        if rows:
            self.state.batch_count += 1
        self.finalize()
        self.state.last_updated = now

        schema_changed = any(
            c.type in (ChangeType.NEW_FIELD, ChangeType.TYPE_CHANGE) for c in changes
        )
        if schema_changed:
            self.state.version += 1
            logger.info(
                f"Schema changed ({len(changes)} changes), builder version {self.state.version}"
            )
        return BatchResult(schema_changed=schema_changed, changes=changes)

    def finalize(self) -> None:
        """Recompute enum, id and coordinate detection from current counters."""
        detect_enums(
            self.state,
            self.config.enum_threshold,
            self.config.enum_mode,
            self.config.min_enum_occurrences,
        )
        self.state.detected_id_fields = detect_id_fields(self.state)
        self.state.detected_geo_fields = detect_geo_fields(self.state)

    def _record_sample(self, row: dict[str, Any]) -> None:
        self.state.data_samples.append(
            {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in row.items()}
        )
        overflow = len(self.state.data_samples) - self.config.max_samples
        if overflow > 0:
            del self.state.data_samples[:overflow]

    def _observe(
        self,
        path: str,
        value: Any,
        depth: int,
        changes: list[SchemaChange],
        now: datetime,
    ) -> None:
        stats = self.state.field_stats.get(path)
        if stats is None:
            stats = create_field_stats(path, now)
            self.state.field_stats[path] = stats
            changes.append(
                SchemaChange(
                    type=ChangeType.NEW_FIELD,
                    path=path,
                    severity=Severity.INFO,
                    breaking=False,
                    auto_approvable=True,
                    details={"type": get_value_type(value)},
                )
            )
        else:
            self._check_conflict(path, stats.type_distribution, value, changes)

        update_field_stats(stats, value, self.config.max_unique_values, now)

        if depth + 1 >= self.config.max_depth:
            return
        if isinstance(value, dict):
            for key, child in value.items():
                self._observe(f"{path}.{escape_field_name(str(key))}", child, depth + 1, changes, now)
        elif isinstance(value, list) and value:
            self._observe(f"{path}[]", value[0], depth + 1, changes, now)

    def _check_conflict(
        self,
        path: str,
        distribution: dict[str, int],
        value: Any,
        changes: list[SchemaChange],
    ) -> None:
        tag = get_value_type(value)
        family = _family(tag)
        if family is None:
            return
        existing = {_family(t) for t in distribution} - {None}
        if not existing:
            return

        conflict = self.state.type_conflicts.get(path)
        if family not in existing:
            if conflict is None:
                conflict = TypeConflict(path=path)
                self.state.type_conflicts[path] = conflict
                for t, count in distribution.items():
                    if _family(t) is not None:
                        conflict.types[t] = count
            changes.append(
                SchemaChange(
                    type=ChangeType.TYPE_CHANGE,
                    path=path,
                    severity=Severity.WARNING,
                    breaking=False,
                    auto_approvable=False,
                    details={"existing": sorted(existing), "observed": family},
                )
            )
        if conflict is not None:
            conflict.types[tag] = conflict.types.get(tag, 0) + 1
            samples = conflict.samples.setdefault(tag, [])
            if len(samples) < MAX_CONFLICT_SAMPLES and not isinstance(value, (dict, list)):
                samples.append(value if not isinstance(value, datetime) else value.isoformat())

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def get_state(self) -> SchemaBuilderState:
        return self.state.model_copy(deep=True)

    @classmethod
    def merge_states(
        cls,
        a: SchemaBuilderState,
        b: SchemaBuilderState,
        config: Optional[SchemaBuilderConfig] = None,
    ) -> SchemaBuilderState:
        """Combine two independently accumulated states."""
        config = config or SchemaBuilderConfig()
        field_stats = {}
        for path in set(a.field_stats) | set(b.field_stats):
            left, right = a.field_stats.get(path), b.field_stats.get(path)
            if left is not None and right is not None:
                field_stats[path] = merge_field_stats(left, right, config.max_unique_values)
            else:
                field_stats[path] = (left or right).model_copy(deep=True)

        conflicts = {**a.type_conflicts}
        for path, conflict in b.type_conflicts.items():
            if path in conflicts:
                merged = conflicts[path].model_copy(deep=True)
                for t, count in conflict.types.items():
                    merged.types[t] = merged.types.get(t, 0) + count
                for t, samples in conflict.samples.items():
                    kept = merged.samples.setdefault(t, [])
                    kept.extend(samples[: MAX_CONFLICT_SAMPLES - len(kept)])
                conflicts[path] = merged
            else:
                conflicts[path] = conflict.model_copy(deep=True)

        merged_state = SchemaBuilderState(
            version=max(a.version, b.version),
            field_stats=field_stats,
            record_count=a.record_count + b.record_count,
            batch_count=a.batch_count + b.batch_count,
            data_samples=(a.data_samples + b.data_samples)[-config.max_samples:],
            type_conflicts=conflicts,
            last_updated=datetime.now(timezone.utc),
        )
        builder = cls(merged_state, config)
        builder.finalize()
        return builder.state

    # ------------------------------------------------------------------
    # Schema derivation
    # ------------------------------------------------------------------

    def get_schema(self) -> StructuralSchema:
        stats = self.state.field_stats
        top_level = [p for p in stats if is_top_level_path(p)]
        return StructuralSchema(
            fields={
                split_field_path(p)[0]: self._build_field(p, self.state.record_count)
                for p in sorted(top_level)
            }
        )

    def _build_field(self, path: str, parent_occurrences: int) -> SchemaField:
        stats = self.state.field_stats[path]

        kinds = {_TAG_KIND[t] for t in stats.type_distribution if t in _TAG_KIND}
        if FieldKind.NUMBER in kinds:
            kinds.discard(FieldKind.INTEGER)
        ordered = [k for k in _KIND_ORDER if k in kinds]
        if not ordered:
            kind, union_kinds = FieldKind.NULL, []
        elif len(ordered) == 1:
            kind, union_kinds = ordered[0], []
        else:
            kind, union_kinds = FieldKind.UNION, ordered

        required = (
            parent_occurrences > 0
            and stats.occurrences >= parent_occurrences * REQUIRED_OCCURRENCE_RATIO
            and stats.null_count == 0
        )

        field = SchemaField(
            kind=kind,
            union_kinds=union_kinds,
            nullable=stats.null_count > 0,
            required=required,
        )
        if stats.is_enum_candidate and stats.enum_values:
            field.enum_values = sorted((ev.value for ev in stats.enum_values), key=str)
        if stats.numeric_stats is not None and kind in (FieldKind.INTEGER, FieldKind.NUMBER):
            field.minimum = stats.numeric_stats.min
            field.maximum = stats.numeric_stats.max
        if kind == FieldKind.STRING:
            field.format = self._dominant_format(stats.formats, stats.occurrences - stats.null_count)

        prefix = f"{path}."
        for child_path in sorted(stats_path for stats_path in self.state.field_stats if stats_path.startswith(prefix)):
            rest = child_path[len(prefix):]
            if not is_top_level_path(rest):
                continue
            field.properties[split_field_path(rest)[0]] = self._build_field(child_path, stats.occurrences)
        if f"{path}[]" in self.state.field_stats:
            field.items = self._build_field(f"{path}[]", stats.occurrences)
        return field

    @staticmethod
    def _dominant_format(formats: dict[str, int], non_null: int) -> Optional[str]:
        if non_null == 0:
            return None
        for fmt in ("date_time", "date", "email", "url"):
            if formats.get(fmt, 0) == non_null:
                return _FORMAT_NAMES[fmt]
        return None

    def get_summary(self) -> dict[str, Any]:
        return {
            "version": self.state.version,
            "record_count": self.state.record_count,
            "batch_count": self.state.batch_count,
            "field_count": len(self.state.field_stats),
            "enum_fields": sorted(p for p, s in self.state.field_stats.items() if s.is_enum_candidate),
            "id_fields": list(self.state.detected_id_fields),
            "geo_fields": dict(self.state.detected_geo_fields),
            "type_conflicts": sorted(self.state.type_conflicts),
        }

    def field_metadata(self) -> dict[str, Any]:
        """Per-field summary stored alongside a schema version."""
        metadata = {}
        for path, stats in self.state.field_stats.items():
            metadata[path] = {
                "occurrences": stats.occurrences,
                "null_count": stats.null_count,
                "unique_values": stats.unique_values,
                "type_distribution": dict(stats.type_distribution),
                "is_enum_candidate": stats.is_enum_candidate,
                "numeric_stats": stats.numeric_stats.model_dump() if stats.numeric_stats else None,
            }
        return metadata
