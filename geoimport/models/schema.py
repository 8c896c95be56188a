# =============================================================================
# Schema Models
# =============================================================================
# Typed structural schema tree produced by schema inference, plus the change
# records produced when two schemas are compared. Converted to and from a
# JSON-Schema shaped document where it is persisted.
# =============================================================================

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

__all__ = [
    "FieldKind",
    "SchemaField",
    "StructuralSchema",
    "ChangeType",
    "Severity",
    "SchemaChange",
    "SchemaComparison",
    "escape_field_name",
    "split_field_path",
    "is_top_level_path",
]


# Field paths join escaped names with ".", and mark array items with a "[]"
# suffix. A literal ".", "[" or backslash inside a name is backslash-escaped,
# so a column named "venue.name" is never mistaken for a nested field.
_PATH_ESCAPES = {"\\": "\\\\", ".": "\\.", "[": "\\["}


def escape_field_name(name: str) -> str:
    return "".join(_PATH_ESCAPES.get(ch, ch) for ch in name)


def split_field_path(path: str) -> list[str]:
    """Split a field path on unescaped dots, returning unescaped names."""
    segments: list[str] = []
    current: list[str] = []
    escaped = False
    for ch in path:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ".":
            segments.append("".join(current))
            current = []
        else:
            current.append(ch)
    segments.append("".join(current))
    return segments


def is_top_level_path(path: str) -> bool:
    """True when the path has no unescaped "." or "[" (not a nested or array item path)."""
    escaped = False
    for ch in path:
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch in ".[":
            return False
    return True


class FieldKind(str, Enum):
    """Structural kind of a schema field."""

    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    NULL = "null"
    UNION = "union"


class SchemaField(BaseModel):
    """
    One node of the structural schema.

    Attributes:
        kind: Structural kind; UNION when several non-null kinds were seen
        union_kinds: Member kinds when kind is UNION
        nullable: Whether null values were observed
        required: Whether the field is present in (almost) every record
        enum_values: Allowed values when the field is an enum candidate
        minimum: Smallest numeric value observed
        maximum: Largest numeric value observed
        format: String format hint (email, uri, date, date-time)
        properties: Child fields for OBJECT kinds
        items: Element schema for ARRAY kinds
    """

    kind: FieldKind = Field(..., description="Structural kind")
    union_kinds: list[FieldKind] = Field(default_factory=list, description="Members of a union kind")
    nullable: bool = Field(False, description="Whether null values were observed")
    required: bool = Field(False, description="Whether the field is required")
    enum_values: Optional[list[Any]] = Field(None, description="Enum values, if an enum candidate")
    minimum: Optional[float] = Field(None, description="Numeric minimum")
    maximum: Optional[float] = Field(None, description="Numeric maximum")
    format: Optional[str] = Field(None, description="String format hint")
    properties: dict[str, "SchemaField"] = Field(default_factory=dict, description="Object members")
    items: Optional["SchemaField"] = Field(None, description="Array element schema")

    @property
    def type_label(self) -> str:
        """Comparable type label, ignoring nullability."""
        if self.kind == FieldKind.UNION:
            return "|".join(sorted(k.value for k in self.union_kinds))
        return self.kind.value

    def to_json_schema(self) -> dict[str, Any]:
        if self.kind == FieldKind.UNION:
            types: Any = [k.value for k in self.union_kinds]
        else:
            types = self.kind.value
        if self.nullable and self.kind != FieldKind.NULL:
            types = (types if isinstance(types, list) else [types]) + ["null"]

        doc: dict[str, Any] = {"type": types}
        if self.enum_values is not None:
            doc["enum"] = list(self.enum_values)
        if self.minimum is not None:
            doc["minimum"] = self.minimum
        if self.maximum is not None:
            doc["maximum"] = self.maximum
        if self.format:
            doc["format"] = self.format
        if self.properties:
            doc["properties"] = {name: child.to_json_schema() for name, child in self.properties.items()}
            required = [name for name, child in self.properties.items() if child.required]
            if required:
                doc["required"] = required
        if self.items is not None:
            doc["items"] = self.items.to_json_schema()
        return doc

    @classmethod
    def from_json_schema(cls, doc: dict[str, Any], required: bool = False) -> "SchemaField":
        raw = doc.get("type", "string")
        if "oneOf" in doc or "anyOf" in doc:
            members = doc.get("oneOf") or doc.get("anyOf") or []
            raw = [m.get("type", "string") for m in members if isinstance(m, dict)]
        types = raw if isinstance(raw, list) else [raw]

        nullable = "null" in types
        kinds = [FieldKind(t) for t in types if t != "null"]
        if not kinds:
            kind, union_kinds = FieldKind.NULL, []
        elif len(kinds) == 1:
            kind, union_kinds = kinds[0], []
        else:
            kind, union_kinds = FieldKind.UNION, kinds

        child_required = set(doc.get("required", []))
        properties = {
            name: cls.from_json_schema(child, required=name in child_required)
            for name, child in (doc.get("properties") or {}).items()
        }
        items = cls.from_json_schema(doc["items"]) if isinstance(doc.get("items"), dict) else None

        return cls(
            kind=kind,
            union_kinds=union_kinds,
            nullable=nullable,
            required=required,
            enum_values=doc.get("enum"),
            minimum=doc.get("minimum"),
            maximum=doc.get("maximum"),
            format=doc.get("format"),
            properties=properties,
            items=items,
        )


class StructuralSchema(BaseModel):
    """Top-level schema: field name -> SchemaField."""

    fields: dict[str, SchemaField] = Field(default_factory=dict, description="Top-level fields")

    @property
    def required_fields(self) -> list[str]:
        return [name for name, f in self.fields.items() if f.required]

    def flatten(self) -> dict[str, SchemaField]:
        """Return every field keyed by its escaped field path (arrays use ``name[]``)."""
        flat: dict[str, SchemaField] = {}

        def _walk(prefix: str, node: SchemaField) -> None:
            flat[prefix] = node
            for child_name, child in node.properties.items():
                _walk(f"{prefix}.{escape_field_name(child_name)}", child)
            if node.items is not None:
                _walk(f"{prefix}[]", node.items)

        for name, field in self.fields.items():
            _walk(escape_field_name(name), field)
        return flat

    def to_json_schema(self) -> dict[str, Any]:
        # No "$schema" keyword: the document is stored as a MongoDB subdocument
        doc: dict[str, Any] = {
            "type": "object",
            "properties": {name: f.to_json_schema() for name, f in self.fields.items()},
            "required": self.required_fields,
        }
        return doc

    @classmethod
    def from_json_schema(cls, doc: Optional[dict[str, Any]]) -> "StructuralSchema":
        if not doc:
            return cls()
        required = set(doc.get("required", []))
        return cls(
            fields={
                name: SchemaField.from_json_schema(child, required=name in required)
                for name, child in (doc.get("properties") or {}).items()
            }
        )


class ChangeType(str, Enum):
    NEW_FIELD = "new_field"
    REMOVED_FIELD = "removed_field"
    TYPE_CHANGE = "type_change"
    ENUM_CHANGE = "enum_change"
    REQUIRED_CHANGE = "required_change"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class SchemaChange(BaseModel):
    """A single difference between two schemas."""

    type: ChangeType = Field(..., description="Kind of change")
    path: str = Field(..., description="Dotted field path")
    severity: Severity = Field(Severity.INFO, description="Severity of the change")
    breaking: bool = Field(False, description="Whether existing consumers may break")
    auto_approvable: bool = Field(True, description="Whether the change can be approved automatically")
    details: dict[str, Any] = Field(default_factory=dict, description="Before/after details")


class SchemaComparison(BaseModel):
    """Result of comparing a current schema against a detected schema."""

    changes: list[SchemaChange] = Field(default_factory=list)
    breaking_changes: list[SchemaChange] = Field(default_factory=list)
    non_breaking_changes: list[SchemaChange] = Field(default_factory=list)
    new_fields: list[SchemaChange] = Field(default_factory=list)
    requires_approval: bool = False
    can_auto_approve: bool = True

    @property
    def has_breaking_changes(self) -> bool:
        return bool(self.breaking_changes)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)
