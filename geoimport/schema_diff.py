"""Schema comparison and approval policy.

Breaking changes are the ones that can invalidate existing consumers of a
dataset: a field whose type changed, or a previously required field that
disappeared. Everything else is recorded but does not force approval on
its own.
"""

import logging
from typing import Optional

from geoimport.models import (
    ChangeType,
    SchemaChange,
    SchemaComparison,
    SchemaConfig,
    SchemaField,
    Severity,
    StructuralSchema,
)

__all__ = [
    "compare_schemas",
    "requires_approval",
    "approval_reason",
    "generate_change_summary",
]

logger = logging.getLogger(__name__)

BREAKING_REASON = "Breaking schema changes detected"
LOCKED_REASON = "Schema is locked"
MANUAL_REASON = "Manual approval required by dataset configuration"


def _compare_field(path: str, old: SchemaField, new: SchemaField) -> list[SchemaChange]:
    changes = []
    if old.type_label != new.type_label:
        changes.append(
            SchemaChange(
                type=ChangeType.TYPE_CHANGE,
                path=path,
                severity=Severity.ERROR,
                breaking=True,
                auto_approvable=False,
                details={"old_type": old.type_label, "new_type": new.type_label},
            )
        )

    if old.enum_values is not None and new.enum_values is not None:
        old_values = {repr(v) for v in old.enum_values}
        new_values = {repr(v) for v in new.enum_values}
        removed = sorted(old_values - new_values)
        added = sorted(new_values - old_values)
        if removed or added:
            changes.append(
                SchemaChange(
                    type=ChangeType.ENUM_CHANGE,
                    path=path,
                    severity=Severity.WARNING if removed else Severity.INFO,
                    breaking=False,
                    auto_approvable=not removed,
                    details={"added_values": added, "removed_values": removed},
                )
            )

    if old.required != new.required:
        became_required = new.required and not old.required
        changes.append(
            SchemaChange(
                type=ChangeType.REQUIRED_CHANGE,
                path=path,
                severity=Severity.WARNING if became_required else Severity.INFO,
                breaking=False,
                auto_approvable=True,
                details={"was_required": old.required, "now_required": new.required},
            )
        )
    return changes


def compare_schemas(current: Optional[StructuralSchema], detected: StructuralSchema) -> SchemaComparison:
    """
    Compare the current approved schema against a freshly detected one.

    Paths are compared on the flattened tree so nested members are diffed
    like top-level fields. A missing current schema means every detected
    field is new.
    """
    old_fields = (current or StructuralSchema()).flatten()
    new_fields = detected.flatten()
    changes: list[SchemaChange] = []

    for path in sorted(new_fields.keys() - old_fields.keys()):
        field = new_fields[path]
        changes.append(
            SchemaChange(
                type=ChangeType.NEW_FIELD,
                path=path,
                severity=Severity.INFO,
                breaking=False,
                auto_approvable=True,
                details={"type": field.type_label, "required": field.required},
            )
        )

    for path in sorted(old_fields.keys() - new_fields.keys()):
        field = old_fields[path]
        changes.append(
            SchemaChange(
                type=ChangeType.REMOVED_FIELD,
                path=path,
                severity=Severity.ERROR if field.required else Severity.WARNING,
                breaking=field.required,
                auto_approvable=not field.required,
                details={"type": field.type_label, "was_required": field.required},
            )
        )

    for path in sorted(old_fields.keys() & new_fields.keys()):
        changes.extend(_compare_field(path, old_fields[path], new_fields[path]))

    breaking = [c for c in changes if c.breaking]
    return SchemaComparison(
        changes=changes,
        breaking_changes=breaking,
        non_breaking_changes=[c for c in changes if not c.breaking],
        new_fields=[c for c in changes if c.type == ChangeType.NEW_FIELD],
        requires_approval=any(c.severity in (Severity.ERROR, Severity.WARNING) for c in changes),
        can_auto_approve=all(c.auto_approvable for c in changes),
    )


def requires_approval(comparison: SchemaComparison, config: SchemaConfig) -> bool:
    """Approval is needed for breaking changes, locked schemas, or when auto-approval is off."""
    return comparison.has_breaking_changes or config.locked or not config.auto_approve_non_breaking


def approval_reason(comparison: SchemaComparison, config: SchemaConfig) -> Optional[str]:
    if comparison.has_breaking_changes:
        return BREAKING_REASON
    if config.locked:
        return LOCKED_REASON
    if not config.auto_approve_non_breaking:
        return MANUAL_REASON
    return None


def generate_change_summary(comparison: SchemaComparison) -> str:
    if not comparison.changes:
        return "No schema changes detected"

    lines = []
    if comparison.breaking_changes:
        lines.append(f"Breaking changes ({len(comparison.breaking_changes)}):")
        for change in comparison.breaking_changes:
            lines.append(f"  - {_describe(change)}")
    if comparison.non_breaking_changes:
        lines.append(f"Non-breaking changes ({len(comparison.non_breaking_changes)}):")
        for change in comparison.non_breaking_changes:
            lines.append(f"  - {_describe(change)}")
    return "\n".join(lines)


def _describe(change: SchemaChange) -> str:
    d = change.details
    if change.type == ChangeType.NEW_FIELD:
        suffix = " (required)" if d.get("required") else ""
        return f"New field '{change.path}' of type {d.get('type')}{suffix}"
    if change.type == ChangeType.REMOVED_FIELD:
        return f"Removed field '{change.path}'"
    if change.type == ChangeType.TYPE_CHANGE:
        return f"Type of '{change.path}' changed from {d.get('old_type')} to {d.get('new_type')}"
    if change.type == ChangeType.ENUM_CHANGE:
        parts = []
        if d.get("added_values"):
            parts.append(f"added {', '.join(d['added_values'])}")
        if d.get("removed_values"):
            parts.append(f"removed {', '.join(d['removed_values'])}")
        return f"Enum values of '{change.path}' changed: {'; '.join(parts)}"
    state = "required" if d.get("now_required") else "optional"
    return f"Field '{change.path}' is now {state}"
