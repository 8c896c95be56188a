"""Row transforms configured on a dataset and applied before any analysis."""

from typing import Any

from geoimport.models import ImportTransform

__all__ = ["apply_transforms"]


def apply_transforms(row: dict[str, Any], transforms: list[ImportTransform]) -> dict[str, Any]:
    """
    Apply active rename transforms to a copy of ``row``.

    A rename whose source is absent is skipped; an existing target value
    is overwritten.
    """
    active = [t for t in transforms if t.active and t.type == "rename"]
    if not active:
        return row
    result = dict(row)
    for transform in active:
        if transform.from_path in result:
            result[transform.to_path] = result.pop(transform.from_path)
    return result
