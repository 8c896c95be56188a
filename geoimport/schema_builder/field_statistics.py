"""Per-field running statistics used by progressive schema inference.

Every counter here is additive so that ``merge_field_stats`` is associative
and independent of the order in which batches were folded in.
"""

import json
import math
import re
from datetime import date, datetime, timezone
from typing import Any, Optional

from geoimport.models import EnumValue, FieldStatistics, NumericStats

__all__ = [
    "MAX_SAMPLES_PER_FIELD",
    "get_value_type",
    "value_key",
    "create_field_stats",
    "update_field_stats",
    "merge_field_stats",
    "refresh_enum_candidate",
]

MAX_SAMPLES_PER_FIELD = 100

_EMAIL_DOMAIN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_URL = re.compile(r"^https?://\S+")
_DATE_TIME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NUMERIC = re.compile(r"^-?\d+(\.\d+)?$")
_DATE_LIKE = re.compile(r"^(\d{4}-\d{2}-\d{2}([T ]\d{2}:\d{2}(:\d{2})?.*)?|\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4})$")


def get_value_type(value: Any) -> str:
    """Return the type tag used in ``type_distribution``."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "integer" if value.is_integer() else "number"
    if isinstance(value, (datetime, date)):
        return "date"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, str):
        if _DATE_LIKE.match(value):
            return "date"
        if value.lower() in ("true", "false"):
            return "boolean-string"
        return "string"
    return "object"


def value_key(value: Any) -> str:
    """Stable key for a value in ``value_counts``."""
    if isinstance(value, (datetime, date)):
        return json.dumps(value.isoformat())
    return json.dumps(value, sort_keys=True, default=str)


def create_field_stats(path: str, now: Optional[datetime] = None) -> FieldStatistics:
    now = now or datetime.now(timezone.utc)
    return FieldStatistics(path=path, first_seen=now, last_seen=now)


def _update_numeric(stats: FieldStatistics, value: float) -> None:
    if stats.numeric_stats is None:
        stats.numeric_stats = NumericStats(
            min=value, max=value, avg=value, count=1, is_integer=float(value).is_integer()
        )
        return
    ns = stats.numeric_stats
    ns.min = min(ns.min, value)
    ns.max = max(ns.max, value)
    ns.count += 1
    ns.avg = ns.avg + (value - ns.avg) / ns.count
    ns.is_integer = ns.is_integer and float(value).is_integer()


def _detect_formats(stats: FieldStatistics, value: str) -> None:
    found = []
    if _EMAIL_DOMAIN.match(value):
        found.append("email")
    if _URL.match(value):
        found.append("url")
    if _DATE_TIME.match(value):
        found.append("date_time")
    if _ISO_DATE.match(value):
        found.append("date")
    if _NUMERIC.match(value):
        found.append("numeric")
    for fmt in found:
        stats.formats[fmt] = stats.formats.get(fmt, 0) + 1


def _track_value(stats: FieldStatistics, value: Any, max_unique_values: int) -> None:
    if isinstance(value, (dict, list, tuple)):
        return
    key = value_key(value)
    if key in stats.value_counts:
        stats.value_counts[key] += 1
    elif len(stats.value_counts) < max_unique_values:
        stats.value_counts[key] = 1
        if len(stats.unique_samples) < MAX_SAMPLES_PER_FIELD:
            stats.unique_samples.append(value.isoformat() if isinstance(value, (datetime, date)) else value)
    else:
        stats.value_counts_overflow = True
    stats.unique_values = len(stats.value_counts)


def update_field_stats(
    stats: FieldStatistics,
    value: Any,
    max_unique_values: int = 100,
    now: Optional[datetime] = None,
) -> None:
    """Fold one observed value into ``stats`` in place."""
    stats.occurrences += 1
    value_type = get_value_type(value)
    stats.type_distribution[value_type] = stats.type_distribution.get(value_type, 0) + 1

    if value is None:
        stats.null_count += 1
    else:
        if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
            _update_numeric(stats, value)
        if isinstance(value, str):
            _detect_formats(stats, value)
        _track_value(stats, value, max_unique_values)

    stats.last_seen = now or datetime.now(timezone.utc)


def _merge_numeric(a: Optional[NumericStats], b: Optional[NumericStats]) -> Optional[NumericStats]:
    if a is None or b is None:
        return (a or b).model_copy() if (a or b) else None
    count = a.count + b.count
    avg = (a.avg * a.count + b.avg * b.count) / count if count else 0.0
    return NumericStats(
        min=min(a.min, b.min),
        max=max(a.max, b.max),
        avg=avg,
        count=count,
        is_integer=a.is_integer and b.is_integer,
    )


def merge_field_stats(
    a: FieldStatistics,
    b: FieldStatistics,
    max_unique_values: int = 100,
) -> FieldStatistics:
    """Combine two statistics for the same path into a new object."""
    type_distribution = dict(a.type_distribution)
    for tag, count in b.type_distribution.items():
        type_distribution[tag] = type_distribution.get(tag, 0) + count

    formats = dict(a.formats)
    for fmt, count in b.formats.items():
        formats[fmt] = formats.get(fmt, 0) + count

    combined: dict[str, int] = dict(a.value_counts)
    for key, count in b.value_counts.items():
        combined[key] = combined.get(key, 0) + count
    overflow = a.value_counts_overflow or b.value_counts_overflow
    if len(combined) > max_unique_values:
        overflow = True
        keep = sorted(combined, key=lambda k: (-combined[k], k))[:max_unique_values]
        combined = {k: combined[k] for k in keep}

    samples = [json.loads(k) for k in sorted(combined)][:MAX_SAMPLES_PER_FIELD]

    firsts = [d for d in (a.first_seen, b.first_seen) if d is not None]
    lasts = [d for d in (a.last_seen, b.last_seen) if d is not None]

    return FieldStatistics(
        path=a.path,
        occurrences=a.occurrences + b.occurrences,
        null_count=a.null_count + b.null_count,
        type_distribution=type_distribution,
        numeric_stats=_merge_numeric(a.numeric_stats, b.numeric_stats),
        value_counts=combined,
        value_counts_overflow=overflow,
        unique_samples=samples,
        unique_values=len(combined),
        formats=formats,
        first_seen=min(firsts) if firsts else None,
        last_seen=max(lasts) if lasts else None,
    )


def refresh_enum_candidate(
    stats: FieldStatistics,
    enum_threshold: int = 50,
    enum_mode: str = "count",
    min_occurrences: int = 3,
) -> None:
    """
    Recompute ``is_enum_candidate`` and ``enum_values`` from the counters.

    A field is an enum candidate when it has at least ``min_occurrences``
    non-null values, repeats at least one value, and its distinct value count
    is within the threshold (absolute in ``count`` mode, percent of non-null
    occurrences in ``percentage`` mode).
    """
    non_null = stats.occurrences - stats.null_count
    unique = stats.unique_values

    if stats.value_counts_overflow or non_null < min_occurrences or unique == 0 or unique >= non_null:
        candidate = False
    elif enum_mode == "percentage":
        candidate = (unique / non_null) * 100 <= enum_threshold
    else:
        candidate = unique <= enum_threshold

    stats.is_enum_candidate = candidate
    if not candidate:
        stats.enum_values = []
        return

    stats.enum_values = [
        EnumValue(value=json.loads(key), count=count, percent=round(count / non_null * 100, 2))
        for key, count in sorted(stats.value_counts.items(), key=lambda kv: (-kv[1], kv[0]))
    ]
