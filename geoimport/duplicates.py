# =============================================================================
# Duplicate Detection
# =============================================================================
# Unique id derivation for rows (per dataset id strategy) and internal /
# external duplicate analysis. Row numbers are absolute and 0-based within
# a sheet.
# =============================================================================

import hashlib
import json
import logging
import re
from typing import Any, Callable, Iterable, Optional

from geoimport.models import (
    DuplicateEntry,
    Duplicates,
    DuplicateSummary,
    IdStrategy,
    IdStrategyType,
    split_field_path,
)

__all__ = [
    "EXTERNAL_QUERY_CHUNK_SIZE",
    "content_hash",
    "get_by_path",
    "generate_unique_id",
    "DuplicateAnalyzer",
]

logger = logging.getLogger(__name__)

EXTERNAL_QUERY_CHUNK_SIZE = 1000
_EXTERNAL_ID_PATTERN = re.compile(r"^[\w\-.:]+$")


def get_by_path(row: dict[str, Any], path: Optional[str]) -> Any:
    """
    Resolve a field path against a row.

    A flat key equal to the path wins over nesting. Escaped dots (``venue\\.name``)
    address a single column whose name contains a dot.
    """
    if not path:
        return None
    if path in row:
        return row[path]
    current: Any = row
    for part in split_field_path(path):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def _hash(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def content_hash(row: dict[str, Any]) -> str:
    """Order-independent hash of a row's content."""
    return _hash(json.dumps(row, sort_keys=True, default=str))


def _external_id(row: dict[str, Any], path: Optional[str]) -> Optional[str]:
    value = get_by_path(row, path)
    if value is None:
        return None
    candidate = str(value).strip()
    if not candidate or len(candidate) > 255 or not _EXTERNAL_ID_PATTERN.match(candidate):
        return None
    return candidate


def _computed_id(row: dict[str, Any], fields: list[str]) -> Optional[str]:
    if not fields:
        return None
    parts = [f"{f}:{json.dumps(get_by_path(row, f), default=str)}" for f in sorted(fields)]
    return _hash("|".join(parts))


def generate_unique_id(row: dict[str, Any], dataset_id: str, strategy: IdStrategy) -> str:
    """
    Derive a dataset-scoped unique id for a row.

    Raises:
        ValueError: If the strategy's required field is missing or invalid
    """
    kind = strategy.type
    if kind == IdStrategyType.EXTERNAL:
        external = _external_id(row, strategy.external_id_path)
        if external is None:
            raise ValueError(f"Missing or invalid external id at '{strategy.external_id_path}'")
        return f"{dataset_id}:ext:{external}"

    if kind == IdStrategyType.COMPUTED:
        computed = _computed_id(row, strategy.computed_id_fields)
        if computed is None:
            raise ValueError("Computed id strategy has no fields configured")
        return f"{dataset_id}:comp:{computed}"

    if kind == IdStrategyType.HYBRID:
        external = _external_id(row, strategy.external_id_path)
        if external is not None:
            return f"{dataset_id}:ext:{external}"
        computed = _computed_id(row, strategy.computed_id_fields)
        if computed is not None:
            return f"{dataset_id}:comp:{computed}"

    return f"{dataset_id}:auto:{content_hash(row)}"


class DuplicateAnalyzer:
    """
    Incremental duplicate analysis across batches.

    Internal duplicates are later rows whose unique id was already seen in
    the same file. External duplicates are unique ids already present in the
    events store for the dataset, looked up through ``existing_lookup``.
    """

    def __init__(
        self,
        dataset_id: str,
        strategy: IdStrategy,
        existing_lookup: Callable[[list[str]], dict[str, str]],
    ):
        self.dataset_id = dataset_id
        self.strategy = strategy
        self.existing_lookup = existing_lookup
        self.first_seen: dict[str, int] = {}
        self.internal: list[DuplicateEntry] = []
        self.total_rows = 0

    def add_rows(self, rows: Iterable[dict[str, Any]], start_row: int) -> None:
        for offset, row in enumerate(rows):
            row_number = start_row + offset
            self.total_rows += 1
            try:
                unique_id = generate_unique_id(row, self.dataset_id, self.strategy)
            except ValueError as e:
                # Rows without a usable id are left to event creation to report.
                logger.debug(f"Row {row_number}: {e}")
                continue
            first = self.first_seen.get(unique_id)
            if first is None:
                self.first_seen[unique_id] = row_number
            else:
                self.internal.append(
                    DuplicateEntry(row_number=row_number, unique_id=unique_id, first_occurrence=first)
                )

    def find_external(self) -> list[DuplicateEntry]:
        ids = list(self.first_seen)
        external: list[DuplicateEntry] = []
        for start in range(0, len(ids), EXTERNAL_QUERY_CHUNK_SIZE):
            chunk = ids[start:start + EXTERNAL_QUERY_CHUNK_SIZE]
            existing = self.existing_lookup(chunk)
            for unique_id in chunk:
                if unique_id in existing:
                    external.append(
                        DuplicateEntry(
                            row_number=self.first_seen[unique_id],
                            unique_id=unique_id,
                            existing_event_id=existing[unique_id],
                        )
                    )
        return sorted(external, key=lambda d: d.row_number)

    def result(self) -> Duplicates:
        external = self.find_external()
        duplicate_rows = {d.row_number for d in self.internal} | {d.row_number for d in external}
        summary = DuplicateSummary(
            total_rows=self.total_rows,
            unique_rows=self.total_rows - len(duplicate_rows),
            internal_duplicates=len(self.internal),
            external_duplicates=len(external),
        )
        logger.info(
            f"Duplicate analysis for dataset {self.dataset_id}: {summary.internal_duplicates} internal, "
            f"{summary.external_duplicates} external, {summary.unique_rows}/{summary.total_rows} unique"
        )
        return Duplicates(strategy="enabled", internal=self.internal, external=external, summary=summary)
