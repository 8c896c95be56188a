# =============================================================================
# Batch File Reader
# =============================================================================
# Bounded-window reads from CSV / XLSX sources. Every streaming stage reads
# rows [start_row, start_row + limit) of one sheet without loading the whole
# file. CSV is streamed with pyarrow's incremental reader; XLSX with
# openpyxl's read-only worksheets.
# =============================================================================

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from itertools import islice
from pathlib import Path
from typing import Any, Iterator, Optional

import pyarrow as pa
import pyarrow.csv as csv
from openpyxl import load_workbook

from geoimport.exceptions import RowReadError

__all__ = [
    "CSV_SHEET_NAME",
    "SheetInfo",
    "is_spreadsheet",
    "coerce_value",
    "list_sheets",
    "read_batch",
    "iter_batches",
]

logger = logging.getLogger(__name__)

CSV_SHEET_NAME = "CSV Data"
CSV_BLOCK_SIZE = 1 << 20

_INT = re.compile(r"^-?\d+$")
_FLOAT = re.compile(r"^-?(\d+\.\d*|\.\d+|\d+)([eE][-+]?\d+)?$")
_SPREADSHEET_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
}


@dataclass
class SheetInfo:
    index: int
    name: str
    row_count: int


def is_spreadsheet(mime_type: Optional[str], filename: str = "") -> bool:
    if mime_type in _SPREADSHEET_TYPES:
        return True
    return Path(filename).suffix.lower() in (".xlsx", ".xls")


def coerce_value(value: Any) -> Any:
    """Normalize a raw cell: blanks become None, numeric and boolean text is typed."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if text == "":
            return None
        if _INT.match(text):
            return int(text)
        if _FLOAT.match(text):
            return float(text)
        if text.lower() == "true":
            return True
        if text.lower() == "false":
            return False
        return value
    if isinstance(value, time):
        return value.isoformat()
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    return value


# ------------------------------------------------------------------
# CSV
# ------------------------------------------------------------------

def _open_csv(path: str) -> csv.CSVStreamingReader:
    try:
        header_reader = csv.open_csv(path, read_options=csv.ReadOptions(block_size=CSV_BLOCK_SIZE))
        names = header_reader.schema.names
        header_reader.close()
        return csv.open_csv(
            path,
            read_options=csv.ReadOptions(block_size=CSV_BLOCK_SIZE),
            parse_options=csv.ParseOptions(delimiter=","),
            convert_options=csv.ConvertOptions(
                column_types={name: pa.string() for name in names},
                strings_can_be_null=True,
                null_values=[""],
            ),
        )
    except (pa.ArrowInvalid, OSError) as e:
        raise RowReadError(f"Failed to open CSV '{path}': {e}") from e


def _iter_csv_rows(path: str) -> Iterator[dict[str, Any]]:
    reader = _open_csv(path)
    try:
        for record_batch in reader:
            for row in record_batch.to_pylist():
                yield {key: coerce_value(value) for key, value in row.items()}
    except pa.ArrowInvalid as e:
        raise RowReadError(f"Failed to parse CSV '{path}': {e}") from e
    finally:
        reader.close()


# ------------------------------------------------------------------
# XLSX
# ------------------------------------------------------------------

def _iter_sheet_rows(worksheet) -> Iterator[dict[str, Any]]:
    rows = worksheet.iter_rows(values_only=True)
    header = next(rows, None)
    if header is None:
        return
    names = [
        str(h).strip() if h is not None and str(h).strip() else f"column_{i + 1}"
        for i, h in enumerate(header)
    ]
    for values in rows:
        if values is None or all(v is None or (isinstance(v, str) and not v.strip()) for v in values):
            continue
        yield {name: coerce_value(value) for name, value in zip(names, values)}


def _load_workbook(path: str):
    if Path(path).suffix.lower() == ".xls":
        raise RowReadError(f"Legacy .xls workbooks are not supported: '{path}'")
    try:
        return load_workbook(path, read_only=True, data_only=True)
    except Exception as e:
        raise RowReadError(f"Failed to open workbook '{path}': {e}") from e


def _iter_xlsx_rows(path: str, sheet_index: int) -> Iterator[dict[str, Any]]:
    workbook = _load_workbook(path)
    try:
        if sheet_index >= len(workbook.worksheets):
            raise RowReadError(f"Sheet index {sheet_index} out of range for '{path}'")
        yield from _iter_sheet_rows(workbook.worksheets[sheet_index])
    finally:
        workbook.close()


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------

def _iter_rows(path: str, mime_type: Optional[str], sheet_index: int) -> Iterator[dict[str, Any]]:
    if is_spreadsheet(mime_type, path):
        return _iter_xlsx_rows(path, sheet_index)
    return _iter_csv_rows(path)


def list_sheets(path: str, mime_type: Optional[str] = None) -> list[SheetInfo]:
    """
    List the sheets that contain data rows.

    CSV files yield a single sheet named "CSV Data". Empty worksheets are
    omitted.
    """
    if not is_spreadsheet(mime_type, path):
        count = sum(1 for _ in _iter_csv_rows(path))
        return [SheetInfo(index=0, name=CSV_SHEET_NAME, row_count=count)]

    workbook = _load_workbook(path)
    try:
        sheets = []
        for index, worksheet in enumerate(workbook.worksheets):
            count = sum(1 for _ in _iter_sheet_rows(worksheet))
            if count > 0:
                sheets.append(SheetInfo(index=index, name=worksheet.title, row_count=count))
        return sheets
    finally:
        workbook.close()


def read_batch(
    path: str,
    mime_type: Optional[str],
    sheet_index: int,
    start_row: int,
    limit: int,
) -> list[dict[str, Any]]:
    """Read rows [start_row, start_row + limit) of one sheet."""
    rows = list(islice(_iter_rows(path, mime_type, sheet_index), start_row, start_row + limit))
    logger.debug(f"Read {len(rows)} rows from '{path}' sheet {sheet_index} at offset {start_row}")
    return rows


def iter_batches(
    path: str,
    mime_type: Optional[str],
    sheet_index: int,
    batch_size: int,
) -> Iterator[tuple[int, list[dict[str, Any]]]]:
    """Yield (start_row, rows) windows over a whole sheet in one pass."""
    iterator = _iter_rows(path, mime_type, sheet_index)
    start = 0
    while True:
        rows = list(islice(iterator, batch_size))
        if not rows:
            return
        yield start, rows
        start += len(rows)
