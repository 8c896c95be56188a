"""Unit tests for windowed CSV / XLSX reads."""

from datetime import date, datetime

import pytest
from openpyxl import Workbook

from geoimport.exceptions import RowReadError
from geoimport.readers import (
    CSV_SHEET_NAME,
    coerce_value,
    is_spreadsheet,
    iter_batches,
    list_sheets,
    read_batch,
)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@pytest.fixture
def xlsx_file(tmp_path):
    workbook = Workbook()
    first = workbook.active
    first.title = "Events"
    first.append(["id", "title", ""])
    first.append([1, "Fair", "extra"])
    first.append([None, None, None])
    first.append([2, "Market", ""])

    workbook.create_sheet("Empty")

    venues = workbook.create_sheet("Venues")
    venues.append(["name", "opened"])
    venues.append(["Hall", date(2020, 5, 1)])

    path = tmp_path / "events.xlsx"
    workbook.save(path)
    return str(path)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("", None),
        ("   ", None),
        ("42", 42),
        ("-3.5", -3.5),
        ("1e3", 1000.0),
        ("TRUE", True),
        ("false", False),
        ("A1", "A1"),
        (date(2024, 1, 2), datetime(2024, 1, 2)),
        (7, 7),
    ],
)
def test_coerce_value(raw, expected):
    assert coerce_value(raw) == expected


def test_is_spreadsheet():
    assert is_spreadsheet(XLSX_MIME)
    assert is_spreadsheet(None, "report.XLSX")
    assert not is_spreadsheet("text/csv", "report.csv")


# =============================================================================
# CSV
# =============================================================================

class TestCsv:
    def test_list_sheets(self, csv_file):
        sheets = list_sheets(csv_file, "text/csv")
        assert len(sheets) == 1
        assert sheets[0].index == 0
        assert sheets[0].name == CSV_SHEET_NAME
        assert sheets[0].row_count == 5

    def test_read_batch_window(self, csv_file):
        rows = read_batch(csv_file, "text/csv", 0, start_row=1, limit=2)
        assert [r["id"] for r in rows] == ["A2", "A3"]

    def test_blank_cells_become_none(self, csv_file):
        rows = read_batch(csv_file, "text/csv", 0, start_row=4, limit=10)
        assert rows == [{"id": "A5", "title": "Night run", "date": "2024-03-05", "address": None}]

    def test_numeric_text_is_typed(self, tmp_path):
        path = tmp_path / "nums.csv"
        path.write_text("count,ratio,flag\n3,0.5,true\n", encoding="utf-8")
        assert read_batch(str(path), "text/csv", 0, 0, 10) == [{"count": 3, "ratio": 0.5, "flag": True}]

    def test_iter_batches(self, csv_file):
        batches = list(iter_batches(csv_file, "text/csv", 0, batch_size=2))
        assert [(start, len(rows)) for start, rows in batches] == [(0, 2), (2, 2), (4, 1)]

    def test_missing_file(self, tmp_path):
        with pytest.raises(RowReadError):
            read_batch(str(tmp_path / "missing.csv"), "text/csv", 0, 0, 10)


# =============================================================================
# XLSX
# =============================================================================

class TestXlsx:
    def test_list_sheets_skips_empty(self, xlsx_file):
        sheets = list_sheets(xlsx_file, XLSX_MIME)
        assert [(s.index, s.name, s.row_count) for s in sheets] == [(0, "Events", 2), (2, "Venues", 1)]

    def test_rows_use_headers_and_skip_blank_rows(self, xlsx_file):
        rows = read_batch(xlsx_file, XLSX_MIME, 0, 0, 10)
        assert rows == [
            {"id": 1, "title": "Fair", "column_3": "extra"},
            {"id": 2, "title": "Market", "column_3": None},
        ]

    def test_other_sheet(self, xlsx_file):
        rows = read_batch(xlsx_file, XLSX_MIME, 2, 0, 10)
        assert rows[0]["name"] == "Hall"
        assert isinstance(rows[0]["opened"], datetime)

    def test_sheet_out_of_range(self, xlsx_file):
        with pytest.raises(RowReadError):
            read_batch(xlsx_file, XLSX_MIME, 9, 0, 10)

    def test_legacy_xls_rejected(self, tmp_path):
        path = tmp_path / "old.xls"
        path.write_bytes(b"\xd0\xcf\x11\xe0")
        with pytest.raises(RowReadError, match="Legacy"):
            list_sheets(str(path), "application/vnd.ms-excel")
