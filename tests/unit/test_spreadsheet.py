"""Unit tests for membership_etl.spreadsheet."""

from __future__ import annotations

import zipfile
from datetime import date, datetime

import pytest
from openpyxl import Workbook

from membership_etl.import_roster import read_export_set_id
from membership_etl.shared import SpreadsheetReadError
from membership_etl.spreadsheet import cell_text, read_roster_rows


def _write_xlsx(path, rows):
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    wb.save(path)


# ---------------------------------------------------------------------------
# cell_text
# ---------------------------------------------------------------------------

class TestCellText:
    def test_none(self):
        assert cell_text(None) == ""

    def test_whole_float_drops_fraction(self):
        assert cell_text(4042.0) == "4042"

    def test_fractional_float(self):
        assert cell_text(12.5) == "12.5"

    def test_int(self):
        assert cell_text(7) == "7"

    def test_midnight_datetime_is_a_date(self):
        assert cell_text(datetime(2026, 6, 30)) == "2026-06-30"

    def test_datetime_with_time(self):
        assert cell_text(datetime(2026, 6, 30, 9, 15)) == "2026-06-30 09:15:00"

    def test_date(self):
        assert cell_text(date(1961, 2, 3)) == "1961-02-03"

    def test_bool(self):
        assert cell_text(True) == "TRUE"

    def test_string_is_stripped(self):
        assert cell_text("  Jane ") == "Jane"

    def test_zero_padded_format(self):
        assert cell_text(4401, "00000") == "04401"

    def test_zero_padded_format_on_whole_float(self):
        assert cell_text(4401.0, "00000") == "04401"

    def test_general_format_is_not_padded(self):
        assert cell_text(4401, "General") == "4401"


# ---------------------------------------------------------------------------
# read_roster_rows: workbook
# ---------------------------------------------------------------------------

class TestReadWorkbook:
    def test_rows_in_order_keyed_by_header(self, tmp_path):
        path = tmp_path / "roster.xlsx"
        _write_xlsx(path, [
            ["CharterNumber", "FirstName", "LastName", "MemberExpirationDate"],
            [101, "Jane", "Doe", datetime(2026, 12, 31)],
            [101, "John", "Roe", None],
        ])
        rows = read_roster_rows(path)
        assert rows == [
            {"CharterNumber": "101", "FirstName": "Jane", "LastName": "Doe",
             "MemberExpirationDate": "2026-12-31"},
            {"CharterNumber": "101", "FirstName": "John", "LastName": "Roe",
             "MemberExpirationDate": ""},
        ]

    def test_blank_rows_skipped(self, tmp_path):
        path = tmp_path / "roster.xlsx"
        _write_xlsx(path, [
            ["CharterNumber", "FirstName"],
            ["101", "Jane"],
            [None, None],
            ["102", "John"],
        ])
        rows = read_roster_rows(path)
        assert [r["FirstName"] for r in rows] == ["Jane", "John"]

    def test_max_rows(self, tmp_path):
        path = tmp_path / "roster.xlsx"
        _write_xlsx(path, [
            ["ExportSetID", "FirstName"],
            ["set-1", "Jane"],
            ["set-1", "John"],
        ])
        rows = read_roster_rows(path, max_rows=1)
        assert rows == [{"ExportSetID": "set-1", "FirstName": "Jane"}]

    def test_header_only(self, tmp_path):
        path = tmp_path / "roster.xlsx"
        _write_xlsx(path, [["CharterNumber", "FirstName"]])
        assert read_roster_rows(path) == []

    def test_corrupt_workbook(self, tmp_path):
        path = tmp_path / "roster.xlsx"
        path.write_bytes(b"this is not a zip archive")
        with pytest.raises(SpreadsheetReadError):
            read_roster_rows(path)

    def test_zip_with_garbage_parts(self, tmp_path):
        path = tmp_path / "roster.xlsx"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("[Content_Types].xml", "<not xml")
        with pytest.raises(SpreadsheetReadError):
            read_roster_rows(path)

    def test_export_set_id_of_garbage_zip_is_none(self, tmp_path):
        path = tmp_path / "roster.xlsx"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("[Content_Types].xml", "<not xml")
        assert read_export_set_id(path) is None

    def test_zero_padded_zip_keeps_leading_zero(self, tmp_path):
        path = tmp_path / "roster.xlsx"
        wb = Workbook()
        ws = wb.active
        ws.append(["CharterNumber", "FirstName", "LastName", "Zip"])
        ws.append(["101", "Jane", "Doe", 4401])
        ws["D2"].number_format = "00000"
        wb.save(path)
        assert read_roster_rows(path)[0]["Zip"] == "04401"


# ---------------------------------------------------------------------------
# read_roster_rows: CSV and errors
# ---------------------------------------------------------------------------

class TestReadCsv:
    def test_rows_and_header_trim(self, tmp_path):
        path = tmp_path / "roster.csv"
        path.write_text(
            " CharterNumber ,FirstName,LastName\n"
            "101,Jane,Doe\n"
            ",,\n"
            "102,John,\n",
            encoding="utf-8",
        )
        rows = read_roster_rows(path)
        assert rows == [
            {"CharterNumber": "101", "FirstName": "Jane", "LastName": "Doe"},
            {"CharterNumber": "102", "FirstName": "John", "LastName": ""},
        ]

    def test_bom_is_ignored(self, tmp_path):
        path = tmp_path / "roster.csv"
        path.write_bytes("\ufeffCharterNumber,FirstName\n101,Jane\n".encode("utf-8"))
        assert read_roster_rows(path) == [{"CharterNumber": "101", "FirstName": "Jane"}]


class TestReadErrors:
    def test_missing_file(self, tmp_path):
        with pytest.raises(SpreadsheetReadError, match="file not found"):
            read_roster_rows(tmp_path / "missing.xlsx")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "roster.pdf"
        path.write_bytes(b"%PDF-1.4")
        with pytest.raises(SpreadsheetReadError, match="unsupported file type"):
            read_roster_rows(path)
