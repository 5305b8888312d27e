"""membership_etl.spreadsheet

Reads an uploaded roster file into an ordered list of row dicts.

Only the first worksheet of a workbook is read.  The first row holds the
headers; every following non-blank row becomes a dict of header → cell
text, with empty cells as "".  CSV files are accepted too, read the same
way the other CSV importers read them.
"""

from __future__ import annotations

import csv
import re
from datetime import date, datetime, time
from pathlib import Path
from typing import Any

from openpyxl import load_workbook

from membership_etl.shared import SpreadsheetReadError, normalize_headers

WORKBOOK_SUFFIXES = frozenset({".xlsx", ".xlsm"})
CSV_SUFFIXES = frozenset({".csv"})


# Number formats made only of zeros ("00000") pad integers to that width.
_ZERO_PAD_FORMAT = re.compile(r"^0+$")


def cell_text(value: Any, number_format: str | None = None) -> str:
    """Render a worksheet cell value as the text a user would see."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and number_format and _ZERO_PAD_FORMAT.match(number_format):
        return str(value).zfill(len(number_format))
    return str(value).strip()


def _read_workbook(path: Path, max_rows: int | None) -> list[dict[str, str]]:
    try:
        workbook = load_workbook(path, read_only=True, data_only=True)
    except Exception as exc:
        raise SpreadsheetReadError(f"could not read workbook {path.name}: {exc}") from exc

    try:
        if not workbook.worksheets:
            raise SpreadsheetReadError(f"{path.name}: workbook has no worksheets")
        sheet = workbook.worksheets[0]
        rows: list[dict[str, str]] = []
        headers: list[str] = []
        for idx, cells in enumerate(sheet.iter_rows()):
            texts = [cell_text(c.value, getattr(c, "number_format", None)) for c in cells]
            if idx == 0:
                headers = texts
                continue
            if not any(texts):
                continue
            row = {
                header: (texts[i] if i < len(texts) else "")
                for i, header in enumerate(headers)
                if header
            }
            rows.append(row)
            if max_rows is not None and len(rows) >= max_rows:
                break
        return rows
    except SpreadsheetReadError:
        raise
    except Exception as exc:
        raise SpreadsheetReadError(f"could not read workbook {path.name}: {exc}") from exc
    finally:
        workbook.close()


def _read_csv(path: Path, max_rows: int | None) -> list[dict[str, str]]:
    rows: list[dict[str, str]] = []
    try:
        with path.open(encoding="utf-8-sig", newline="") as fh:
            reader = csv.DictReader(fh)
            for raw_row in reader:
                row = {k: (v or "") for k, v in normalize_headers(raw_row).items()}
                if not any(str(v).strip() for v in row.values()):
                    continue
                rows.append(row)
                if max_rows is not None and len(rows) >= max_rows:
                    break
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        raise SpreadsheetReadError(f"could not read CSV {path.name}: {exc}") from exc
    return rows


def read_roster_rows(path: Path, max_rows: int | None = None) -> list[dict[str, str]]:
    """Return the roster rows of ``path`` in sheet order.

    Raises:
        SpreadsheetReadError: missing file, unsupported type, or unparseable content.
    """
    if not path.exists():
        raise SpreadsheetReadError(f"file not found: {path}")
    suffix = path.suffix.lower()
    if suffix in WORKBOOK_SUFFIXES:
        return _read_workbook(path, max_rows)
    if suffix in CSV_SUFFIXES:
        return _read_csv(path, max_rows)
    raise SpreadsheetReadError(f"unsupported file type {suffix!r} for {path.name}")
