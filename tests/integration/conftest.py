"""Integration test fixtures.

Applies migrations 0001–0003 against an ephemeral PostgreSQL database
provided by pytest-postgresql before any integration test runs.
"""

from __future__ import annotations

from pathlib import Path

import psycopg
import pytest
from openpyxl import Workbook
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_extensions.sql",
    PROJECT_ROOT / "migrations" / "0002_core_entities.sql",
    PROJECT_ROOT / "migrations" / "0003_import_tables.sql",
]

ROSTER_HEADERS = [
    "ExportSetID", "RowID", "CharterNumber", "ClubName", "ClubState",
    "NFRWContact", "FirstName", "LastName", "Email", "PrimaryPhone",
    "PhoneType", "City", "MembershipType", "MemberExpirationDate",
    "Deceased?", "Exception",
]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (psycopg connection, dsn) with the schema applied.

    Each test gets a fresh schema via function scope so tests are isolated.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            sql = migration.read_text(encoding="utf-8")
            conn.execute(sql)
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Roster workbook helper
# ---------------------------------------------------------------------------

def make_roster_row(**values) -> dict[str, str]:
    row = {h: "" for h in ROSTER_HEADERS}
    row.update({
        "ExportSetID": "EXP-2025-06",
        "CharterNumber": "101",
        "ClubName": "Bangor Republican Women",
        "ClubState": "ME",
        "FirstName": "Jane",
        "LastName": "Doe",
    })
    row.update(values)
    return row


def write_roster(path: Path, rows: list[dict[str, str]]) -> Path:
    wb = Workbook()
    ws = wb.active
    ws.append(ROSTER_HEADERS)
    for row in rows:
        ws.append([row.get(h, "") or None for h in ROSTER_HEADERS])
    wb.save(path)
    return path


@pytest.fixture
def roster_file(tmp_path):
    """Factory writing an .xlsx roster with the given rows into tmp_path."""
    counter = {"n": 0}

    def _make(rows: list[dict[str, str]], name: str | None = None) -> Path:
        counter["n"] += 1
        return write_roster(tmp_path / (name or f"roster_{counter['n']}.xlsx"), rows)

    return _make


@pytest.fixture
def roster_row():
    """Factory for a roster row dict with every header present."""
    return make_roster_row
