"""membership_etl.shared

Shared helpers for the roster import pipeline: exceptions, run counters,
the rejects CSV writer, run reports, and the club/member DB helpers used by
the reconciliation step.  Callers manage transactions.
"""

from __future__ import annotations

import csv
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import psycopg
from psycopg.rows import dict_row

from membership_etl.normalize import synthesize_club_name

log = logging.getLogger(__name__)

ALLOWED_IMPORT_ROLES = frozenset({"System Admin", "Club Admin", "System", "Club"})

# Member columns written by the import, in the order used for INSERT/UPDATE.
MEMBER_FIELDS: tuple[str, ...] = (
    "nfrw_contact_id",
    "prefix",
    "first_name",
    "last_name",
    "middle_name",
    "badge_nickname",
    "suffix",
    "street_address",
    "address2",
    "city",
    "state",
    "zip",
    "phone",
    "phone_normalized",
    "phone_type",
    "membership_type",
    "associate_primary_member",
    "gender",
    "occupation",
    "employer",
    "deceased",
    "email",
    "membership_expiration",
    "date_of_birth",
    "club_id",
)

_MEMBER_SELECT = "SELECT id, " + ", ".join(MEMBER_FIELDS) + ", created_at FROM member"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class RosterImportError(Exception):
    """Base class for roster import errors raised to callers."""


class PermissionDeniedError(RosterImportError):
    """Raised when the caller's role may not upload or process imports."""


class ImportJobNotFoundError(RosterImportError):
    """Raised when an import job id does not exist."""


class InvalidJobStateError(RosterImportError):
    """Raised when a job cannot move to the requested status."""


class SpreadsheetReadError(RosterImportError):
    """Raised when an uploaded spreadsheet cannot be opened or parsed."""


def check_import_permission(role: str | None) -> None:
    if (role or "") not in ALLOWED_IMPORT_ROLES:
        raise PermissionDeniedError(
            f"role {role!r} may not import members; "
            f"allowed: {sorted(ALLOWED_IMPORT_ROLES)}"
        )


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for skipped rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: dict[str, Any], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# ImportCounters
# ---------------------------------------------------------------------------

@dataclass
class ImportCounters:
    rows_read: int = 0
    rows_processed: int = 0
    members_created: int = 0
    members_updated: int = 0
    members_unchanged: int = 0
    rows_skipped: int = 0
    clubs_created: int = 0
    matched_by_contact_id: int = 0
    matched_by_name_contact: int = 0
    row_errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows_read": self.rows_read,
            "rows_processed": self.rows_processed,
            "members_created": self.members_created,
            "members_updated": self.members_updated,
            "members_unchanged": self.members_unchanged,
            "rows_skipped": self.rows_skipped,
            "clubs_created": self.clubs_created,
            "matched_by_contact_id": self.matched_by_contact_id,
            "matched_by_name_contact": self.matched_by_name_contact,
            "row_errors": self.row_errors,
            "warnings": self.warnings,
        }


# ---------------------------------------------------------------------------
# Header normalization
# ---------------------------------------------------------------------------

def normalize_headers(raw: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict with header keys whitespace-stripped."""
    return {k.strip(): v for k, v in raw.items() if k is not None}


# ---------------------------------------------------------------------------
# Shared DB helpers: club
# ---------------------------------------------------------------------------

def resolve_or_insert_club(
    conn: psycopg.Connection,
    charter_number: str,
    club_name: str | None,
    club_state: str | None,
) -> tuple[str, str, bool]:
    """Find a club by exact charter number, creating it when absent.

    Existing clubs are returned untouched.  Returns (club_id, name, created).
    """
    inserted = conn.execute(
        """
        INSERT INTO club (name, charter_number, state, location, status)
        VALUES (%s, %s, %s, %s, 'Active')
        ON CONFLICT (charter_number) DO NOTHING
        RETURNING id, name
        """,
        (
            club_name or synthesize_club_name(charter_number),
            charter_number,
            club_state,
            club_state,
        ),
    ).fetchone()
    if inserted:
        log.info("Created new club: %s (%s)", inserted[1], charter_number)
        return str(inserted[0]), inserted[1], True

    row = conn.execute(
        "SELECT id, name FROM club WHERE charter_number = %s",
        (charter_number,),
    ).fetchone()
    return str(row[0]), row[1], False


# ---------------------------------------------------------------------------
# Shared DB helpers: member
# ---------------------------------------------------------------------------

def _member_from_row(row: dict[str, Any]) -> dict[str, Any]:
    row["id"] = str(row["id"])
    row["club_id"] = str(row["club_id"])
    return row


def find_member_by_contact_id(
    conn: psycopg.Connection,
    nfrw_contact_id: str,
) -> dict[str, Any] | None:
    with conn.cursor(row_factory=dict_row) as cur:
        row = cur.execute(
            _MEMBER_SELECT
            + " WHERE nfrw_contact_id = %s ORDER BY created_at ASC, id ASC LIMIT 1",
            (nfrw_contact_id,),
        ).fetchone()
    return _member_from_row(row) if row else None


def find_member_candidates(
    conn: psycopg.Connection,
    first_name: str,
    last_name: str,
    club_id: str,
) -> list[dict[str, Any]]:
    """Members with the exact same first/last name in one club, oldest first."""
    with conn.cursor(row_factory=dict_row) as cur:
        rows = cur.execute(
            _MEMBER_SELECT
            + """
            WHERE first_name = %s AND last_name = %s AND club_id = %s
            ORDER BY created_at ASC, id ASC
            """,
            (first_name, last_name, club_id),
        ).fetchall()
    return [_member_from_row(r) for r in rows]


def insert_member(conn: psycopg.Connection, values: dict[str, Any]) -> str:
    columns = [name for name in MEMBER_FIELDS if name in values]
    placeholders = ", ".join(["%s"] * len(columns))
    row = conn.execute(
        f"INSERT INTO member ({', '.join(columns)}) VALUES ({placeholders}) RETURNING id",
        [values[name] for name in columns],
    ).fetchone()
    return str(row[0])


def update_member(
    conn: psycopg.Connection,
    member_id: str,
    values: dict[str, Any],
) -> None:
    columns = [name for name in MEMBER_FIELDS if name in values]
    assignments = ", ".join(f"{name} = %s" for name in columns)
    conn.execute(
        f"UPDATE member SET {assignments}, updated_at = now() WHERE id = %s",
        [values[name] for name in columns] + [member_id],
    )


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str],
    counters: ImportCounters,
    summary: dict[str, Any] | None = None,
    reports_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    if summary is not None:
        report["summary"] = summary
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
