"""membership_etl.import_jobs

Persistence for import jobs and their per-row audit records.

An import job moves Uploaded → Processing → Completed | Failed and carries
the rollup counters of its last run.  import_row is append-only: exactly one
record per processed spreadsheet row, never updated afterwards.
"""

from __future__ import annotations

import uuid
from typing import Any

import psycopg
from psycopg.rows import dict_row

from membership_etl.reconcile import RowOutcome

STATUS_UPLOADED = "Uploaded"
STATUS_PROCESSING = "Processing"
STATUS_COMPLETED = "Completed"
STATUS_FAILED = "Failed"

_JOB_COLUMNS = """
    j.id, j.filename, j.original_name, j.file_path, j.export_set_id,
    j.club_id, c.name AS club_name, j.uploaded_by, j.status,
    j.records_processed, j.records_created, j.records_updated,
    j.records_unchanged, j.records_skipped, j.errors, j.processing_notes,
    j.started_at, j.finished_at, j.created_at, j.updated_at
"""


def _as_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _job_from_row(row: dict[str, Any]) -> dict[str, Any]:
    row["id"] = str(row["id"])
    row["club_id"] = str(row["club_id"]) if row["club_id"] else None
    row["errors"] = list(row["errors"] or [])
    return row


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

def insert_import_job(
    conn: psycopg.Connection,
    filename: str,
    original_name: str,
    file_path: str,
    export_set_id: str | None,
    club_id: str | None,
    uploaded_by: str,
) -> str:
    row = conn.execute(
        """
        INSERT INTO import_job
          (filename, original_name, file_path, export_set_id, club_id,
           uploaded_by, status)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (filename, original_name, file_path, export_set_id, club_id,
         uploaded_by, STATUS_UPLOADED),
    ).fetchone()
    return str(row[0])


def get_import_job(conn: psycopg.Connection, job_id: str) -> dict[str, Any] | None:
    job_uuid = _as_uuid(job_id)
    if job_uuid is None:
        return None
    with conn.cursor(row_factory=dict_row) as cur:
        row = cur.execute(
            f"SELECT {_JOB_COLUMNS} FROM import_job j "
            "LEFT JOIN club c ON c.id = j.club_id WHERE j.id = %s",
            (job_uuid,),
        ).fetchone()
    return _job_from_row(row) if row else None


def list_import_jobs(
    conn: psycopg.Connection,
    club_id: str | None = None,
) -> list[dict[str, Any]]:
    """All jobs, newest first, optionally limited to one club."""
    with conn.cursor(row_factory=dict_row) as cur:
        if club_id:
            rows = cur.execute(
                f"SELECT {_JOB_COLUMNS} FROM import_job j "
                "LEFT JOIN club c ON c.id = j.club_id "
                "WHERE j.club_id = %s ORDER BY j.created_at DESC, j.id",
                (club_id,),
            ).fetchall()
        else:
            rows = cur.execute(
                f"SELECT {_JOB_COLUMNS} FROM import_job j "
                "LEFT JOIN club c ON c.id = j.club_id "
                "ORDER BY j.created_at DESC, j.id",
            ).fetchall()
    return [_job_from_row(r) for r in rows]


def delete_import_job(conn: psycopg.Connection, job_id: str) -> bool:
    """Delete a job and its audit rows.  Returns False when no such job."""
    job_uuid = _as_uuid(job_id)
    if job_uuid is None:
        return False
    deleted = conn.execute(
        "DELETE FROM import_job WHERE id = %s RETURNING id", (job_uuid,)
    ).fetchone()
    return deleted is not None


def mark_processing(conn: psycopg.Connection, job_id: str) -> None:
    conn.execute(
        """
        UPDATE import_job
        SET status = %s, started_at = now(), finished_at = NULL, updated_at = now()
        WHERE id = %s
        """,
        (STATUS_PROCESSING, job_id),
    )


def finalize_import_job(
    conn: psycopg.Connection,
    job_id: str,
    status: str,
    records_processed: int,
    records_created: int,
    records_updated: int,
    records_unchanged: int,
    records_skipped: int,
    errors: list[str],
) -> None:
    if status not in (STATUS_COMPLETED, STATUS_FAILED):
        raise ValueError(f"cannot finalize import job with status {status!r}")
    conn.execute(
        """
        UPDATE import_job
        SET status = %s,
            records_processed = %s,
            records_created = %s,
            records_updated = %s,
            records_unchanged = %s,
            records_skipped = %s,
            errors = %s,
            finished_at = now(),
            updated_at = now()
        WHERE id = %s
        """,
        (status, records_processed, records_created, records_updated,
         records_unchanged, records_skipped, errors, job_id),
    )


# ---------------------------------------------------------------------------
# Row audit
# ---------------------------------------------------------------------------

def insert_import_row(
    conn: psycopg.Connection,
    job_id: str,
    outcome: RowOutcome,
) -> None:
    conn.execute(
        """
        INSERT INTO import_row
          (import_job_id, row_number, row_id, club_id, member_id,
           row_import_result, exception)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        """,
        (job_id, outcome.row_number, outcome.row_id, outcome.club_id,
         outcome.member_id, outcome.result, outcome.exception),
    )


def fetch_import_rows(conn: psycopg.Connection, job_id: str) -> list[dict[str, Any]]:
    """Audit records of one job in processing order, with display names resolved."""
    job_uuid = _as_uuid(job_id)
    if job_uuid is None:
        return []
    with conn.cursor(row_factory=dict_row) as cur:
        rows = cur.execute(
            """
            SELECT r.row_number,
                   r.row_id,
                   c.name AS club_name,
                   c.charter_number,
                   NULLIF(concat_ws(' ', m.first_name, m.last_name), '') AS member_name,
                   m.email AS member_email,
                   r.row_import_result,
                   r.exception
            FROM import_row r
            LEFT JOIN club c ON c.id = r.club_id
            LEFT JOIN member m ON m.id = r.member_id
            WHERE r.import_job_id = %s
            ORDER BY r.id ASC
            """,
            (job_uuid,),
        ).fetchall()
    return rows
