"""membership_etl.import_roster

Roster spreadsheet import: job registration and the processing run.

A job is processed strictly in spreadsheet order, one row at a time, since
later rows must see the clubs and members written by earlier ones.  Each row
runs inside its own savepoint and is committed together with its audit
record, so a failure in one row never affects another and a crash leaves
every finished row durable.

Job lifecycle:
  Uploaded   → Processing   when the run starts (committed before any row)
  Processing → Completed    once every row has been iterated, however many
                            were skipped
  Processing → Failed       when an error escapes the row loop (unreadable
                            spreadsheet, orchestration bug); the message is
                            stored in import_job.errors
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import click
import psycopg

from membership_etl.fields import HEADER_VARIANTS, extract_export_set_id
from membership_etl.import_jobs import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    finalize_import_job,
    get_import_job,
    insert_import_job,
    insert_import_row,
    mark_processing,
)
from membership_etl.normalize import normalize_phone_digits
from membership_etl.reconcile import (
    CREATED,
    TIER_CONTACT_ID,
    TIER_NAME_CONTACT,
    UNCHANGED,
    UPDATED,
    RowOutcome,
    process_row,
)
from membership_etl.shared import (
    ImportCounters,
    ImportJobNotFoundError,
    InvalidJobStateError,
    RejectWriter,
    SpreadsheetReadError,
    check_import_permission,
)
from membership_etl.spreadsheet import read_roster_rows

log = logging.getLogger(__name__)

# Spreadsheet line of the first data row (line 1 holds the headers).
FIRST_DATA_LINE = 2


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

@dataclass
class ImportSummary:
    job_id: str
    status: str
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_unchanged: int = 0
    records_skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "records_processed": self.records_processed,
            "records_created": self.records_created,
            "records_updated": self.records_updated,
            "records_unchanged": self.records_unchanged,
            "records_skipped": self.records_skipped,
            "errors": self.errors,
        }


def tally_outcome(counters: ImportCounters, outcome: RowOutcome) -> None:
    """Fold one row outcome into the run counters."""
    counters.rows_processed += 1
    if outcome.club_created:
        counters.clubs_created += 1
    if outcome.match_tier == TIER_CONTACT_ID:
        counters.matched_by_contact_id += 1
    elif outcome.match_tier == TIER_NAME_CONTACT:
        counters.matched_by_name_contact += 1

    if outcome.result == CREATED:
        counters.members_created += 1
    elif outcome.result == UPDATED:
        counters.members_updated += 1
    elif outcome.result == UNCHANGED:
        counters.members_unchanged += 1
    else:
        counters.rows_skipped += 1
        counters.row_errors.append(f"Row {outcome.row_number}: {outcome.exception}")


def _summary_from_counters(
    job_id: str,
    status: str,
    counters: ImportCounters,
    errors: list[str],
) -> ImportSummary:
    return ImportSummary(
        job_id=job_id,
        status=status,
        records_processed=counters.rows_processed,
        records_created=counters.members_created,
        records_updated=counters.members_updated,
        records_unchanged=counters.members_unchanged,
        records_skipped=counters.rows_skipped,
        errors=errors,
    )


# ---------------------------------------------------------------------------
# Upload registration
# ---------------------------------------------------------------------------

def read_export_set_id(path: Path) -> str | None:
    """ExportSetID from the first data row, or None when absent or unreadable."""
    try:
        rows = read_roster_rows(path, max_rows=1)
    except SpreadsheetReadError as exc:
        log.warning("Failed to extract ExportSetID from %s: %s", path.name, exc)
        return None
    if not rows:
        return None
    return extract_export_set_id(rows[0])


def register_import_job(
    conn: psycopg.Connection,
    file_path: Path,
    uploaded_by: str,
    role: str | None,
    club_id: str | None = None,
    original_name: str | None = None,
) -> str:
    """Record an uploaded roster file as a new job in status Uploaded.

    ``club_id`` None registers a system-wide (multi-club) import.  Caller
    manages the transaction.
    """
    check_import_permission(role)
    job_id = insert_import_job(
        conn,
        filename=file_path.name,
        original_name=original_name or file_path.name,
        file_path=str(file_path),
        export_set_id=read_export_set_id(file_path),
        club_id=club_id,
        uploaded_by=uploaded_by,
    )
    log.info("Registered import job %s for %s", job_id, file_path.name)
    return job_id


# ---------------------------------------------------------------------------
# Row loop
# ---------------------------------------------------------------------------

def _process_rows(
    conn: psycopg.Connection,
    job_id: str,
    rows: Sequence[Mapping[str, Any]],
    variants: Mapping[str, Sequence[str]],
    counters: ImportCounters,
    rejects: RejectWriter | None,
    commit_each_row: bool,
) -> None:
    for idx, row in enumerate(rows):
        outcome = RowOutcome(row_number=idx + FIRST_DATA_LINE)
        sp_name = f"row_{idx}"
        conn.execute(f"SAVEPOINT {sp_name}")
        try:
            process_row(conn, row, outcome, variants)
            conn.execute(f"RELEASE SAVEPOINT {sp_name}")
        except Exception as exc:
            conn.execute(f"ROLLBACK TO SAVEPOINT {sp_name}")
            outcome = outcome.rolled_back(exc)
            counters.warnings.append(
                f"row {outcome.row_number} {type(exc).__name__}: {exc}"
            )

        if outcome.skipped:
            log.warning("Row %s skipped: %s", outcome.row_number, outcome.exception)
            if rejects is not None:
                rejects.write(dict(row), outcome.exception or "")

        insert_import_row(conn, job_id, outcome)
        tally_outcome(counters, outcome)
        if commit_each_row:
            conn.commit()


# ---------------------------------------------------------------------------
# Job processing
# ---------------------------------------------------------------------------

def process_import_job(
    conn: psycopg.Connection,
    job_id: str,
    role: str | None,
    *,
    variants: Mapping[str, Sequence[str]] = HEADER_VARIANTS,
    counters: ImportCounters | None = None,
    rejects: RejectWriter | None = None,
    dry_run: bool = False,
    force: bool = False,
) -> ImportSummary:
    """Run the import pipeline for one job and return its final summary.

    Row-level problems never raise: they are recorded as Skipped rows.  Only
    caller errors (permission, unknown job, job already processing) raise,
    before the job is touched.  In dry-run mode every change, including the
    status transitions, is rolled back when the run ends.

    Raises:
        PermissionDeniedError: ``role`` may not process imports.
        ImportJobNotFoundError: no job with ``job_id``.
        InvalidJobStateError: job is already Processing and ``force`` is off.
    """
    check_import_permission(role)
    counters = counters if counters is not None else ImportCounters()

    job = get_import_job(conn, job_id)
    if job is None:
        raise ImportJobNotFoundError(f"import job {job_id} not found")
    if job["status"] == STATUS_PROCESSING and not force:
        raise InvalidJobStateError(
            f"import job {job_id} is already {STATUS_PROCESSING}; "
            "use force to re-run a stuck job"
        )
    job_id = job["id"]

    mark_processing(conn, job_id)
    if not dry_run:
        conn.commit()

    try:
        rows = read_roster_rows(Path(job["file_path"]))
        counters.rows_read = len(rows)
        _process_rows(
            conn, job_id, rows, variants, counters, rejects,
            commit_each_row=not dry_run,
        )
    except Exception as exc:
        conn.rollback()
        log.error("Import job %s failed: %s", job_id, exc)
        summary = _summary_from_counters(job_id, STATUS_FAILED, counters, [str(exc)])
        if dry_run:
            return summary
        finalize_import_job(
            conn, job_id, STATUS_FAILED,
            summary.records_processed, summary.records_created,
            summary.records_updated, summary.records_unchanged,
            summary.records_skipped, summary.errors,
        )
        conn.commit()
        return summary

    summary = _summary_from_counters(job_id, STATUS_COMPLETED, counters, list(counters.row_errors))
    if dry_run:
        conn.rollback()
        return summary

    finalize_import_job(
        conn, job_id, STATUS_COMPLETED,
        summary.records_processed, summary.records_created,
        summary.records_updated, summary.records_unchanged,
        summary.records_skipped, summary.errors,
    )
    conn.commit()
    return summary


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------

def backfill_phone_normalized(conn: psycopg.Connection) -> int:
    """Recompute member.phone_normalized from member.phone.  Returns rows changed."""
    rows = conn.execute("SELECT id, phone, phone_normalized FROM member").fetchall()
    updated = 0
    for member_id, phone, phone_normalized in rows:
        norm = normalize_phone_digits(phone)
        if (phone_normalized or "") != (norm or ""):
            conn.execute(
                "UPDATE member SET phone_normalized = %s, updated_at = now() WHERE id = %s",
                (norm, member_id),
            )
            updated += 1
    return updated


# ---------------------------------------------------------------------------
# CLI run entry points
# ---------------------------------------------------------------------------

def _run_roster_import(
    run_id: str,
    db_dsn: str,
    counters: ImportCounters,
    rejects: RejectWriter,
    job_id: str,
    role: str,
    variants: Mapping[str, Sequence[str]],
    dry_run: bool,
    force: bool,
) -> ImportSummary:
    conn = psycopg.connect(db_dsn, autocommit=False)
    try:
        summary = process_import_job(
            conn, job_id, role,
            variants=variants,
            counters=counters,
            rejects=rejects,
            dry_run=dry_run,
            force=force,
        )
    finally:
        conn.close()
        rejects.close()

    if dry_run:
        click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
    click.echo(
        f"[{run_id}] Job {summary.job_id} {summary.status}: "
        f"{summary.records_processed} rows processed, "
        f"{summary.records_created} created, "
        f"{summary.records_updated} updated, "
        f"{summary.records_unchanged} unchanged, "
        f"{summary.records_skipped} skipped, "
        f"{counters.clubs_created} clubs created"
    )
    for error in summary.errors:
        click.echo(f"[{run_id}]   {error}", err=summary.status == STATUS_FAILED)
    return summary
