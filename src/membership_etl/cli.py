"""membership_etl.cli

Unified CLI entrypoint for membership roster imports.

Modes (--mode):
  upload                     register a roster spreadsheet as an import job
  process                    run the import pipeline for an existing job
  import                     upload then process in one run (default)
  list_jobs                  list import jobs, newest first
  job_rows                   print (or export) the per-row audit of a job
  backfill_phone_normalized  recompute member.phone_normalized from member.phone

Usage (import):
    python -m membership_etl.cli \\
        --mode import \\
        --db-dsn "$MEMBERSHIP_DB_DSN" \\
        --file-path "uploads/roster_export_2025.xlsx" \\
        --uploaded-by "jane.doe" \\
        --role "System Admin"

Usage (process a stuck job again):
    python -m membership_etl.cli \\
        --mode process \\
        --job-id 6c1f0b3e-... \\
        --role "Club Admin" \\
        --force
"""

from __future__ import annotations

import csv
import json
import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path

import click
import psycopg

from membership_etl.fields import (
    HEADER_VARIANTS,
    HeaderVariantsValidationError,
    load_header_variants,
)
from membership_etl.import_jobs import (
    STATUS_FAILED,
    fetch_import_rows,
    get_import_job,
    list_import_jobs,
)
from membership_etl.import_roster import (
    _run_roster_import,
    backfill_phone_normalized,
    register_import_job,
)
from membership_etl.shared import (
    ImportCounters,
    RejectWriter,
    RosterImportError,
    check_import_permission,
    write_run_report,
)

JOB_ROW_COLUMNS = (
    "row_number",
    "row_id",
    "club_name",
    "charter_number",
    "member_name",
    "member_email",
    "row_import_result",
    "exception",
)


@click.command()
@click.option(
    "--mode",
    default="import",
    type=click.Choice([
        "upload",
        "process",
        "import",
        "list_jobs",
        "job_rows",
        "backfill_phone_normalized",
    ]),
    show_default=True,
    help="Operation to run",
)
@click.option("--db-dsn", required=True, envvar="MEMBERSHIP_DB_DSN", help="PostgreSQL DSN")
@click.option("--file-path", default=None, type=click.Path(), help="[upload|import] Roster spreadsheet (.xlsx, .xlsm or .csv)")
@click.option("--original-name", default=None, help="[upload|import] Name the file was uploaded under")
@click.option("--club-id", default=None, help="[upload|import|list_jobs] Club the import belongs to; omit for a system-wide import")
@click.option("--uploaded-by", default=None, help="[upload|import] User registering the upload")
@click.option("--role", default=None, help="[upload|process|import] Role of the acting user")
@click.option("--job-id", default=None, help="[process|job_rows] Import job id")
@click.option("--header-map", default=None, type=click.Path(), help="[process|import] YAML file extending the header variant table")
@click.option("--force", is_flag=True, default=False, help="[process] Re-run a job stuck in Processing")
@click.option("--out-path", default=None, type=click.Path(), help="[job_rows] Write the audit rows to this CSV instead of stdout")
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/roster_import_rejects.csv",
    show_default=True,
    type=click.Path(),
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="WARNING",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
)
def main(
    mode: str,
    db_dsn: str,
    file_path: str | None,
    original_name: str | None,
    club_id: str | None,
    uploaded_by: str | None,
    role: str | None,
    job_id: str | None,
    header_map: str | None,
    force: bool,
    out_path: str | None,
    dry_run: bool,
    rejects_path: str,
    run_id: str | None,
    log_level: str,
) -> None:
    """Membership roster import CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    if club_id is not None and mode in ("list_jobs", "upload", "import"):
        _validate_club_id(run_id, db_dsn, club_id)

    if mode == "list_jobs":
        _list_jobs(db_dsn, club_id)
        return
    if mode == "job_rows":
        _validate_required_flags(mode, {"--job-id": job_id}, run_id)
        _job_rows(run_id, db_dsn, job_id, out_path)  # type: ignore[arg-type]
        return
    if mode == "backfill_phone_normalized":
        _backfill_phone_normalized(run_id, db_dsn, dry_run)
        return

    variants = HEADER_VARIANTS
    if header_map:
        try:
            variants = load_header_variants(Path(header_map))
        except (HeaderVariantsValidationError, OSError) as exc:
            click.echo(f"[{run_id}] FATAL: bad --header-map: {exc}", err=True)
            sys.exit(1)

    if mode in ("upload", "import"):
        _validate_required_flags(
            mode, {"--file-path": file_path, "--uploaded-by": uploaded_by}, run_id
        )
        job_id = _upload(
            run_id, db_dsn, Path(file_path), original_name,  # type: ignore[arg-type]
            club_id, uploaded_by, role,  # type: ignore[arg-type]
        )
        if mode == "upload":
            return
    else:
        _validate_required_flags(mode, {"--job-id": job_id}, run_id)

    counters = ImportCounters()
    rejects = RejectWriter(Path(rejects_path))
    try:
        summary = _run_roster_import(
            run_id, db_dsn, counters, rejects,
            job_id=job_id,  # type: ignore[arg-type]
            role=role,  # type: ignore[arg-type]
            variants=variants,
            dry_run=dry_run,
            force=force,
        )
    except RosterImportError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)

    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {"file_path": file_path, "job_id": job_id, "header_map": header_map},
        counters,
        summary=summary.to_dict(),
    )
    click.echo(f"[{run_id}] Run report: {report_path}")
    click.echo(json.dumps(counters.to_dict(), indent=2, default=str))

    if summary.status == STATUS_FAILED:
        click.echo(f"[{run_id}] Import job {summary.job_id} failed; exiting non-zero", err=True)
        sys.exit(1)
    click.echo(f"[{run_id}] Done.")


# ---------------------------------------------------------------------------
# Mode helpers
# ---------------------------------------------------------------------------

def _upload(
    run_id: str,
    db_dsn: str,
    file_path: Path,
    original_name: str | None,
    club_id: str | None,
    uploaded_by: str,
    role: str | None,
) -> str:
    try:
        check_import_permission(role)
    except RosterImportError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)
    if not file_path.exists():
        click.echo(f"[{run_id}] FATAL: file not found: {file_path}", err=True)
        sys.exit(1)

    conn = psycopg.connect(db_dsn, autocommit=False)
    try:
        job_id = register_import_job(
            conn, file_path,
            uploaded_by=uploaded_by,
            role=role,
            club_id=club_id,
            original_name=original_name,
        )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

    click.echo(f"[{run_id}] Registered import job {job_id} ({file_path.name})")
    return job_id


def _validate_club_id(run_id: str, db_dsn: str, club_id: str) -> None:
    try:
        club_uuid = uuid.UUID(club_id)
    except ValueError:
        click.echo(f"[{run_id}] FATAL: --club-id {club_id!r} is not a valid club id", err=True)
        sys.exit(1)
    with psycopg.connect(db_dsn) as conn:
        found = conn.execute("SELECT 1 FROM club WHERE id = %s", (club_uuid,)).fetchone()
    if found is None:
        click.echo(f"[{run_id}] FATAL: --club-id {club_id} not found", err=True)
        sys.exit(1)


def _list_jobs(db_dsn: str, club_id: str | None) -> None:
    with psycopg.connect(db_dsn) as conn:
        jobs = list_import_jobs(conn, club_id=club_id)
    if not jobs:
        click.echo("No import jobs.")
        return
    for job in jobs:
        click.echo(
            f"{job['id']}  {job['status']:<10}  {job['original_name']}  "
            f"club={job['club_name'] or '-'}  "
            f"processed={job['records_processed']} created={job['records_created']} "
            f"updated={job['records_updated']} unchanged={job['records_unchanged']} "
            f"skipped={job['records_skipped']}"
        )


def _job_rows(run_id: str, db_dsn: str, job_id: str, out_path: str | None) -> None:
    with psycopg.connect(db_dsn) as conn:
        job = get_import_job(conn, job_id)
        if job is None:
            click.echo(f"[{run_id}] FATAL: import job {job_id} not found", err=True)
            sys.exit(1)
        rows = fetch_import_rows(conn, job["id"])

    if out_path:
        path = Path(out_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", newline="", encoding="utf-8") as fh:
            writer = csv.DictWriter(fh, fieldnames=list(JOB_ROW_COLUMNS))
            writer.writeheader()
            for row in rows:
                writer.writerow({k: row.get(k) for k in JOB_ROW_COLUMNS})
        click.echo(f"[{run_id}] Wrote {len(rows)} audit rows to {path}")
        return

    for row in rows:
        click.echo(
            f"Row {row['row_number']}: {row['row_import_result']}  "
            f"{row['member_name'] or '-'}  "
            f"{row['club_name'] or '-'} ({row['charter_number'] or '-'})"
            + (f"  {row['exception']}" if row["exception"] else "")
        )


def _backfill_phone_normalized(run_id: str, db_dsn: str, dry_run: bool) -> None:
    conn = psycopg.connect(db_dsn, autocommit=False)
    try:
        updated = backfill_phone_normalized(conn)
        if dry_run:
            conn.rollback()
            click.echo(f"[{run_id}] [dry-run] {updated} members would change; rolled back.")
        else:
            conn.commit()
            click.echo(f"[{run_id}] Updated phone_normalized on {updated} members.")
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Flag validation
# ---------------------------------------------------------------------------

def _validate_required_flags(mode: str, required: dict[str, str | None], run_id: str) -> None:
    missing = [k for k, v in required.items() if v is None]
    if missing:
        click.echo(
            f"[{run_id}] FATAL: {mode} mode requires: {', '.join(missing)}",
            err=True,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
