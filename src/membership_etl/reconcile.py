"""membership_etl.reconcile

Per-row reconciliation of a roster row against clubs and members.

Processing order per row:
  1.  Extract fields by header variant, then normalize
  2.  Structural checks (no lookups or writes when these fail):
        a.  charter number present   → else Skipped "Missing CharterNumber"
        b.  first and last name      → else Skipped "Missing required firstName/lastName"
  3.  Find-or-create the club by charter number
  4.  Match an existing member (first tier that yields a result wins):
        a.  external contact id, anywhere in the system
        b.  same first + last name in the resolved club, and the same email
            or, failing that, the same phone digits
  5.  No match → insert (Created).  Match → merge incoming over stored;
      write only when a field differs (Updated), otherwise no write
      (Unchanged).

Updates are last-import-wins: a non-empty incoming value replaces the
stored one, an empty incoming value keeps it.  ``deceased`` and the club
reference always take the incoming value.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import psycopg

from membership_etl.fields import HEADER_VARIANTS, extract_row_fields
from membership_etl.normalize import (
    NormalizedRow,
    normalize_email,
    normalize_phone_digits,
    normalize_row_fields,
)
from membership_etl.shared import (
    MEMBER_FIELDS,
    find_member_by_contact_id,
    find_member_candidates,
    insert_member,
    resolve_or_insert_club,
    update_member,
)

log = logging.getLogger(__name__)

CREATED = "Created"
UPDATED = "Updated"
UNCHANGED = "Unchanged"
SKIPPED = "Skipped"

MISSING_CHARTER_NUMBER = "Missing CharterNumber"
MISSING_NAME = "Missing required firstName/lastName"

TIER_CONTACT_ID = "contact_id"
TIER_NAME_CONTACT = "name_contact"

# Fields that always take the incoming value, even when it is empty/False.
_ALWAYS_INCOMING = frozenset({"deceased", "club_id"})


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class RowOutcome:
    """What happened to one roster row.  One audit record is written from it."""

    row_number: int
    result: str = SKIPPED
    row_id: str | None = None
    club_id: str | None = None
    member_id: str | None = None
    exception: str | None = None
    club_created: bool = False
    member_created: bool = False
    match_tier: str | None = None
    changed_fields: dict[str, tuple[Any, Any]] = field(default_factory=dict)

    @property
    def skipped(self) -> bool:
        return self.result == SKIPPED

    def rolled_back(self, exc: BaseException) -> RowOutcome:
        """Skipped outcome for a row whose writes were rolled back.

        References to records created by this row are dropped since those
        records no longer exist.
        """
        return replace(
            self,
            result=SKIPPED,
            exception=str(exc) or type(exc).__name__,
            club_id=None if self.club_created else self.club_id,
            member_id=None if self.member_created else self.member_id,
            club_created=False,
            member_created=False,
            changed_fields={},
        )


@dataclass(frozen=True)
class MemberMatch:
    member: dict[str, Any] | None
    tier: str | None = None


# ---------------------------------------------------------------------------
# Member matching
# ---------------------------------------------------------------------------

def _candidate_phone(candidate: Mapping[str, Any]) -> str | None:
    return candidate.get("phone_normalized") or normalize_phone_digits(candidate.get("phone"))


def select_name_contact_candidate(
    candidates: Sequence[Mapping[str, Any]],
    email: str | None,
    phone_normalized: str | None,
) -> Mapping[str, Any] | None:
    """First candidate, in retrieval order, sharing the email or phone digits.

    Each candidate is checked for an email match, then a phone match, before
    moving on to the next one.
    """
    for cand in candidates:
        if email and normalize_email(cand.get("email")) == email:
            return cand
        if phone_normalized and _candidate_phone(cand) == phone_normalized:
            return cand
    return None


def match_member(
    conn: psycopg.Connection,
    norm: NormalizedRow,
    club_id: str,
) -> MemberMatch:
    if norm.nfrw_contact_id:
        member = find_member_by_contact_id(conn, norm.nfrw_contact_id)
        if member is not None:
            return MemberMatch(member, TIER_CONTACT_ID)

    candidates = find_member_candidates(conn, norm.first_name, norm.last_name, club_id)
    chosen = select_name_contact_candidate(candidates, norm.email, norm.phone_normalized)
    if chosen is not None:
        return MemberMatch(dict(chosen), TIER_NAME_CONTACT)
    return MemberMatch(None)


# ---------------------------------------------------------------------------
# Change detection
# ---------------------------------------------------------------------------

def build_incoming_member(norm: NormalizedRow, club_id: str) -> dict[str, Any]:
    """Member column values carried by the row; None where the row had none."""
    values = {name: getattr(norm, name, None) for name in MEMBER_FIELDS}
    values["club_id"] = club_id
    return values


def merge_member(
    existing: Mapping[str, Any],
    incoming: Mapping[str, Any],
) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for name in MEMBER_FIELDS:
        new = incoming.get(name)
        if name in _ALWAYS_INCOMING or new is not None:
            merged[name] = new
        else:
            merged[name] = existing.get(name)
    return merged


def diff_member(
    existing: Mapping[str, Any],
    merged: Mapping[str, Any],
) -> dict[str, tuple[Any, Any]]:
    """Return {field: (stored, new)} for every tracked field that differs."""
    changes: dict[str, tuple[Any, Any]] = {}
    for name in MEMBER_FIELDS:
        old = existing.get(name)
        new = merged.get(name)
        if old != new:
            changes[name] = (old, new)
    return changes


def upsert_member(
    conn: psycopg.Connection,
    match: MemberMatch,
    incoming: dict[str, Any],
    outcome: RowOutcome,
) -> None:
    if match.member is None:
        outcome.member_id = insert_member(conn, incoming)
        outcome.member_created = True
        outcome.result = CREATED
        return

    existing = match.member
    outcome.member_id = existing["id"]
    merged = merge_member(existing, incoming)
    changes = diff_member(existing, merged)
    if not changes:
        outcome.result = UNCHANGED
        return

    log.debug(
        "Row %s: member %s changed fields %s",
        outcome.row_number, existing["id"], sorted(changes),
    )
    update_member(conn, existing["id"], merged)
    outcome.changed_fields = changes
    outcome.result = UPDATED


# ---------------------------------------------------------------------------
# Per-row processing
# ---------------------------------------------------------------------------

def process_row(
    conn: psycopg.Connection,
    row: Mapping[str, Any],
    outcome: RowOutcome,
    variants: Mapping[str, Sequence[str]] = HEADER_VARIANTS,
) -> RowOutcome:
    """Reconcile one row, recording progress on ``outcome``.  Caller manages savepoint.

    Structural problems come back as a Skipped outcome; anything else that
    goes wrong is raised for the caller to roll back and record.
    """
    norm = normalize_row_fields(extract_row_fields(row, variants))
    outcome.row_id = norm.row_id

    if not norm.charter_number:
        outcome.result = SKIPPED
        outcome.exception = MISSING_CHARTER_NUMBER
        return outcome
    if not norm.first_name or not norm.last_name:
        outcome.result = SKIPPED
        outcome.exception = MISSING_NAME
        return outcome

    club_id, _club_name, created = resolve_or_insert_club(
        conn, norm.charter_number, norm.club_name, norm.club_state,
    )
    outcome.club_id = club_id
    outcome.club_created = created

    match = match_member(conn, norm, club_id)
    outcome.match_tier = match.tier

    upsert_member(conn, match, build_incoming_member(norm, club_id), outcome)
    outcome.exception = norm.source_exception
    return outcome
