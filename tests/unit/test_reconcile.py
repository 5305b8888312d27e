"""Unit tests for membership_etl.reconcile (no database)."""

from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock

import pytest

from membership_etl.fields import RawRowFields
from membership_etl.normalize import normalize_row_fields
from membership_etl.reconcile import (
    CREATED,
    MISSING_CHARTER_NUMBER,
    MISSING_NAME,
    SKIPPED,
    RowOutcome,
    build_incoming_member,
    diff_member,
    merge_member,
    process_row,
    select_name_contact_candidate,
)
from membership_etl.shared import MEMBER_FIELDS


def _existing(**overrides):
    member = {name: None for name in MEMBER_FIELDS}
    member.update({
        "id": "m-1",
        "first_name": "Jane",
        "last_name": "Doe",
        "email": "jane@example.com",
        "phone": "207-555-0101",
        "phone_normalized": "2075550101",
        "city": "Bangor",
        "membership_type": "Full",
        "deceased": False,
        "club_id": "c-1",
    })
    member.update(overrides)
    return member


# ---------------------------------------------------------------------------
# select_name_contact_candidate
# ---------------------------------------------------------------------------

class TestSelectNameContactCandidate:
    def test_email_match(self):
        cands = [_existing(id="a", email="other@example.com"), _existing(id="b")]
        chosen = select_name_contact_candidate(cands, "jane@example.com", None)
        assert chosen["id"] == "b"

    def test_stored_email_compared_case_insensitively(self):
        cands = [_existing(email="Jane@Example.COM")]
        assert select_name_contact_candidate(cands, "jane@example.com", None) is not None

    def test_phone_match_when_email_differs(self):
        cands = [_existing(email="old@example.com")]
        chosen = select_name_contact_candidate(cands, "new@example.com", "2075550101")
        assert chosen["id"] == "m-1"

    def test_phone_falls_back_to_raw_phone(self):
        cands = [_existing(phone_normalized=None, phone="(207) 555-0101")]
        assert select_name_contact_candidate(cands, None, "2075550101") is not None

    def test_first_candidate_in_order_wins(self):
        cands = [
            _existing(id="old", email=None, phone_normalized="2075550101"),
            _existing(id="new", email="jane@example.com"),
        ]
        chosen = select_name_contact_candidate(cands, "jane@example.com", "2075550101")
        assert chosen["id"] == "old"

    def test_no_contact_no_match(self):
        assert select_name_contact_candidate([_existing()], None, None) is None

    def test_same_name_different_contact(self):
        cands = [_existing()]
        assert select_name_contact_candidate(cands, "x@example.com", "9999999999") is None


# ---------------------------------------------------------------------------
# build_incoming_member / merge_member / diff_member
# ---------------------------------------------------------------------------

class TestBuildIncomingMember:
    def test_carries_row_values_and_club(self):
        norm = normalize_row_fields(RawRowFields(
            charter_number="101", first_name="Jane", last_name="Doe",
            email="JANE@example.com", membership_expiration="2026-12-31",
        ))
        incoming = build_incoming_member(norm, "c-9")
        assert set(incoming) == set(MEMBER_FIELDS)
        assert incoming["club_id"] == "c-9"
        assert incoming["email"] == "jane@example.com"
        assert incoming["membership_expiration"] == date(2026, 12, 31)
        assert incoming["city"] is None
        assert incoming["deceased"] is False


class TestMergeMember:
    def test_non_empty_incoming_wins(self):
        merged = merge_member(_existing(), {"city": "Augusta", "deceased": False, "club_id": "c-1"})
        assert merged["city"] == "Augusta"

    def test_empty_incoming_keeps_stored(self):
        merged = merge_member(_existing(), {"city": None, "deceased": False, "club_id": "c-1"})
        assert merged["city"] == "Bangor"
        assert merged["email"] == "jane@example.com"

    def test_deceased_always_incoming(self):
        merged = merge_member(_existing(deceased=True), {"deceased": False, "club_id": "c-1"})
        assert merged["deceased"] is False

    def test_club_always_incoming(self):
        merged = merge_member(_existing(), {"deceased": False, "club_id": "c-2"})
        assert merged["club_id"] == "c-2"


class TestDiffMember:
    def test_no_changes(self):
        existing = _existing()
        assert diff_member(existing, merge_member(existing, dict(existing))) == {}

    def test_reports_changed_fields_only(self):
        existing = _existing()
        merged = merge_member(existing, {"city": "Augusta", "deceased": True, "club_id": "c-1"})
        assert diff_member(existing, merged) == {
            "city": ("Bangor", "Augusta"),
            "deceased": (False, True),
        }


# ---------------------------------------------------------------------------
# RowOutcome
# ---------------------------------------------------------------------------

class TestRowOutcome:
    def test_defaults_to_skipped(self):
        assert RowOutcome(row_number=2).skipped

    def test_rolled_back_drops_created_refs(self):
        outcome = RowOutcome(
            row_number=5, result=CREATED, club_id="c-1", member_id="m-1",
            club_created=True, member_created=True,
        )
        rolled = outcome.rolled_back(RuntimeError("duplicate key"))
        assert rolled.result == SKIPPED
        assert rolled.exception == "duplicate key"
        assert rolled.club_id is None
        assert rolled.member_id is None
        assert rolled.row_number == 5

    def test_rolled_back_keeps_existing_refs(self):
        outcome = RowOutcome(row_number=3, club_id="c-1", member_id="m-1")
        rolled = outcome.rolled_back(ValueError())
        assert rolled.club_id == "c-1"
        assert rolled.member_id == "m-1"
        assert rolled.exception == "ValueError"


# ---------------------------------------------------------------------------
# process_row: structural checks run before any DB access
# ---------------------------------------------------------------------------

class TestProcessRowStructural:
    @pytest.mark.parametrize("row, reason", [
        ({"FirstName": "Jane", "LastName": "Doe"}, MISSING_CHARTER_NUMBER),
        ({"CharterNumber": "  ", "FirstName": "Jane", "LastName": "Doe"}, MISSING_CHARTER_NUMBER),
        ({"CharterNumber": "101", "LastName": "Doe"}, MISSING_NAME),
        ({"CharterNumber": "101", "FirstName": "Jane"}, MISSING_NAME),
    ])
    def test_skipped_without_db(self, row, reason):
        conn = MagicMock()
        outcome = process_row(conn, {"RowID": "9", **row}, RowOutcome(row_number=4))
        assert outcome.result == SKIPPED
        assert outcome.exception == reason
        assert outcome.row_id == "9"
        assert outcome.club_id is None
        conn.execute.assert_not_called()
        conn.cursor.assert_not_called()
