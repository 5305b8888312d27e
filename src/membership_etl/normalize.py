"""Normalization functions for roster spreadsheet ingestion.

All functions accept str | None and return the appropriate type or None.
A value that cannot be normalized is treated as absent; nothing here raises
on bad input.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime

from membership_etl.fields import RawRowFields

MEMBERSHIP_TYPES = ("Full", "Associate", "Honorary", "Inactive")
DEFAULT_MEMBERSHIP_TYPE = "Full"

PHONE_TYPES = ("Cell", "Work", "Home")

TRUE_FLAGS = frozenset({"yes", "y", "true", "1"})

# Two-digit-year formats precede their %Y forms, since %Y also accepts "26".
_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%m/%d/%y",
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M:%S",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d-%b-%y",
    "%d-%b-%Y",
)


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: normalize_email
# ---------------------------------------------------------------------------

def normalize_email(value: str | None) -> str | None:
    """Lowercase and trim an email address."""
    v = trim(value)
    if v is None:
        return None
    return v.lower()


# ---------------------------------------------------------------------------
# Rule 4: normalize_phone_digits
# ---------------------------------------------------------------------------

def normalize_phone_digits(value: str | None) -> str | None:
    """Keep digits only.  No digits at all → None.

    Unlike E.164 formatting no country code is added: matching compares the
    full digit string exactly as the roster export wrote it.
    """
    v = trim(value)
    if v is None:
        return None
    digits = re.sub(r"\D", "", v)
    return digits or None


# ---------------------------------------------------------------------------
# Rule 5: membership / phone type bucketing
# ---------------------------------------------------------------------------

def normalize_membership_type(value: str | None) -> str:
    """Bucket a free-text membership type; anything unrecognized is Full."""
    mt = (trim(value) or "").lower()
    if "honor" in mt:
        return "Honorary"
    if "assoc" in mt:
        return "Associate"
    if "inactive" in mt:
        return "Inactive"
    return DEFAULT_MEMBERSHIP_TYPE


def normalize_phone_type(value: str | None) -> str | None:
    pt = (trim(value) or "").lower()
    if not pt:
        return None
    if "cell" in pt or "mobile" in pt:
        return "Cell"
    if "work" in pt or "office" in pt:
        return "Work"
    if "home" in pt:
        return "Home"
    return None


# ---------------------------------------------------------------------------
# Rule 6: parse_date
# ---------------------------------------------------------------------------

def parse_date(value: str | None) -> date | None:
    """Parse a calendar date written in any of the roster export formats.

    e.g. '2026-06-30', '6/30/2026', 'Jun 30, 2026' → date(2026, 6, 30).
    Unparseable input returns None.
    """
    v = normalize_space(value)
    if v is None:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(v, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(v).date()
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Rule 7: parse_flag
# ---------------------------------------------------------------------------

def parse_flag(value: str | None) -> bool:
    """'Yes' / 'y' / 'true' / '1' (any case) → True; everything else False."""
    v = trim(value)
    if v is None:
        return False
    return v.lower() in TRUE_FLAGS


# ---------------------------------------------------------------------------
# Helper: synthesize_club_name
# ---------------------------------------------------------------------------

def synthesize_club_name(charter_number: str) -> str:
    return f"Club {charter_number}"


# ---------------------------------------------------------------------------
# Row-level normalization
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NormalizedRow:
    """Canonical values for one roster row.  None means absent."""

    row_id: str | None
    charter_number: str | None
    club_name: str | None
    club_state: str | None
    nfrw_contact_id: str | None
    prefix: str | None
    first_name: str | None
    middle_name: str | None
    last_name: str | None
    badge_nickname: str | None
    suffix: str | None
    street_address: str | None
    address2: str | None
    city: str | None
    state: str | None
    zip: str | None
    phone: str | None
    phone_normalized: str | None
    phone_type: str | None
    email: str | None
    membership_type: str
    membership_expiration: date | None
    associate_primary_member: str | None
    gender: str | None
    occupation: str | None
    employer: str | None
    date_of_birth: date | None
    deceased: bool
    source_exception: str | None


def normalize_row_fields(raw: RawRowFields) -> NormalizedRow:
    return NormalizedRow(
        row_id=trim(raw.row_id),
        charter_number=trim(raw.charter_number),
        club_name=normalize_space(raw.club_name),
        club_state=trim(raw.club_state),
        nfrw_contact_id=trim(raw.nfrw_contact_id),
        prefix=trim(raw.prefix),
        first_name=trim(raw.first_name),
        middle_name=trim(raw.middle_name),
        last_name=trim(raw.last_name),
        badge_nickname=trim(raw.badge_nickname),
        suffix=trim(raw.suffix),
        street_address=trim(raw.street_address),
        address2=trim(raw.address2),
        city=trim(raw.city),
        state=trim(raw.state),
        zip=trim(raw.zip),
        phone=trim(raw.phone),
        phone_normalized=normalize_phone_digits(raw.phone),
        phone_type=normalize_phone_type(raw.phone_type),
        email=normalize_email(raw.email),
        membership_type=normalize_membership_type(raw.membership_type),
        membership_expiration=parse_date(raw.membership_expiration),
        associate_primary_member=trim(raw.associate_primary_member),
        gender=trim(raw.gender),
        occupation=trim(raw.occupation),
        employer=trim(raw.employer),
        date_of_birth=parse_date(raw.date_of_birth),
        deceased=parse_flag(raw.deceased),
        source_exception=trim(raw.source_exception),
    )
