"""membership_etl.fields

Field extraction for roster spreadsheet rows.

Roster exports do not agree on column naming ("FirstName", "First Name",
"firstName", ...).  Each logical field carries an ordered list of accepted
header variants; the first variant holding a non-blank value wins.  The
variant table is plain data so it can be extended from a YAML file without
touching code:

    # config/header_variants.yml
    header_variants:
      email: [Email, email, E-mail]
      phone: [PrimaryPhone, Primary Phone, Phone, phone, Mobile]

Fields not named in the file keep their built-in variants.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Header variant table
# ---------------------------------------------------------------------------

HEADER_VARIANTS: dict[str, tuple[str, ...]] = {
    "row_id": ("RowID", "Row ID", "rowId", "ID"),
    "charter_number": ("CharterNumber", "Charter Number", "charterNumber"),
    "club_name": ("ClubName", "Club Name", "clubName"),
    "club_state": ("ClubState", "Club State", "State", "clubState"),
    "nfrw_contact_id": ("NFRWContact", "NFRW Contact", "nfrwContact"),
    "prefix": ("Prefix", "prefix"),
    "first_name": ("FirstName", "First Name", "firstName"),
    "middle_name": ("MiddleName", "Middle Name", "middleName"),
    "last_name": ("LastName", "Last Name", "lastName"),
    "badge_nickname": ("BadgeNickName", "Badge Nickname", "badgeNickname"),
    "suffix": ("Suffix", "suffix"),
    "street_address": ("Address_Line_1", "Address Line 1", "Address1", "streetAddress"),
    "address2": ("Address_Line_2", "Address Line 2", "Address2", "address2"),
    "city": ("City", "city"),
    "state": ("State", "state"),
    "zip": ("Zip", "ZipCode", "zip"),
    "phone": ("PrimaryPhone", "Primary Phone", "Phone", "phone"),
    "phone_type": ("PhoneType", "Phone Type", "phoneType"),
    "email": ("Email", "email"),
    "membership_expiration": (
        "MemberExpirationDate", "Member Expiration Date", "Expiration", "membershipExpiration",
    ),
    "membership_type": ("MembershipType", "Membership Type", "membershipType"),
    "associate_primary_member": (
        "Associate_PrimaryMbrInfo", "Associate Primary Member", "associatePrimary",
    ),
    "gender": ("Gender", "gender"),
    "occupation": ("Occupation", "occupation"),
    "employer": ("Employer", "employer"),
    "date_of_birth": ("DateOfBirth", "Date Of Birth", "DOB", "dateOfBirth"),
    "deceased": ("Deceased?", "Deceased", "deceased"),
    "source_exception": ("Exception", "exception"),
}

EXPORT_SET_ID_VARIANTS: tuple[str, ...] = (
    "ExportSetID", "ExportSetId", "exportSetId", "exportSetID", "Export Set ID", "ExportSet",
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class HeaderVariantsValidationError(ValueError):
    """Raised when a header-variant YAML file fails validation."""


# ---------------------------------------------------------------------------
# RawRowFields
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RawRowFields:
    """Trimmed string value per logical field; "" when the row had none."""

    row_id: str = ""
    charter_number: str = ""
    club_name: str = ""
    club_state: str = ""
    nfrw_contact_id: str = ""
    prefix: str = ""
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    badge_nickname: str = ""
    suffix: str = ""
    street_address: str = ""
    address2: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    phone: str = ""
    phone_type: str = ""
    email: str = ""
    membership_expiration: str = ""
    membership_type: str = ""
    associate_primary_member: str = ""
    gender: str = ""
    occupation: str = ""
    employer: str = ""
    date_of_birth: str = ""
    deceased: str = ""
    source_exception: str = ""


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def get_field(row: Mapping[str, Any], variants: Sequence[str]) -> str:
    """Return the first non-blank value among ``variants`` as a trimmed string."""
    for key in variants:
        value = row.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def extract_row_fields(
    row: Mapping[str, Any],
    variants: Mapping[str, Sequence[str]] = HEADER_VARIANTS,
) -> RawRowFields:
    values = {
        f.name: get_field(row, variants.get(f.name, ()))
        for f in fields(RawRowFields)
    }
    return RawRowFields(**values)


def extract_export_set_id(row: Mapping[str, Any]) -> str | None:
    return get_field(row, EXPORT_SET_ID_VARIANTS) or None


# ---------------------------------------------------------------------------
# YAML overrides
# ---------------------------------------------------------------------------

def validate_header_variants(data: Any) -> dict[str, tuple[str, ...]]:
    """Validate a parsed ``header_variants`` mapping and return it as tuples."""
    if not isinstance(data, dict):
        raise HeaderVariantsValidationError(
            "header_variants must be a mapping of field name to list of headers"
        )
    result: dict[str, tuple[str, ...]] = {}
    for name, headers in data.items():
        if name not in HEADER_VARIANTS:
            raise HeaderVariantsValidationError(f"unknown field {name!r}")
        if not isinstance(headers, list) or not headers:
            raise HeaderVariantsValidationError(
                f"field {name!r}: expected a non-empty list of header names"
            )
        for header in headers:
            if not isinstance(header, str) or not header.strip():
                raise HeaderVariantsValidationError(
                    f"field {name!r}: header names must be non-empty strings"
                )
        result[name] = tuple(headers)
    return result


def load_header_variants(yaml_path: Path) -> dict[str, tuple[str, ...]]:
    """Load a YAML override file and merge it over the built-in table.

    Raises:
        HeaderVariantsValidationError: If the file content is malformed.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict) or "header_variants" not in data:
        raise HeaderVariantsValidationError(
            f"{yaml_path.name}: missing top-level 'header_variants' key"
        )
    overrides = validate_header_variants(data["header_variants"])
    merged = dict(HEADER_VARIANTS)
    merged.update(overrides)
    return merged
