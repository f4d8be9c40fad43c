"""Salesforce Contact/Lead -> unified lead record mapping and SOQL builders.

Pure functions, no I/O:
- map_contact() / map_lead(): Provider record to sparse lead values dict
- sanitize(): Drop unknown (None) values, trim strings
- is_valid_contact() / is_valid_lead(): Minimum identity check
- build_contact_query() / build_lead_query(): Incremental, ordered, capped SOQL

Only fields readable without elevated field-level security are queried.
Description, OwnerId, LeadSource, Status, DoNotCall and HasOptedOutOfEmail
are left out because orgs commonly hide them, and a hidden field in the
SELECT list fails the whole query.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from src.leadsync.integrations.schemas import LeadSource, QualityRating

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

MODSTAMP_FIELD = "SystemModstamp"

CONTACT_FIELDS: tuple[str, ...] = (
    "Id",
    "FirstName",
    "LastName",
    "Email",
    "Phone",
    "MobilePhone",
    "MailingStreet",
    "MailingCity",
    "MailingState",
    "MailingPostalCode",
    "MailingCountry",
    "Title",
    "Department",
    "Account.Name",
    "SystemModstamp",
    "CreatedDate",
    "LastModifiedDate",
)

LEAD_FIELDS: tuple[str, ...] = (
    "Id",
    "FirstName",
    "LastName",
    "Email",
    "Phone",
    "MobilePhone",
    "Street",
    "City",
    "State",
    "PostalCode",
    "Country",
    "Company",
    "Title",
    "Rating",
    "IsConverted",
    "SystemModstamp",
    "CreatedDate",
    "LastModifiedDate",
)

IDENTITY_FIELDS: tuple[str, ...] = ("FirstName", "LastName", "Email", "Phone", "MobilePhone")

# Contacts carry no rating; they are treated as already qualified.
CONTACT_LEAD_SCORE = 50
CONTACT_QUALITY = QualityRating.WARM

_RATING_SCORES: dict[str, int] = {"hot": 90, "warm": 70, "cold": 30}
_DEFAULT_SCORE = 50

_OFFSET_WITHOUT_COLON = re.compile(r"([+-]\d{2})(\d{2})$")


# ── Timestamps ──────────────────────────────────────────────────────────────


def parse_salesforce_datetime(value: str | None) -> datetime | None:
    """Parse a Salesforce timestamp such as ``2024-03-01T10:15:00.000+0000``."""
    if not value:
        return None
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    normalized = _OFFSET_WITHOUT_COLON.sub(r"\1:\2", normalized)
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_soql_datetime(value: datetime) -> str:
    """Format a datetime as an unquoted SOQL dateTime literal in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def record_modstamp(record: dict[str, Any]) -> datetime | None:
    """Return the record's SystemModstamp as a datetime, if present and parseable."""
    return parse_salesforce_datetime(record.get(MODSTAMP_FIELD))


# ── Rating ──────────────────────────────────────────────────────────────────


def rating_to_score(rating: str | None) -> int:
    """Map a Salesforce Lead Rating to a 0-100 lead score."""
    if not rating:
        return _DEFAULT_SCORE
    return _RATING_SCORES.get(rating.strip().lower(), _DEFAULT_SCORE)


def rating_to_quality(rating: str | None) -> QualityRating:
    """Map a Salesforce Lead Rating to a quality label."""
    if not rating:
        return QualityRating.UNRATED
    try:
        return QualityRating(rating.strip().lower())
    except ValueError:
        return QualityRating.UNRATED


# ── Validation ──────────────────────────────────────────────────────────────


def _has_identity(record: dict[str, Any]) -> bool:
    if not record.get("Id"):
        return False
    return any(record.get(field) for field in IDENTITY_FIELDS)


def is_valid_contact(record: dict[str, Any]) -> bool:
    """A contact needs an Id plus a name, email or phone."""
    return _has_identity(record)


def is_valid_lead(record: dict[str, Any]) -> bool:
    """A lead needs an Id plus a name, email or phone."""
    return _has_identity(record)


# ── Mapping ─────────────────────────────────────────────────────────────────


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def _common_fields(
    record: dict[str, Any], business_id: str, now: datetime
) -> dict[str, Any]:
    return {
        "business_id": business_id,
        "source_id": record.get("Id"),
        "first_name": record.get("FirstName") or None,
        "last_name": record.get("LastName") or None,
        "email": record.get("Email") or None,
        "phone": record.get("Phone") or None,
        "mobile_phone": record.get("MobilePhone") or None,
        "title": record.get("Title") or None,
        # Provider permissions can hide the real values; default to permissive.
        "do_not_call": False,
        "do_not_email": False,
        "email_opt_out": False,
        "last_synced_at": now,
        "sync_status": "active",
        "sync_error": None,
        "last_activity_at": parse_salesforce_datetime(record.get("LastModifiedDate")) or now,
        "updated_at": now,
    }


def map_contact(
    record: dict[str, Any], business_id: str, now: datetime | None = None
) -> dict[str, Any]:
    """Map a Salesforce Contact to lead column values.

    Fields the provider did not return map to None so that sanitize() can
    drop them instead of overwriting stored data.
    """
    now = now or datetime.now(timezone.utc)
    account_name = (record.get("Account") or {}).get("Name") or None

    values = _common_fields(record, business_id, now)
    values.update(
        {
            "source": LeadSource.SALESFORCE_CONTACT.value,
            "source_metadata": _compact(
                {
                    "salesforce_type": "Contact",
                    "salesforce_created_date": record.get("CreatedDate"),
                    "salesforce_last_modified": record.get("LastModifiedDate"),
                    "salesforce_system_modstamp": record.get("SystemModstamp"),
                    "salesforce_account": account_name,
                }
            ),
            "street": record.get("MailingStreet") or None,
            "city": record.get("MailingCity") or None,
            "state": record.get("MailingState") or None,
            "postal_code": record.get("MailingPostalCode") or None,
            "country": record.get("MailingCountry") or None,
            "company": account_name,
            "department": record.get("Department") or None,
            "lead_score": CONTACT_LEAD_SCORE,
            "quality_rating": CONTACT_QUALITY.value,
        }
    )
    return values


def map_lead(
    record: dict[str, Any], business_id: str, now: datetime | None = None
) -> dict[str, Any]:
    """Map a Salesforce Lead to lead column values, scoring from Rating."""
    now = now or datetime.now(timezone.utc)
    rating = record.get("Rating")

    values = _common_fields(record, business_id, now)
    values.update(
        {
            "source": LeadSource.SALESFORCE_LEAD.value,
            "source_metadata": _compact(
                {
                    "salesforce_type": "Lead",
                    "salesforce_created_date": record.get("CreatedDate"),
                    "salesforce_last_modified": record.get("LastModifiedDate"),
                    "salesforce_system_modstamp": record.get("SystemModstamp"),
                    "salesforce_rating": rating,
                }
            ),
            "street": record.get("Street") or None,
            "city": record.get("City") or None,
            "state": record.get("State") or None,
            "postal_code": record.get("PostalCode") or None,
            "country": record.get("Country") or None,
            "company": record.get("Company") or None,
            "department": None,
            "lead_score": rating_to_score(rating),
            "quality_rating": rating_to_quality(rating).value,
        }
    )
    return values


def sanitize(values: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is unknown (None) and trim string values.

    Non-string values (numbers, booleans, datetimes, nested dicts) pass
    through untouched.
    """
    sanitized: dict[str, Any] = {}
    for key, value in values.items():
        if value is None:
            continue
        sanitized[key] = value.strip() if isinstance(value, str) else value
    return sanitized


# ── SOQL Builders ───────────────────────────────────────────────────────────


def _build_query(
    sobject: str,
    fields: tuple[str, ...],
    last_sync_at: datetime | None,
    limit: int,
    extra_filters: tuple[str, ...] = (),
) -> str:
    since = format_soql_datetime(last_sync_at or EPOCH)
    conditions = " AND ".join((f"{MODSTAMP_FIELD} > {since}", *extra_filters))
    return (
        f"SELECT {', '.join(fields)} FROM {sobject} "
        f"WHERE {conditions} "
        f"ORDER BY {MODSTAMP_FIELD} ASC "
        f"LIMIT {int(limit)}"
    )


def build_contact_query(last_sync_at: datetime | None, limit: int = 2000) -> str:
    """SOQL for Contacts modified after the watermark (epoch when never synced)."""
    return _build_query("Contact", CONTACT_FIELDS, last_sync_at, limit)


def build_lead_query(last_sync_at: datetime | None, limit: int = 2000) -> str:
    """SOQL for unconverted Leads modified after the watermark."""
    return _build_query(
        "Lead", LEAD_FIELDS, last_sync_at, limit, extra_filters=("IsConverted = false",)
    )
