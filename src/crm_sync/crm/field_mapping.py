"""Per-provider field mappings and activity type tables for CRM sync.

Defines:
- *_CONTACT_FIELD_MAP / *_DEAL_FIELD_MAP: generic field name -> provider-native
  field name and value type, one table per provider.
- *_ACTIVITY_TYPES: generic activity type -> provider-native enum, with the
  provider's note type as fallback.
- to_provider_fields(): Converts a generic payload dict to native fields,
  dropping None values.
- from_provider_fields(): Converts native fields back to generic names.
- map_activity_type(): Looks up an activity type with fallback.
- split_name(): Splits a full name into first/last.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any


# ── Contact Field Mappings ─────────────────────────────────────────────────
# Pipedrive persons use list-valued email/phone and a single name, so the
# PipedriveClient builds its payload directly instead of using a table.

HUBSPOT_CONTACT_FIELD_MAP: dict[str, dict[str, str]] = {
    "email": {"remote": "email", "type": "string"},
    "first_name": {"remote": "firstname", "type": "string"},
    "last_name": {"remote": "lastname", "type": "string"},
    "company": {"remote": "company", "type": "string"},
    "phone": {"remote": "phone", "type": "string"},
    "title": {"remote": "jobtitle", "type": "string"},
    "website": {"remote": "website", "type": "string"},
}

SALESFORCE_CONTACT_FIELD_MAP: dict[str, dict[str, str]] = {
    "email": {"remote": "Email", "type": "string"},
    "first_name": {"remote": "FirstName", "type": "string"},
    "last_name": {"remote": "LastName", "type": "string"},
    "company": {"remote": "Company", "type": "string"},
    "phone": {"remote": "Phone", "type": "string"},
    "title": {"remote": "Title", "type": "string"},
    "website": {"remote": "Website", "type": "string"},
}


# ── Deal Field Mappings ────────────────────────────────────────────────────

HUBSPOT_DEAL_FIELD_MAP: dict[str, dict[str, str]] = {
    "name": {"remote": "dealname", "type": "string"},
    "amount": {"remote": "amount", "type": "numeric_string"},
    "stage": {"remote": "dealstage", "type": "string"},
    "close_date": {"remote": "closedate", "type": "date"},
}

SALESFORCE_DEAL_FIELD_MAP: dict[str, dict[str, str]] = {
    "name": {"remote": "Name", "type": "string"},
    "amount": {"remote": "Amount", "type": "number"},
    "stage": {"remote": "StageName", "type": "string"},
    "close_date": {"remote": "CloseDate", "type": "date"},
    "probability": {"remote": "Probability", "type": "number"},
}

PIPEDRIVE_DEAL_FIELD_MAP: dict[str, dict[str, str]] = {
    "name": {"remote": "title", "type": "string"},
    "amount": {"remote": "value", "type": "number"},
    "close_date": {"remote": "expected_close_date", "type": "date"},
    "probability": {"remote": "probability", "type": "number"},
}


# ── Activity Type Tables ───────────────────────────────────────────────────

HUBSPOT_ACTIVITY_TYPES: dict[str, str] = {
    "email": "EMAIL",
    "call": "CALL",
    "meeting": "MEETING",
    "note": "NOTE",
}

SALESFORCE_ACTIVITY_TYPES: dict[str, str] = {
    "email": "Email",
    "call": "Call",
    "meeting": "Meeting",
    "note": "Other",
}

PIPEDRIVE_ACTIVITY_TYPES: dict[str, str] = {
    "email": "email",
    "call": "call",
    "meeting": "meeting",
    "note": "task",
}


# ── Conversion Functions ───────────────────────────────────────────────────


def to_provider_fields(
    data: dict[str, Any],
    field_map: dict[str, dict[str, str]],
) -> dict[str, Any]:
    """Convert a generic field dict to provider-native fields.

    Fields missing from ``field_map`` and None values are dropped, so the
    result is safe to send as a partial update.

    Args:
        data: Dict of generic field names to values.
        field_map: Provider field map (generic name -> remote name and type).

    Returns:
        Dict of provider-native field names to serialized values.
    """
    fields: dict[str, Any] = {}

    for field_name, value in data.items():
        if field_name not in field_map or value is None:
            continue

        mapping = field_map[field_name]
        remote_name = mapping["remote"]
        value_type = mapping["type"]

        if value_type == "date":
            if isinstance(value, datetime):
                value = value.date()
            fields[remote_name] = value.isoformat() if isinstance(value, date) else str(value)
        elif value_type == "numeric_string":
            fields[remote_name] = str(value)
        elif value_type == "number":
            fields[remote_name] = float(value)
        else:
            fields[remote_name] = str(value)

    return fields


def from_provider_fields(
    properties: dict[str, Any],
    field_map: dict[str, dict[str, str]],
) -> dict[str, Any]:
    """Convert provider-native fields back to generic field names.

    Args:
        properties: Native record fields (e.g. HubSpot ``properties``).
        field_map: Provider field map used for the forward conversion.

    Returns:
        Dict of generic field names to values, skipping empty values.
    """
    reverse_map = {mapping["remote"]: name for name, mapping in field_map.items()}

    result: dict[str, Any] = {}
    for remote_name, value in properties.items():
        if remote_name in reverse_map and value not in (None, ""):
            result[reverse_map[remote_name]] = value
    return result


def map_activity_type(activity_type: str, type_table: dict[str, str]) -> str:
    """Map a generic activity type, falling back to the table's note type."""
    return type_table.get(activity_type, type_table["note"])


def split_name(full_name: str | None) -> tuple[str | None, str | None]:
    """Split a display name into (first, last); last is None for single words."""
    parts = (full_name or "").split()
    if not parts:
        return None, None
    return parts[0], " ".join(parts[1:]) or None
