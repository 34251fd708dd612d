"""Pure normalization helpers for raw CRM payloads.

The CRM exposes the same concept under several alternate names and ships
custom fields either as a flat mapping or as a list of items whose value may
sit under one of many keys. Everything here is side-effect free and never
raises on malformed input; the worst case is ``None``.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from datetime import date, datetime, timezone
from typing import Any

Scalar = str | int | float | None

STAGE_ID_KEYS = ("stageId", "pipelineStageId", "pipeline_stage_id")
PIPELINE_ID_KEYS = ("pipelineId", "pipeline_id")
CREATED_AT_KEYS = ("dateAdded", "date_added", "dateCreated", "createdAt")
UPDATED_AT_KEYS = ("dateUpdated", "date_updated")
OWNER_KEYS = ("assignedTo", "assigned_to")
CONTACT_ID_KEYS = ("contactId", "contact_id")
EVENT_STATUS_KEYS = ("status", "appointmentStatus", "eventStatus")
EVENT_ASSIGNED_USER_KEYS = ("assignedUserId", "assigned_user_id", "userId")

FIELD_ID_KEYS = ("id", "fieldId", "field_id", "key")
FIELD_VALUE_KEYS = (
    "fieldValueString",
    "fieldValueNumber",
    "fieldValueBoolean",
    "fieldValueDate",
    "fieldValue",
    "field_value",
    "value",
)
# Date-typed custom fields keep their value under fieldValueDate first.
SALE_DATE_VALUE_KEYS = (
    "fieldValueDate",
    "fieldValueString",
    "fieldValueNumber",
    "fieldValueBoolean",
    "fieldValue",
    "field_value",
    "value",
)

_DATE_FORMATS = ("%Y-%m-%d", "%Y-%m-%d %H:%M:%S", "%d/%m/%Y")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def first_present(record: Mapping[str, Any] | None, keys: Iterable[str]) -> Any:
    """Return the first non-null, non-blank value among ``keys``."""
    if not isinstance(record, Mapping):
        return None
    for key in keys:
        value = record.get(key)
        if _is_blank(value):
            continue
        return value.strip() if isinstance(value, str) else value
    return None


def _first_not_none(record: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def resolve_stage_id(record: Mapping[str, Any] | None) -> str | None:
    return _as_text(first_present(record, STAGE_ID_KEYS))


def resolve_pipeline_id(record: Mapping[str, Any] | None) -> str | None:
    return _as_text(first_present(record, PIPELINE_ID_KEYS))


def resolve_created_at(record: Mapping[str, Any] | None) -> Any:
    return first_present(record, CREATED_AT_KEYS)


def resolve_updated_at(record: Mapping[str, Any] | None) -> Any:
    return first_present(record, UPDATED_AT_KEYS)


def resolve_owner(record: Mapping[str, Any] | None) -> str | None:
    return _as_text(first_present(record, OWNER_KEYS))


def resolve_contact_id(record: Mapping[str, Any] | None) -> str | None:
    direct = first_present(record, CONTACT_ID_KEYS)
    if direct is not None:
        return _as_text(direct)
    contact = record.get("contact") if isinstance(record, Mapping) else None
    if isinstance(contact, Mapping):
        return _as_text(contact.get("id"))
    return None


def resolve_event_status(record: Mapping[str, Any] | None) -> str | None:
    return _as_text(first_present(record, EVENT_STATUS_KEYS))


def to_datetime(value: Any) -> datetime | None:
    """Coerce epoch-ms numbers, ISO strings and datetimes to aware UTC."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    if text.lstrip("-").isdigit():
        return to_datetime(int(text))
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = None
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def to_ms(value: Any) -> int | None:
    """Epoch milliseconds for anything ``to_datetime`` understands."""
    parsed = to_datetime(value)
    if parsed is None:
        return None
    return int(parsed.timestamp() * 1000)


def to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _normalize_scalar(value: Any) -> Scalar:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        return value.strip() or None
    return str(value).strip() or None


def _item_value(item: Mapping[str, Any], keys: Iterable[str]) -> Any:
    value = _first_not_none(item, keys)
    if value is None:
        values = item.get("values")
        if isinstance(values, list) and values:
            value = values[0]
    if value is None:
        value = item.get("val")
    return value


def normalize_custom_fields(raw: Any) -> dict[str, Scalar]:
    """Collapse either custom-field shape into ``{field_id: scalar}``."""
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return {str(key): _normalize_scalar(value) for key, value in raw.items()}
    if not isinstance(raw, list):
        return {}

    normalized: dict[str, Scalar] = {}
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        field_id = _first_not_none(item, FIELD_ID_KEYS)
        if field_id is None or str(field_id) == "":
            continue
        normalized[str(field_id)] = _normalize_scalar(_item_value(item, FIELD_VALUE_KEYS))
    return normalized


def custom_field_text(normalized: Mapping[str, Scalar], field_id: str | None) -> str | None:
    """String view of one normalized custom field, ``None`` when unmapped."""
    if not field_id:
        return None
    value = normalized.get(field_id)
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def extract_sale_date(raw: Any, sale_date_field_id: str | None) -> datetime | None:
    """Resolve the configured sale-date custom field to a UTC timestamp."""
    if not sale_date_field_id or raw is None:
        return None
    wanted = str(sale_date_field_id).strip()
    if not wanted:
        return None

    if isinstance(raw, list):
        for item in raw:
            if not isinstance(item, Mapping):
                continue
            field_id = _first_not_none(item, FIELD_ID_KEYS)
            if field_id is None or str(field_id).strip() != wanted:
                continue
            value = _item_value(item, SALE_DATE_VALUE_KEYS)
            return None if _is_blank(value) else to_datetime(value)
        return None
    if isinstance(raw, Mapping):
        value = raw.get(sale_date_field_id)
        if value is None:
            value = raw.get(wanted)
        return None if _is_blank(value) else to_datetime(value)
    return None


def has_custom_fields_payload(record: Mapping[str, Any] | None) -> bool:
    """False when the CRM omitted custom fields or sent an empty list."""
    if not isinstance(record, Mapping):
        return False
    raw = record.get("customFields")
    if raw is None:
        return False
    if isinstance(raw, (list, Mapping)) and len(raw) == 0:
        return False
    return True
