"""Per-client field mapping: which CRM custom field plays which role."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

from sqlalchemy import select, update

from funnelboard.models import LocationPredefinition
from funnelboard.services.base_service import BaseService

CUSTOM_COLUMN_PREFIX = "cf_"
_UNSAFE_COLUMN_CHARS = re.compile(r"[^A-Za-z0-9_]")

UTM_ROLES = ("source", "campaign", "medium", "term", "content")
UTM_COLUMNS = tuple(f"utm_{role}" for role in UTM_ROLES)
UTM_FIELD_KEYS = {role: f"utm_{role}_field_id" for role in UTM_ROLES}

KEY_SALE_DATE_FIELD_ID = "sale_date_field_id"
KEY_IMPORT_CUSTOM_FIELDS = "opportunity_import_custom_fields"
KEY_ADS_SOURCE_TERMS = "facebook_utm_source_terms"
KEY_LINK_OPPORTUNITY_COLUMN = "opportunity_ads_link_opportunity_column"
KEY_LINK_ADS_COLUMN = "opportunity_ads_link_ads_column"
KEY_LAST_SAVED_AT = "predefinitions_last_saved_at"
# Which UTM column the ads platform's campaign/adset/creative names land in.
ADS_NAME_UTM_KEYS = {
    "campaign": "facebook_campaign_utm",
    "adset": "facebook_adset_utm",
    "creative": "facebook_creative_utm",
}

OPPORTUNITY_LINK_COLUMNS = UTM_COLUMNS
ADS_LINK_COLUMNS = ("ad_id", "ad_name", "campaign_id", "campaign_name", "adset_id", "adset_name")


def _unsafe_replacement(match: re.Match) -> str:
    return "__" if ord(match.group()) > 0xFFFF else "_"


def sanitize_column(field_id: str) -> str:
    """Deterministic column name for an imported custom field.

    Every character outside ``[A-Za-z0-9_]`` becomes ``_``; length and
    positions are preserved so the writer and every reader agree. Length is
    counted in UTF-16 code units: a character outside the BMP becomes ``__``.
    """
    return CUSTOM_COLUMN_PREFIX + _UNSAFE_COLUMN_CHARS.sub(_unsafe_replacement, field_id)


def parse_terms(raw: str | None) -> list[str]:
    """Parse a JSON string list into unique, trimmed, lowercased terms."""
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return []
    if not isinstance(parsed, list):
        return []
    terms: list[str] = []
    for item in parsed:
        if not isinstance(item, str):
            continue
        term = item.strip().lower()
        if term and term not in terms:
            terms.append(term)
    return terms


@dataclass(frozen=True)
class ImportColumn:
    external_field_id: str
    column_name: str
    label: str


@dataclass(frozen=True)
class LinkColumns:
    opportunity_column: str | None = None
    ads_column: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.opportunity_column and self.ads_column)


@dataclass(frozen=True)
class FieldMapping:
    """Resolved mapping for one client; every member may be empty."""

    utm_field_ids: dict[str, str | None] = field(default_factory=lambda: {role: None for role in UTM_ROLES})
    sale_date_field_id: str | None = None
    import_columns: tuple[ImportColumn, ...] = ()
    ads_attribution_terms: frozenset[str] = frozenset()
    link_columns: LinkColumns = field(default_factory=LinkColumns)
    ads_name_utm: dict[str, str | None] = field(default_factory=dict)

    def is_ads_source(self, utm_source: str | None) -> bool:
        source = (utm_source or "").strip().lower()
        return bool(source) and source in self.ads_attribution_terms


def parse_import_columns(raw: str | None) -> tuple[ImportColumn, ...]:
    if not raw:
        return ()
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return ()
    if not isinstance(parsed, list):
        return ()

    columns: list[ImportColumn] = []
    seen: set[str] = set()
    for item in parsed:
        if not isinstance(item, dict) or not isinstance(item.get("id"), str):
            continue
        field_id = item["id"].strip()
        if not field_id or field_id in seen:
            continue
        seen.add(field_id)
        label = str(item.get("name") or field_id).strip() or field_id
        columns.append(ImportColumn(external_field_id=field_id, column_name=sanitize_column(field_id), label=label))
    return tuple(columns)


class FieldMappingService(BaseService):
    """Reads and appends per-client mapping rows in ``location_predefinitions``."""

    def active_values(self, client_id: int) -> dict[str, str]:
        rows = self.db.scalars(
            select(LocationPredefinition).where(
                LocationPredefinition.client_id == client_id,
                LocationPredefinition.active.is_(True),
            )
        ).all()
        values: dict[str, str] = {}
        for row in rows:
            if row.value is not None:
                values[row.key] = row.value
        return values

    def get_value(self, client_id: int, key: str) -> str | None:
        row = self.db.scalars(
            select(LocationPredefinition).where(
                LocationPredefinition.client_id == client_id,
                LocationPredefinition.key == key,
                LocationPredefinition.active.is_(True),
            )
        ).first()
        if row is None or row.value is None:
            return None
        return row.value.strip() or None

    def resolve(self, client_id: int) -> FieldMapping:
        """Resolve the client's mapping; missing keys mean "no mapping"."""
        values = {key: value.strip() for key, value in self.active_values(client_id).items()}

        def _opt(key: str) -> str | None:
            return values.get(key) or None

        opportunity_column = _opt(KEY_LINK_OPPORTUNITY_COLUMN)
        ads_column = _opt(KEY_LINK_ADS_COLUMN)
        return FieldMapping(
            utm_field_ids={role: _opt(key) for role, key in UTM_FIELD_KEYS.items()},
            sale_date_field_id=_opt(KEY_SALE_DATE_FIELD_ID),
            import_columns=parse_import_columns(values.get(KEY_IMPORT_CUSTOM_FIELDS)),
            ads_attribution_terms=frozenset(parse_terms(values.get(KEY_ADS_SOURCE_TERMS))),
            link_columns=LinkColumns(
                opportunity_column=opportunity_column if opportunity_column in OPPORTUNITY_LINK_COLUMNS else None,
                ads_column=ads_column if ads_column in ADS_LINK_COLUMNS else None,
            ),
            ads_name_utm={
                name: (_opt(key) if _opt(key) in UTM_COLUMNS else None) for name, key in ADS_NAME_UTM_KEYS.items()
            },
        )

    def deactivate(self, client_id: int, keys: list[str] | tuple[str, ...]) -> None:
        self.db.execute(
            update(LocationPredefinition)
            .where(
                LocationPredefinition.client_id == client_id,
                LocationPredefinition.key.in_(list(keys)),
                LocationPredefinition.active.is_(True),
            )
            .values(active=False)
        )

    def set_value(self, client_id: int, key: str, value: str | None, commit: bool = True) -> LocationPredefinition | None:
        """Flip the current row inactive and append ``value`` when non-empty."""
        self.deactivate(client_id, [key])
        row = None
        cleaned = (value or "").strip()
        if cleaned:
            row = LocationPredefinition(client_id=client_id, key=key, value=cleaned, active=True)
            self.db.add(row)
        if commit:
            self.commit()
        return row
