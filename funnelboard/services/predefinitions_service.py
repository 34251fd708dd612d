"""Explicit saves of reference selections and per-client field mapping."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import select

from funnelboard.core.exceptions import ConfigurationError, NotFoundError, ValidationError
from funnelboard.integrations.crm_client import CrmClient
from funnelboard.models import Client, CrmCalendar, CrmUser, Opportunity, Pipeline, PipelineStage
from funnelboard.services.base_service import BaseService
from funnelboard.services.field_mapping import (
    ADS_LINK_COLUMNS,
    ADS_NAME_UTM_KEYS,
    KEY_ADS_SOURCE_TERMS,
    KEY_IMPORT_CUSTOM_FIELDS,
    KEY_LAST_SAVED_AT,
    KEY_LINK_ADS_COLUMN,
    KEY_LINK_OPPORTUNITY_COLUMN,
    KEY_SALE_DATE_FIELD_ID,
    OPPORTUNITY_LINK_COLUMNS,
    UTM_COLUMNS,
    UTM_FIELD_KEYS,
    FieldMappingService,
    parse_import_columns,
    sanitize_column,
)

logger = logging.getLogger(__name__)

UTM_MAPPING_KEYS = (
    *UTM_FIELD_KEYS.values(),
    *ADS_NAME_UTM_KEYS.values(),
    KEY_ADS_SOURCE_TERMS,
    KEY_LINK_OPPORTUNITY_COLUMN,
    KEY_LINK_ADS_COLUMN,
)


@dataclass
class PredefinitionsSaved:
    pipelines: int
    stages: int
    calendars: int
    users: int
    saved_at: str


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _check_choice(key: str, value: str | None, allowed: tuple[str, ...]) -> str | None:
    if value is not None and value not in allowed:
        raise ValidationError(f"Invalid value for {key}: {value}. Allowed: {', '.join(allowed)}")
    return value


def _unique_terms(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [part for part in raw.replace("\n", ",").split(",")]
    if not isinstance(raw, (list, tuple)):
        raise ValidationError(f"{KEY_ADS_SOURCE_TERMS} must be a list of strings.")
    terms: list[str] = []
    for item in raw:
        if not isinstance(item, str):
            continue
        term = item.strip().lower()
        if term and term not in terms:
            terms.append(term)
    return terms


class PredefinitionsService(BaseService):
    """Explicit, user-initiated writes; unlike the background sync these fully deactivate."""

    def __init__(self, db=None, crm_client_factory: Callable[[str | None, str | None], CrmClient] = CrmClient) -> None:
        super().__init__(db)
        self.crm_client_factory = crm_client_factory

    def _upsert_active(self, model, client_id: int, items: list[dict[str, Any]], **scope: Any) -> dict[str, Any]:
        filters = [model.client_id == client_id]
        for column, value in scope.items():
            filters.append(getattr(model, column) == value)
        existing = {row.external_id: row for row in self.db.scalars(select(model).where(*filters)).all()}

        kept: dict[str, Any] = {}
        for position, item in enumerate(items):
            external_id = _clean(item.get("id"))
            if external_id is None or external_id in kept:
                continue
            row = existing.get(external_id)
            if row is None:
                row = model(client_id=client_id, external_id=external_id, **scope)
                self.db.add(row)
            row.active = True
            row.name = _clean(item.get("name")) or row.name or ""
            if model is PipelineStage:
                row.position = position
            if model is CrmUser and "email" in item:
                row.email = _clean(item.get("email"))
            kept[external_id] = row

        for external_id, row in existing.items():
            if external_id not in kept:
                row.active = False
        self.db.flush()
        return kept

    def save_predefinitions(
        self,
        client_id: int,
        pipelines: list[dict[str, Any]],
        calendars: list[dict[str, Any]],
        users: list[dict[str, Any]],
    ) -> PredefinitionsSaved:
        """Persist the submitted selection; anything not submitted becomes inactive."""
        saved_pipelines = self._upsert_active(Pipeline, client_id, pipelines)
        stage_count = 0
        for payload in pipelines:
            pipeline = saved_pipelines.get(_clean(payload.get("id")) or "")
            if pipeline is None:
                continue
            stages = [stage for stage in payload.get("stages") or [] if isinstance(stage, dict)]
            stage_count += len(self._upsert_active(PipelineStage, client_id, stages, pipeline_id=pipeline.id))

        for pipeline in self.db.scalars(select(Pipeline).where(Pipeline.client_id == client_id)).all():
            if not pipeline.active:
                for stage in pipeline.stages:
                    stage.active = False

        saved_calendars = self._upsert_active(CrmCalendar, client_id, calendars)
        saved_users = self._upsert_active(CrmUser, client_id, users)

        saved_at = datetime.now(timezone.utc).isoformat()
        FieldMappingService(db=self.db).set_value(client_id, KEY_LAST_SAVED_AT, saved_at, commit=False)
        self.commit()
        logger.info(
            "predefinitions.saved",
            extra={"event": "predefinitions.saved", "client_id": client_id, "count": len(saved_pipelines)},
        )
        return PredefinitionsSaved(
            pipelines=len(saved_pipelines),
            stages=stage_count,
            calendars=len(saved_calendars),
            users=len(saved_users),
            saved_at=saved_at,
        )

    def save_utm_mapping(self, client_id: int, payload: dict[str, Any]) -> dict[str, str | None]:
        """Replace the whole UTM/ads mapping set; empty values clear a key."""
        values: dict[str, str | None] = {}
        for key in UTM_FIELD_KEYS.values():
            values[key] = _clean(payload.get(key))
        for key in ADS_NAME_UTM_KEYS.values():
            values[key] = _check_choice(key, _clean(payload.get(key)), UTM_COLUMNS)
        values[KEY_LINK_OPPORTUNITY_COLUMN] = _check_choice(
            KEY_LINK_OPPORTUNITY_COLUMN, _clean(payload.get(KEY_LINK_OPPORTUNITY_COLUMN)), OPPORTUNITY_LINK_COLUMNS
        )
        values[KEY_LINK_ADS_COLUMN] = _check_choice(
            KEY_LINK_ADS_COLUMN, _clean(payload.get(KEY_LINK_ADS_COLUMN)), ADS_LINK_COLUMNS
        )
        terms = _unique_terms(payload.get(KEY_ADS_SOURCE_TERMS))
        values[KEY_ADS_SOURCE_TERMS] = json.dumps(terms) if terms else None

        mapping = FieldMappingService(db=self.db)
        mapping.deactivate(client_id, UTM_MAPPING_KEYS)
        for key, value in values.items():
            if value is not None:
                mapping.set_value(client_id, key, value, commit=False)
        self.commit()
        return values

    def save_sale_date_field(self, client_id: int, field_id: str | None) -> str | None:
        cleaned = _clean(field_id)
        FieldMappingService(db=self.db).set_value(client_id, KEY_SALE_DATE_FIELD_ID, cleaned)
        return cleaned

    def save_import_custom_fields(self, client_id: int, fields: list[dict[str, Any]]) -> list[dict[str, str]]:
        """Store the allow-list of custom fields mirrored into opportunity rows."""
        if not isinstance(fields, list):
            raise ValidationError("fields must be a list of {id, name} objects.")
        payload = [
            {"id": str(item.get("id")).strip(), "name": _clean(item.get("name")) or str(item.get("id")).strip()}
            for item in fields
            if isinstance(item, dict) and _clean(item.get("id"))
        ]
        columns = parse_import_columns(json.dumps(payload))
        stored = [{"id": column.external_field_id, "name": column.label} for column in columns]
        FieldMappingService(db=self.db).set_value(
            client_id, KEY_IMPORT_CUSTOM_FIELDS, json.dumps(stored) if stored else None
        )
        return [
            {"id": column.external_field_id, "name": column.label, "column": column.column_name} for column in columns
        ]

    def last_saved_at(self, client_id: int) -> str | None:
        return FieldMappingService(db=self.db).get_value(client_id, KEY_LAST_SAVED_AT)

    def utm_source_suggestions(self, client_id: int) -> list[str]:
        rows = self.db.scalars(
            select(Opportunity.utm_source).where(
                Opportunity.client_id == client_id,
                Opportunity.utm_source.is_not(None),
            )
        ).all()
        return sorted({value.strip() for value in rows if value and value.strip()})

    def opportunity_custom_fields(self, client_id: int) -> list[dict[str, Any]]:
        """CRM opportunity field definitions for the sale-date and import pickers."""
        client = self.db.get(Client, client_id)
        if client is None:
            raise NotFoundError(f"Client not found: {client_id}")
        if not client.has_crm_credentials:
            raise ConfigurationError("Client has no CRM API key or location id configured.")

        mapping = FieldMappingService(db=self.db).resolve(client_id)
        imported = {column.external_field_id for column in mapping.import_columns}
        fields = self.crm_client_factory(client.crm_api_key, client.crm_location_id).list_opportunity_custom_fields()
        return [
            {
                **field,
                "column": sanitize_column(field["id"]),
                "imported": field["id"] in imported,
                "is_sale_date": field["id"] == mapping.sale_date_field_id,
            }
            for field in fields
            if field.get("id")
        ]
