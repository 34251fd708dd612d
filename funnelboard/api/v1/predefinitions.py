"""Predefinitions and field-mapping endpoints for API v1."""

from __future__ import annotations

from fastapi import APIRouter, Header, Query

from funnelboard.api.v1._authz import authorize, platform_error_response, raise_http
from funnelboard.core.exceptions import ExternalPlatformError, FunnelboardException
from funnelboard.database import db as database
from funnelboard.schemas.predefinitions import (
    ImportCustomFieldsRequest,
    PredefinitionsRequest,
    SaleDateFieldRequest,
    UtmMappingRequest,
)
from funnelboard.services.predefinitions_service import PredefinitionsService

router = APIRouter(prefix="/predefinitions", tags=["predefinitions"])


@router.post("")
def save_predefinitions(
    payload: PredefinitionsRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict:
    try:
        caller = authorize(authorization=authorization, scopes=["predefinitions.write"])
        client_id = caller.resolve_client(payload.client_id)
        with database.get_db_session() as session:
            saved = PredefinitionsService(db=session).save_predefinitions(
                client_id,
                pipelines=[item.model_dump() for item in payload.pipelines],
                calendars=[item.model_dump() for item in payload.calendars],
                users=[item.model_dump() for item in payload.users],
            )
    except FunnelboardException as exc:
        raise_http(exc)
    return {"ok": True, **saved.__dict__}


@router.put("/utm-mapping")
def save_utm_mapping(
    payload: UtmMappingRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict:
    try:
        caller = authorize(authorization=authorization, scopes=["predefinitions.write"])
        client_id = caller.resolve_client(payload.client_id)
        with database.get_db_session() as session:
            values = PredefinitionsService(db=session).save_utm_mapping(
                client_id, payload.model_dump(exclude={"client_id"})
            )
    except FunnelboardException as exc:
        raise_http(exc)
    return {"ok": True, "mapping": values}


@router.put("/sale-date-field")
def save_sale_date_field(
    payload: SaleDateFieldRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict:
    try:
        caller = authorize(authorization=authorization, scopes=["predefinitions.write"])
        client_id = caller.resolve_client(payload.client_id)
        with database.get_db_session() as session:
            field_id = PredefinitionsService(db=session).save_sale_date_field(client_id, payload.field_id)
    except FunnelboardException as exc:
        raise_http(exc)
    return {"ok": True, "sale_date_field_id": field_id}


@router.put("/import-custom-fields")
def save_import_custom_fields(
    payload: ImportCustomFieldsRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict:
    try:
        caller = authorize(authorization=authorization, scopes=["predefinitions.write"])
        client_id = caller.resolve_client(payload.client_id)
        with database.get_db_session() as session:
            columns = PredefinitionsService(db=session).save_import_custom_fields(
                client_id, [item.model_dump() for item in payload.fields]
            )
    except FunnelboardException as exc:
        raise_http(exc)
    return {"ok": True, "fields": columns}


@router.get("/last-saved")
def last_saved(
    client_id: int | None = Query(default=None, ge=1),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict:
    try:
        caller = authorize(authorization=authorization, scopes=["predefinitions.read"])
        resolved = caller.resolve_client(client_id)
    except FunnelboardException as exc:
        raise_http(exc)
    with database.get_db_session() as session:
        return {"last_saved_at": PredefinitionsService(db=session).last_saved_at(resolved)}


@router.get("/utm-source-suggestions")
def utm_source_suggestions(
    client_id: int | None = Query(default=None, ge=1),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict:
    try:
        caller = authorize(authorization=authorization, scopes=["predefinitions.read"])
        resolved = caller.resolve_client(client_id)
    except FunnelboardException as exc:
        raise_http(exc)
    with database.get_db_session() as session:
        return {"suggestions": PredefinitionsService(db=session).utm_source_suggestions(resolved)}


@router.get("/opportunity-custom-fields")
def opportunity_custom_fields(
    client_id: int | None = Query(default=None, ge=1),
    authorization: str | None = Header(default=None, alias="Authorization"),
):
    try:
        caller = authorize(authorization=authorization, scopes=["predefinitions.read"])
        resolved = caller.resolve_client(client_id)
        with database.get_db_session() as session:
            fields = PredefinitionsService(db=session).opportunity_custom_fields(resolved)
    except ExternalPlatformError as exc:
        return platform_error_response(exc)
    except FunnelboardException as exc:
        raise_http(exc)
    return {"fields": fields}
