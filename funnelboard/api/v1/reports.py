"""Reporting endpoints for API v1; read persisted data only."""

from __future__ import annotations

from fastapi import APIRouter, Header, HTTPException, Query, status

from funnelboard.api.v1._authz import authorize, raise_http
from funnelboard.core.exceptions import FunnelboardException, ValidationError
from funnelboard.database import db as database
from funnelboard.services.indicator_service import IndicatorService, Period, ReportFilters, parse_period
from funnelboard.services.report_service import ReportService

router = APIRouter(prefix="/reports", tags=["reports"])


def _period(start: str | None, end: str | None) -> Period:
    try:
        return parse_period(start, end)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.get("/indicators")
def indicators(
    client_id: int | None = Query(default=None, ge=1),
    start: str | None = Query(default=None),
    end: str | None = Query(default=None),
    pipeline_ids: str | None = Query(default=None),
    sources: str | None = Query(default=None),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict:
    try:
        caller = authorize(authorization=authorization, scopes=["reports.read"])
        resolved = caller.resolve_client(client_id)
    except FunnelboardException as exc:
        raise_http(exc)

    period = _period(start, end)
    with database.get_db_session() as session:
        return IndicatorService(db=session).compute_indicators(
            resolved, period, ReportFilters.from_csv(pipeline_ids=pipeline_ids, sources=sources)
        )


@router.get("/extra")
def extra(
    client_id: int | None = Query(default=None, ge=1),
    start: str | None = Query(default=None),
    end: str | None = Query(default=None),
    pipeline_ids: str | None = Query(default=None),
    sources: str | None = Query(default=None),
    row_dim: str = Query(default="source"),
    col_dim: str = Query(default="responsible"),
    year: int | None = Query(default=None, ge=1970, le=9999),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict:
    try:
        caller = authorize(authorization=authorization, scopes=["reports.read"])
        resolved = caller.resolve_client(client_id)
        period = _period(start, end)
        with database.get_db_session() as session:
            return ReportService(db=session).compute_report(
                resolved,
                period,
                ReportFilters.from_csv(pipeline_ids=pipeline_ids, sources=sources),
                row_dim=row_dim,
                col_dim=col_dim,
                year=year,
            )
    except FunnelboardException as exc:
        raise_http(exc)


@router.get("/investment")
def investment(
    client_id: int | None = Query(default=None, ge=1),
    start: str | None = Query(default=None),
    end: str | None = Query(default=None),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict:
    try:
        caller = authorize(authorization=authorization, scopes=["reports.read"])
        resolved = caller.resolve_client(client_id)
    except FunnelboardException as exc:
        raise_http(exc)

    period = _period(start, end)
    with database.get_db_session() as session:
        return IndicatorService(db=session).compute_investment(resolved, period)
