"""CRM and ads sync endpoints for API v1."""

from __future__ import annotations

from fastapi import APIRouter, Header
from fastapi.responses import JSONResponse

from funnelboard.api.v1._authz import authorize, platform_error_response, raise_http, rejection_response
from funnelboard.core.enums import SyncMode
from funnelboard.core.exceptions import ExternalPlatformError, FunnelboardException, ValidationError
from funnelboard.database import db as database
from funnelboard.schemas.sync import AdsSyncRequest, SyncRequest
from funnelboard.services.ads_sync_service import AdsSyncService
from funnelboard.services.sync_service import SyncCaller, SyncService

router = APIRouter(tags=["sync"])


@router.post("/sync")
def run_sync(
    payload: SyncRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
    x_cron_secret: str | None = Header(default=None, alias="X-Cron-Secret"),
):
    try:
        caller = authorize(authorization=authorization, scopes=["sync.run"], cron_secret=x_cron_secret)
        client_id = caller.resolve_client(payload.client_id)
        try:
            mode = SyncMode.parse(payload.mode, full_sync=payload.full_sync)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        with database.get_db_session() as session:
            result = SyncService(db=session).run(
                client_id,
                mode,
                modules=payload.modules,
                caller=SyncCaller(privileged=caller.privileged, bypass_cooldown=caller.is_cron),
            )
    except FunnelboardException as exc:
        raise_http(exc)

    body = result.to_response()
    if result.rejection is not None:
        return rejection_response(body, result.rejection.retry_after_seconds)
    return JSONResponse(status_code=result.status_code, content=body)


@router.post("/ads/sync")
def run_ads_sync(
    payload: AdsSyncRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
    x_cron_secret: str | None = Header(default=None, alias="X-Cron-Secret"),
):
    try:
        caller = authorize(authorization=authorization, scopes=["ads.sync"], cron_secret=x_cron_secret)
        client_id = caller.resolve_client(payload.client_id)
        with database.get_db_session() as session:
            result = AdsSyncService(db=session).sync_ads(
                client_id, since=payload.date_start, until=payload.date_end, privileged=caller.privileged
            )
    except ExternalPlatformError as exc:
        return platform_error_response(exc)
    except FunnelboardException as exc:
        raise_http(exc)

    if result.rejection is not None:
        return rejection_response(result.to_response(), result.rejection.retry_after_seconds)
    return result.to_response()
