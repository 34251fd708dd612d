"""Ads-platform catalog endpoints for API v1."""

from __future__ import annotations

from fastapi import APIRouter, Header, Query

from funnelboard.api.v1._authz import authorize, platform_error_response, raise_http
from funnelboard.core.exceptions import ExternalPlatformError, FunnelboardException
from funnelboard.database import db as database
from funnelboard.services.ads_sync_service import AdsSyncService

router = APIRouter(prefix="/ads", tags=["ads"])


@router.get("/accounts")
def ad_accounts(
    client_id: int | None = Query(default=None, ge=1),
    authorization: str | None = Header(default=None, alias="Authorization"),
):
    try:
        caller = authorize(authorization=authorization, scopes=["ads.read"])
        resolved = caller.resolve_client(client_id)
        with database.get_db_session() as session:
            accounts = AdsSyncService(db=session).ad_accounts(resolved)
    except ExternalPlatformError as exc:
        return platform_error_response(exc)
    except FunnelboardException as exc:
        raise_http(exc)
    return {"accounts": accounts}


@router.get("/campaigns")
def campaigns(
    client_id: int | None = Query(default=None, ge=1),
    ad_account_id: str | None = Query(default=None, max_length=60),
    status: str | None = Query(default=None, max_length=30),
    authorization: str | None = Header(default=None, alias="Authorization"),
):
    try:
        caller = authorize(authorization=authorization, scopes=["ads.read"])
        resolved = caller.resolve_client(client_id)
        with database.get_db_session() as session:
            items = AdsSyncService(db=session).campaigns(resolved, ad_account_id=ad_account_id, status=status)
    except ExternalPlatformError as exc:
        return platform_error_response(exc)
    except FunnelboardException as exc:
        raise_http(exc)
    return {"campaigns": items}
