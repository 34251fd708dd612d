"""Root API router for v1 endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from funnelboard.api.v1 import ads, health, predefinitions, reports, sync
from funnelboard.core.config import get_config

api_router = APIRouter(prefix=get_config().API_PREFIX)
api_router.include_router(health.router)
api_router.include_router(sync.router)
api_router.include_router(ads.router)
api_router.include_router(reports.router)
api_router.include_router(predefinitions.router)


def get_api_router() -> APIRouter:
    return api_router
