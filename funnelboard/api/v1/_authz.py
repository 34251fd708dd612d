"""Shared authorization and error mapping helpers for API v1 route modules."""

from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse

from funnelboard.auth.caller_context import CallerContext, cron_caller, from_claims
from funnelboard.auth.jwt import decode_jwt
from funnelboard.auth.rbac import require_scopes
from funnelboard.core.config import get_config
from funnelboard.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    ExternalPlatformError,
    FunnelboardException,
    NotFoundError,
    ValidationError,
)


def _extract_bearer_token(authorization: str | None) -> str:
    if authorization is None or not authorization.strip():
        raise AuthenticationError("Authorization header is required.")
    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Authorization header must use Bearer token.")
    return parts[1].strip()


def authorize(authorization: str | None, scopes: list[str], cron_secret: str | None = None) -> CallerContext:
    """Resolve the caller from the cron secret header or a bearer token."""
    cfg = get_config()
    if cron_secret is not None:
        caller = cron_caller(cron_secret, cfg.CRON_SECRET)
    else:
        caller = from_claims(decode_jwt(token=_extract_bearer_token(authorization), secret=cfg.JWT_SECRET))
    require_scopes(caller.role, scopes)
    return caller


def map_error(exc: Exception) -> tuple[int, str]:
    if isinstance(exc, AuthenticationError):
        return status.HTTP_401_UNAUTHORIZED, str(exc)
    if isinstance(exc, AuthorizationError):
        return status.HTTP_403_FORBIDDEN, str(exc)
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND, str(exc)
    if isinstance(exc, ConfigurationError):
        return status.HTTP_400_BAD_REQUEST, str(exc)
    if isinstance(exc, ValidationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc)
    if isinstance(exc, ExternalPlatformError):
        return exc.status_code, exc.message
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal error."


def raise_http(exc: FunnelboardException) -> NoReturn:
    code, detail = map_error(exc)
    raise HTTPException(status_code=code, detail=detail) from exc


def platform_error_response(exc: ExternalPlatformError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "code": exc.code})


def rejection_response(body: dict, retry_after_seconds: int | None) -> JSONResponse:
    headers = {"Retry-After": str(retry_after_seconds)} if retry_after_seconds else None
    return JSONResponse(status_code=status.HTTP_429_TOO_MANY_REQUESTS, content=body, headers=headers)
