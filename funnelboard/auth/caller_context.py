"""Caller identity and client scoping for API handlers and scheduled jobs."""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any

from funnelboard.auth.rbac import ROLE_ADMIN, ROLE_CRON, has_scopes
from funnelboard.core.exceptions import AuthenticationError, AuthorizationError, ValidationError


@dataclass(frozen=True)
class CallerContext:
    user_id: str
    role: str
    client_id: int | None = None
    permissions_version: int = 1

    @property
    def is_cron(self) -> bool:
        return self.role == ROLE_CRON

    @property
    def privileged(self) -> bool:
        return self.role == ROLE_ADMIN or has_scopes(self.role, ["sync.privileged"])

    def resolve_client(self, requested_client_id: int | None) -> int:
        """Bound callers may only address their own client; privileged ones must name one."""
        if self.privileged:
            resolved = requested_client_id if requested_client_id is not None else self.client_id
            if resolved is None:
                raise ValidationError("client_id is required.")
            return int(resolved)

        if self.client_id is None:
            raise AuthorizationError("Caller is not linked to a client.")
        if requested_client_id is not None and int(requested_client_id) != int(self.client_id):
            raise AuthorizationError("Cross-client access denied.")
        return int(self.client_id)


def from_claims(claims: dict[str, Any]) -> CallerContext:
    try:
        user_id = str(claims["sub"])
        role = str(claims["role"]).lower()
    except KeyError as exc:
        raise AuthenticationError("Token claims are missing user context.") from exc

    raw_client = claims.get("client_id")
    try:
        client_id = int(raw_client) if raw_client is not None else None
    except (TypeError, ValueError) as exc:
        raise AuthenticationError("Token client_id claim is invalid.") from exc
    if role == ROLE_CRON:
        raise AuthenticationError("Scheduled callers authenticate with the cron secret.")

    return CallerContext(
        user_id=user_id,
        role=role,
        client_id=client_id,
        permissions_version=int(claims.get("permissions_version", 1)),
    )


def cron_caller(provided_secret: str | None, expected_secret: str | None) -> CallerContext:
    if not expected_secret:
        raise AuthenticationError("Cron secret is not configured.")
    if not provided_secret or not hmac.compare_digest(provided_secret, expected_secret):
        raise AuthenticationError("Invalid cron secret.")
    return CallerContext(user_id="cron", role=ROLE_CRON)
