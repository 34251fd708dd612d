"""Role-based authorization helpers."""

from __future__ import annotations

from funnelboard.core.exceptions import AuthorizationError

ROLE_ADMIN = "admin"
ROLE_CRON = "cron"

# Scope strings are kept explicit for endpoint-level declarations.
ROLE_SCOPES: dict[str, set[str]] = {
    ROLE_ADMIN: {
        "*",
    },
    ROLE_CRON: {
        "sync.run",
        "sync.privileged",
        "ads.sync",
    },
    "client": {
        "sync.run",
        "ads.sync",
        "ads.read",
        "reports.read",
        "predefinitions.read",
        "predefinitions.write",
    },
    "viewer": {
        "reports.read",
        "predefinitions.read",
    },
}


def get_scopes_for_role(role: str) -> set[str]:
    return ROLE_SCOPES.get(role.lower(), set())


def has_scopes(role: str, required_scopes: list[str] | set[str] | tuple[str, ...]) -> bool:
    """Check if role includes every required scope."""
    granted = get_scopes_for_role(role)
    if "*" in granted:
        return True
    return set(required_scopes).issubset(granted)


def require_scopes(role: str, required_scopes: list[str] | set[str] | tuple[str, ...]) -> None:
    if has_scopes(role=role, required_scopes=required_scopes):
        return
    missing = sorted(set(required_scopes) - get_scopes_for_role(role))
    raise AuthorizationError(f"Missing required scopes: {', '.join(missing)}")
