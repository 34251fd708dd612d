from __future__ import annotations

from datetime import timedelta

import pytest

from funnelboard.auth.caller_context import CallerContext, cron_caller, from_claims
from funnelboard.auth.jwt import create_access_token, decode_jwt, encode_jwt
from funnelboard.auth.rbac import has_scopes, require_scopes
from funnelboard.core.exceptions import AuthenticationError, AuthorizationError, ValidationError


def test_access_token_roundtrip_carries_client_binding():
    token = create_access_token(user_id=10, role="client", secret="test-secret", client_id=3)
    claims = decode_jwt(token, secret="test-secret")
    assert claims["sub"] == "10"
    assert claims["role"] == "client"
    assert claims["client_id"] == 3
    assert {"exp", "iat", "jti"} <= set(claims)


def test_tampered_or_expired_tokens_are_rejected():
    token = create_access_token(user_id=1, role="admin", secret="test-secret")
    with pytest.raises(AuthenticationError):
        decode_jwt(token, secret="other-secret")
    with pytest.raises(AuthenticationError):
        decode_jwt("not-a-token", secret="test-secret")

    expired = encode_jwt({"sub": "1", "role": "admin"}, secret="test-secret", ttl=timedelta(minutes=-5))
    with pytest.raises(AuthenticationError, match="expired"):
        decode_jwt(expired, secret="test-secret")


def test_rbac_scopes():
    assert has_scopes("admin", ["anything"])
    assert has_scopes("cron", ["sync.privileged"])
    require_scopes("viewer", ["reports.read"])
    with pytest.raises(AuthorizationError):
        require_scopes("viewer", ["sync.run"])
    with pytest.raises(AuthorizationError):
        require_scopes("unknown-role", ["reports.read"])


def test_bound_caller_is_limited_to_own_client():
    caller = CallerContext(user_id="7", role="client", client_id=3)
    assert not caller.privileged
    assert caller.resolve_client(None) == 3
    assert caller.resolve_client(3) == 3
    with pytest.raises(AuthorizationError):
        caller.resolve_client(4)
    with pytest.raises(AuthorizationError):
        CallerContext(user_id="8", role="client").resolve_client(3)


def test_privileged_caller_must_name_a_client():
    admin = CallerContext(user_id="1", role="admin")
    assert admin.privileged
    assert admin.resolve_client(9) == 9
    with pytest.raises(ValidationError):
        admin.resolve_client(None)


def test_claims_cannot_impersonate_the_scheduler():
    with pytest.raises(AuthenticationError):
        from_claims({"sub": "1", "role": "cron"})
    with pytest.raises(AuthenticationError):
        from_claims({"sub": "1"})
    with pytest.raises(AuthenticationError):
        from_claims({"sub": "1", "role": "client", "client_id": "abc"})
    assert from_claims({"sub": "1", "role": "Client", "client_id": "5"}).client_id == 5


def test_cron_secret_checks():
    caller = cron_caller("s3cret", "s3cret")
    assert caller.is_cron
    assert caller.privileged
    with pytest.raises(AuthenticationError):
        cron_caller("wrong", "s3cret")
    with pytest.raises(AuthenticationError):
        cron_caller("s3cret", None)
