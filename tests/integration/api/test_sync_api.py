from __future__ import annotations

from dataclasses import replace

from fastapi.testclient import TestClient
from sqlalchemy import select

from funnelboard.api.v1 import _authz
from funnelboard.api.v1 import sync as sync_api
from funnelboard.auth.jwt import create_access_token
from funnelboard.core.config import get_config
from funnelboard.main import app
from funnelboard.models import Pipeline
from funnelboard.services.rate_guard import REASON_COOLDOWN
from funnelboard.services.sync_service import SyncService

SYNC_URL = f"{get_config().API_PREFIX}/sync"


class StubCrm:
    def list_pipelines(self):
        return [{"id": "p1", "name": "Sales"}]

    def list_pipeline_stages(self, pipeline_id):
        return [{"id": "s1", "name": "New"}]

    def list_calendars(self):
        return []

    def list_users(self):
        return []

    def search_opportunities(self, since_ms=None, until_ms=None, filter_by=None):
        return []

    def list_events_for_calendars(self, calendar_ids, start_ms, end_ms):
        return []


def _auth(role: str, client_id: int | None = None) -> dict:
    token = create_access_token(user_id=1, role=role, secret=get_config().JWT_SECRET, client_id=client_id)
    return {"Authorization": f"Bearer {token}"}


def _stub_sync(monkeypatch):
    crm = StubCrm()
    monkeypatch.setattr(sync_api, "SyncService", lambda db: SyncService(db=db, crm_client_factory=lambda k, l: crm))


def test_sync_requires_authentication(session_factory):
    response = TestClient(app).post(SYNC_URL, json={"client_id": 1})
    assert response.status_code == 401
    assert "Authorization" in response.json()["detail"]


def test_client_user_sync_then_cooldown(session, make_client, monkeypatch):
    make_client(1)
    _stub_sync(monkeypatch)
    api = TestClient(app)

    first = api.post(SYNC_URL, json={}, headers=_auth("client", client_id=1))
    assert first.status_code == 200
    assert first.json()["ok"] is True
    assert first.json()["mode"] == "incremental_1h"
    assert session.scalars(select(Pipeline.external_id)).all() == ["p1"]

    second = api.post(SYNC_URL, json={}, headers=_auth("client", client_id=1))
    assert second.status_code == 429
    assert second.json()["code"] == REASON_COOLDOWN
    assert int(second.headers["Retry-After"]) > 0


def test_client_user_cannot_escalate(session, make_client, monkeypatch):
    make_client(1)
    make_client(2)
    _stub_sync(monkeypatch)
    api = TestClient(app)

    full = api.post(SYNC_URL, json={"mode": "full"}, headers=_auth("client", client_id=1))
    assert full.status_code == 403

    other = api.post(SYNC_URL, json={"client_id": 2}, headers=_auth("client", client_id=1))
    assert other.status_code == 403


def test_admin_runs_full_sync_for_named_client(session, make_client, monkeypatch):
    make_client(4)
    _stub_sync(monkeypatch)
    api = TestClient(app)

    missing_client = api.post(SYNC_URL, json={"mode": "full"}, headers=_auth("admin"))
    assert missing_client.status_code == 422

    response = api.post(SYNC_URL, json={"client_id": 4, "full_sync": True}, headers=_auth("admin"))
    assert response.status_code == 200
    assert response.json()["mode"] == "full"


def test_unknown_mode_and_unknown_client(session, make_client, monkeypatch):
    make_client(1)
    _stub_sync(monkeypatch)
    api = TestClient(app)

    bad_mode = api.post(SYNC_URL, json={"client_id": 1, "mode": "weekly"}, headers=_auth("admin"))
    assert bad_mode.status_code == 422

    unknown = api.post(SYNC_URL, json={"client_id": 99}, headers=_auth("admin"))
    assert unknown.status_code == 404


def test_client_without_crm_credentials_is_rejected(session, make_client, monkeypatch):
    make_client(1, crm_api_key=None)
    _stub_sync(monkeypatch)
    response = TestClient(app).post(SYNC_URL, json={}, headers=_auth("client", client_id=1))
    assert response.status_code == 400


def test_cron_secret_bypasses_cooldown(session, make_client, monkeypatch):
    make_client(1)
    _stub_sync(monkeypatch)
    monkeypatch.setattr(_authz, "get_config", lambda: replace(get_config(), CRON_SECRET="s3cret"))
    api = TestClient(app)

    for _ in range(2):
        response = api.post(SYNC_URL, json={"client_id": 1}, headers={"X-Cron-Secret": "s3cret"})
        assert response.status_code == 200

    wrong = api.post(SYNC_URL, json={"client_id": 1}, headers={"X-Cron-Secret": "nope"})
    assert wrong.status_code == 401


def test_viewer_cannot_sync_ads(session, make_client):
    make_client(1)
    response = TestClient(app).post(
        f"{get_config().API_PREFIX}/ads/sync", json={"client_id": 1}, headers=_auth("viewer", client_id=1)
    )
    assert response.status_code == 403
