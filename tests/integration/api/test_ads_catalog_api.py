from __future__ import annotations

from fastapi.testclient import TestClient

from funnelboard.api.v1 import ads as ads_api
from funnelboard.auth.jwt import create_access_token
from funnelboard.core.config import get_config
from funnelboard.core.exceptions import AdsApiError
from funnelboard.integrations.ads_client import TOKEN_EXPIRED_MESSAGE
from funnelboard.main import app
from funnelboard.services.ads_sync_service import AdsSyncService

ADS_URL = f"{get_config().API_PREFIX}/ads"


class CatalogAds:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.campaign_requests: list[tuple[str, str | None]] = []

    def list_ad_accounts(self):
        if self.error is not None:
            raise self.error
        return [{"id": "act_123456", "name": "Main account", "account_id": "123456", "account_status": 1}]

    def list_campaigns(self, ad_account_id, status=None):
        self.campaign_requests.append((ad_account_id, status))
        return [{"id": "cmp-1", "name": "Spring", "status": "ACTIVE"}]


def _auth(role: str, client_id: int | None = 1) -> dict:
    token = create_access_token(user_id=4, role=role, secret=get_config().JWT_SECRET, client_id=client_id)
    return {"Authorization": f"Bearer {token}"}


def _stub_ads(monkeypatch, ads: CatalogAds) -> None:
    monkeypatch.setattr(ads_api, "AdsSyncService", lambda db: AdsSyncService(db=db, ads_client_factory=lambda token: ads))


def test_lists_ad_accounts(session, make_client, monkeypatch):
    make_client(1)
    _stub_ads(monkeypatch, CatalogAds())
    response = TestClient(app).get(f"{ADS_URL}/accounts", headers=_auth("client"))
    assert response.status_code == 200
    assert response.json()["accounts"][0]["id"] == "act_123456"


def test_campaigns_default_to_configured_account(session, make_client, monkeypatch):
    make_client(1)
    ads = CatalogAds()
    _stub_ads(monkeypatch, ads)
    api = TestClient(app)

    default = api.get(f"{ADS_URL}/campaigns", headers=_auth("client"))
    assert default.status_code == 200
    assert default.json()["campaigns"][0]["name"] == "Spring"

    api.get(f"{ADS_URL}/campaigns", params={"ad_account_id": "999", "status": "ACTIVE"}, headers=_auth("client"))
    assert ads.campaign_requests == [("123456", None), ("999", "ACTIVE")]


def test_expired_token_keeps_platform_status(session, make_client, monkeypatch):
    make_client(1)
    _stub_ads(monkeypatch, CatalogAds(error=AdsApiError(TOKEN_EXPIRED_MESSAGE, 401, code=190)))
    response = TestClient(app).get(f"{ADS_URL}/accounts", headers=_auth("client"))
    assert response.status_code == 401
    assert response.json() == {"error": TOKEN_EXPIRED_MESSAGE, "code": 190}


def test_catalog_requires_ads_token_and_scope(session, make_client, monkeypatch):
    make_client(1, ads_access_token=None)
    _stub_ads(monkeypatch, CatalogAds())
    api = TestClient(app)

    assert api.get(f"{ADS_URL}/accounts", headers=_auth("client")).status_code == 400
    assert api.get(f"{ADS_URL}/accounts", headers=_auth("viewer")).status_code == 403
