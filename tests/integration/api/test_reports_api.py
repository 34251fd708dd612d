from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

from funnelboard.auth.jwt import create_access_token
from funnelboard.core.config import get_config
from funnelboard.main import app
from funnelboard.models import AdDailyInsight, Opportunity

REPORTS_URL = f"{get_config().API_PREFIX}/reports"
MARCH_START = 1709251200000
MARCH_END = 1711929599999


def _auth(role: str, client_id: int | None = None) -> dict:
    token = create_access_token(user_id=2, role=role, secret=get_config().JWT_SECRET, client_id=client_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def seeded(session, make_client):
    make_client(1)
    session.add_all(
        [
            Opportunity(
                client_id=1,
                external_id="o1",
                pipeline_external_id="p1",
                status="won",
                monetary_value=1000.0,
                source="Website",
                date_added=datetime(2024, 3, 5, 15, 0, tzinfo=timezone.utc),
            ),
            Opportunity(
                client_id=1,
                external_id="o2",
                pipeline_external_id="p2",
                status="open",
                source="Referral",
                date_added=datetime(2024, 3, 20, 15, 0, tzinfo=timezone.utc),
            ),
            AdDailyInsight(client_id=1, date=date(2024, 3, 10), ad_id="ad1", spend=100.0),
            AdDailyInsight(client_id=1, date=date(2024, 2, 10), ad_id="ad1", spend=40.0),
        ]
    )
    session.commit()


def test_indicators_for_period(seeded):
    response = TestClient(app).get(
        f"{REPORTS_URL}/indicators",
        params={"start": MARCH_START, "end": MARCH_END},
        headers=_auth("viewer", client_id=1),
    )
    assert response.status_code == 200
    body = response.json()
    indicators = body["indicators"]
    assert body["period"] == {"start": MARCH_START, "end": MARCH_END}
    assert body["errors"] == []
    assert indicators["leads_qualified"] == 2
    assert indicators["sales"] == 1
    assert indicators["revenue"] == 1000.0
    assert indicators["investment"] == 100.0
    assert indicators["roas"] == 10.0
    assert body["previous_indicators"]["leads_qualified"] == 0


def test_indicators_pipeline_filter(seeded):
    response = TestClient(app).get(
        f"{REPORTS_URL}/indicators",
        params={"start": MARCH_START, "end": MARCH_END, "pipeline_ids": "p2"},
        headers=_auth("viewer", client_id=1),
    )
    assert response.json()["indicators"]["leads_qualified"] == 1
    assert response.json()["indicators"]["sales"] == 0


def test_investment_includes_previous_window(seeded):
    response = TestClient(app).get(
        f"{REPORTS_URL}/investment",
        params={"client_id": 1, "start": MARCH_START, "end": MARCH_END},
        headers=_auth("admin"),
    )
    assert response.status_code == 200
    assert response.json() == {"total": 100.0, "previous_total": 40.0}


def test_extra_report_breakdowns(seeded):
    api = TestClient(app)
    response = api.get(
        f"{REPORTS_URL}/extra",
        params={"start": MARCH_START, "end": MARCH_END},
        headers=_auth("client", client_id=1),
    )
    assert response.status_code == 200
    body = response.json()
    assert {row["name"] for row in body["by_source"]} == {"Website", "Referral"}
    assert {dim["id"] for dim in body["available_dimensions"]} >= {"source", "responsible"}

    bad_dim = api.get(
        f"{REPORTS_URL}/extra",
        params={"start": MARCH_START, "end": MARCH_END, "row_dim": "planet"},
        headers=_auth("client", client_id=1),
    )
    assert bad_dim.status_code == 422


def test_missing_period_is_bad_request(seeded):
    response = TestClient(app).get(f"{REPORTS_URL}/indicators", headers=_auth("viewer", client_id=1))
    assert response.status_code == 400


def test_viewer_cannot_read_another_client(seeded, make_client):
    make_client(2)
    response = TestClient(app).get(
        f"{REPORTS_URL}/indicators",
        params={"client_id": 2, "start": MARCH_START, "end": MARCH_END},
        headers=_auth("viewer", client_id=1),
    )
    assert response.status_code == 403
