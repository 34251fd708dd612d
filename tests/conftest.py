from __future__ import annotations

from contextlib import contextmanager

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import funnelboard.database.db as database
from funnelboard.models import Base, Client
from funnelboard.services import rate_guard


@pytest.fixture
def session_factory(tmp_path, monkeypatch):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'funnelboard_test.db'}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    @contextmanager
    def _get_db_session():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(database, "get_db_session", _get_db_session)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture
def session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def _reset_rate_guard():
    rate_guard.get_rate_guard().reset()
    yield
    rate_guard.get_rate_guard().reset()


@pytest.fixture
def make_client(session):
    def _make(client_id: int = 1, **overrides) -> Client:
        values = {
            "id": client_id,
            "name": f"Client {client_id}",
            "crm_api_key": "crm-key",
            "crm_location_id": f"loc-{client_id}",
            "ads_access_token": "ads-token",
            "ads_account_id": "123456",
            "is_active": True,
        }
        values.update(overrides)
        client = Client(**values)
        session.add(client)
        session.commit()
        return client

    return _make


@pytest.fixture
def client_row(make_client):
    return make_client()
