from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, inspect

import funnelboard.models  # noqa: F401
from funnelboard.database.init_db import init_db
from funnelboard.models import Base

EXPECTED_TABLES = {
    "clients",
    "pipelines",
    "pipeline_stages",
    "crm_calendars",
    "calendar_events",
    "crm_users",
    "opportunities",
    "location_predefinitions",
    "ads_daily_insights",
}


def test_model_metadata_contains_reporting_tables():
    assert EXPECTED_TABLES == set(Base.metadata.tables.keys())


def test_migration_declares_every_model_table():
    content = Path("migrations/versions/20261018_0001_reporting_schema.py").read_text(encoding="utf-8")
    for table in EXPECTED_TABLES:
        assert f'"{table}",' in content


def test_init_db_upgrades_empty_database(tmp_path):
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    init_db(url)

    engine = create_engine(url)
    try:
        inspector = inspect(engine)
        assert EXPECTED_TABLES <= set(inspector.get_table_names())
        index_names = {index["name"] for index in inspector.get_indexes("location_predefinitions")}
        assert "uq_predefinition_active_key" in index_names
    finally:
        engine.dispose()
