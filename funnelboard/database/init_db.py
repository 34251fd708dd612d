"""Bring the active database up to the latest schema revision."""

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config as AlembicConfig

from funnelboard.core.startup import bootstrap
from funnelboard.database import db as db_module

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def build_alembic_config(database_url: str) -> AlembicConfig:
    cfg = AlembicConfig(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", database_url)
    cfg.attributes["url_overridden"] = True
    cfg.attributes["skip_logging_config"] = True
    return cfg


def init_db(database_url: str | None = None) -> None:
    active_url = database_url or db_module.get_active_database_url()
    command.upgrade(build_alembic_config(active_url), "head")
    logger.info(
        "database.schema.upgraded",
        extra={"event": "database.schema.upgraded", "database_url_scheme": active_url.split("://", 1)[0]},
    )


if __name__ == "__main__":
    bootstrap()
    init_db()
