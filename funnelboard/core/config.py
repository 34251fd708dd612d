"""Configuration module for the funnelboard application."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from funnelboard.core.exceptions import ConfigurationError

load_dotenv()


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Runtime configuration with validation."""

    APP_NAME: str
    APP_VERSION: str
    ENV: str
    DEBUG: bool
    DATABASE_URL: str
    DB_CONNECTIVITY_REQUIRED: bool
    CRM_BASE_URL: str
    CRM_API_VERSION: str
    CRM_TIMEOUT_SECONDS: int
    CRM_MAX_RETRIES: int
    CRM_MIN_INTERVAL_SECONDS: float
    ADS_GRAPH_URL: str
    ADS_API_VERSION: str
    ADS_TIMEOUT_SECONDS: int
    REPORT_TIMEZONE: str
    SYNC_BATCH_SIZE: int
    SYNC_ENRICH_BATCH: int
    SYNC_MAX_WORKERS: int
    SYNC_ADMIN_COOLDOWN_SECONDS: int
    SYNC_USER_COOLDOWN_SECONDS: int
    SYNC_USER_MAX_ROWS: int
    ADS_SYNC_COOLDOWN_SECONDS: int
    NIGHT_PAUSE_START_HOUR: int
    NIGHT_PAUSE_END_HOUR: int
    CRON_SECRET: str | None
    JWT_SECRET: str
    JWT_ACCESS_TTL_MINUTES: int
    JWT_PERMISSIONS_VERSION: int
    REDIS_URL: str
    CELERY_BROKER_URL: str
    CELERY_RESULT_BACKEND: str
    API_HOST: str
    API_PORT: int
    API_PREFIX: str
    LOG_LEVEL: str
    LOG_FILE: str

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"


def _build_config(env: str | None = None) -> Config:
    resolved_env = (env or os.getenv("ENV", "development")).strip().lower()
    debug = _as_bool(os.getenv("DEBUG"), default=(resolved_env != "production"))
    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    config = Config(
        APP_NAME="funnelboard",
        APP_VERSION=os.getenv("APP_VERSION", "1.0.0"),
        ENV=resolved_env,
        DEBUG=debug if resolved_env != "production" else False,
        DATABASE_URL=os.getenv("DATABASE_URL", "sqlite:///./funnelboard.db"),
        DB_CONNECTIVITY_REQUIRED=_as_bool(
            os.getenv("DB_CONNECTIVITY_REQUIRED"), default=(resolved_env == "production")
        ),
        CRM_BASE_URL=os.getenv("CRM_BASE_URL", "https://services.leadconnectorhq.com").rstrip("/"),
        CRM_API_VERSION=os.getenv("CRM_API_VERSION", "2021-07-28"),
        CRM_TIMEOUT_SECONDS=int(os.getenv("CRM_TIMEOUT_SECONDS", "30")),
        CRM_MAX_RETRIES=int(os.getenv("CRM_MAX_RETRIES", "2")),
        CRM_MIN_INTERVAL_SECONDS=float(os.getenv("CRM_MIN_INTERVAL_SECONDS", "0")),
        ADS_GRAPH_URL=os.getenv("ADS_GRAPH_URL", "https://graph.facebook.com").rstrip("/"),
        ADS_API_VERSION=os.getenv("ADS_API_VERSION", "v21.0"),
        ADS_TIMEOUT_SECONDS=int(os.getenv("ADS_TIMEOUT_SECONDS", "60")),
        REPORT_TIMEZONE=os.getenv("REPORT_TIMEZONE", "America/Sao_Paulo"),
        SYNC_BATCH_SIZE=int(os.getenv("SYNC_BATCH_SIZE", "200")),
        SYNC_ENRICH_BATCH=int(os.getenv("SYNC_ENRICH_BATCH", "10")),
        SYNC_MAX_WORKERS=int(os.getenv("SYNC_MAX_WORKERS", "4")),
        SYNC_ADMIN_COOLDOWN_SECONDS=int(os.getenv("SYNC_ADMIN_COOLDOWN_SECONDS", "300")),
        SYNC_USER_COOLDOWN_SECONDS=int(os.getenv("SYNC_USER_COOLDOWN_SECONDS", "120")),
        SYNC_USER_MAX_ROWS=int(os.getenv("SYNC_USER_MAX_ROWS", "3000")),
        ADS_SYNC_COOLDOWN_SECONDS=int(os.getenv("ADS_SYNC_COOLDOWN_SECONDS", "300")),
        NIGHT_PAUSE_START_HOUR=int(os.getenv("NIGHT_PAUSE_START_HOUR", "21")),
        NIGHT_PAUSE_END_HOUR=int(os.getenv("NIGHT_PAUSE_END_HOUR", "6")),
        CRON_SECRET=os.getenv("CRON_SECRET") or None,
        JWT_SECRET=os.getenv("JWT_SECRET", "change_me_jwt_secret"),
        JWT_ACCESS_TTL_MINUTES=int(os.getenv("JWT_ACCESS_TTL_MINUTES", "60")),
        JWT_PERMISSIONS_VERSION=int(os.getenv("JWT_PERMISSIONS_VERSION", "1")),
        REDIS_URL=redis_url,
        CELERY_BROKER_URL=os.getenv("CELERY_BROKER_URL", redis_url),
        CELERY_RESULT_BACKEND=os.getenv("CELERY_RESULT_BACKEND", redis_url),
        API_HOST=os.getenv("API_HOST", "0.0.0.0"),
        API_PORT=int(os.getenv("API_PORT", "8000")),
        API_PREFIX=os.getenv("API_PREFIX", "/api/v1"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
        LOG_FILE=os.getenv("LOG_FILE", "funnelboard.log"),
    )
    _validate_config(config)
    return config


def _validate_database_url(database_url: str) -> None:
    parsed = urlparse(database_url)
    if parsed.scheme not in {"sqlite", "postgresql", "postgresql+psycopg2"}:
        raise ConfigurationError(
            "DATABASE_URL must use sqlite:// or postgresql:// style URL."
        )
    if parsed.scheme.startswith("postgresql") and not parsed.hostname:
        raise ConfigurationError("PostgreSQL DATABASE_URL is missing hostname.")


def _validate_config(config: Config) -> None:
    _validate_database_url(config.DATABASE_URL)

    if config.CRM_TIMEOUT_SECONDS < 1 or config.ADS_TIMEOUT_SECONDS < 1:
        raise ConfigurationError("CRM_TIMEOUT_SECONDS and ADS_TIMEOUT_SECONDS must be >= 1.")
    if config.CRM_MAX_RETRIES < 0:
        raise ConfigurationError("CRM_MAX_RETRIES must be >= 0.")
    if config.CRM_MIN_INTERVAL_SECONDS < 0:
        raise ConfigurationError("CRM_MIN_INTERVAL_SECONDS must be >= 0.")
    if not 1 <= config.SYNC_BATCH_SIZE <= 1000:
        raise ConfigurationError("SYNC_BATCH_SIZE must be between 1 and 1000.")
    if config.SYNC_ENRICH_BATCH < 1 or config.SYNC_MAX_WORKERS < 1:
        raise ConfigurationError("SYNC_ENRICH_BATCH and SYNC_MAX_WORKERS must be >= 1.")
    if min(
        config.SYNC_ADMIN_COOLDOWN_SECONDS,
        config.SYNC_USER_COOLDOWN_SECONDS,
        config.ADS_SYNC_COOLDOWN_SECONDS,
    ) < 0:
        raise ConfigurationError("Sync cooldowns must be >= 0.")
    if config.SYNC_USER_MAX_ROWS < 1:
        raise ConfigurationError("SYNC_USER_MAX_ROWS must be >= 1.")
    if not (0 <= config.NIGHT_PAUSE_START_HOUR <= 23 and 0 <= config.NIGHT_PAUSE_END_HOUR <= 23):
        raise ConfigurationError("NIGHT_PAUSE_*_HOUR must be between 0 and 23.")
    try:
        ZoneInfo(config.REPORT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown REPORT_TIMEZONE: {config.REPORT_TIMEZONE}") from exc
    if config.JWT_ACCESS_TTL_MINUTES < 1:
        raise ConfigurationError("JWT_ACCESS_TTL_MINUTES must be >= 1.")
    if config.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigurationError("LOG_LEVEL must be one of DEBUG/INFO/WARNING/ERROR/CRITICAL.")
    if config.is_production and "change_me" in config.DATABASE_URL.lower():
        raise ConfigurationError("Production DATABASE_URL uses placeholder credentials.")
    if config.is_production and "change_me" in config.JWT_SECRET.lower():
        raise ConfigurationError("Production JWT_SECRET uses placeholder value.")


@lru_cache(maxsize=8)
def get_config(env: str | None = None) -> Config:
    """Get validated configuration for the requested environment."""
    return _build_config(env)
