"""Scheduled CRM reconciliation across all clients."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable
from zoneinfo import ZoneInfo

from sqlalchemy import select

from funnelboard.core.config import Config, get_config
from funnelboard.core.enums import SyncMode
from funnelboard.core.exceptions import FunnelboardException
from funnelboard.database import db as database
from funnelboard.models import Client
from funnelboard.services.sync_service import SyncCaller, SyncService
from funnelboard.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

SCHEDULER_CALLER = SyncCaller(privileged=True, bypass_cooldown=True)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def is_night_pause(now: datetime, cfg: Config | None = None) -> bool:
    """True when ``now`` falls inside the paused hours of the report timezone."""
    cfg = cfg or get_config()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    hour = now.astimezone(ZoneInfo(cfg.REPORT_TIMEZONE)).hour
    start, end = cfg.NIGHT_PAUSE_START_HOUR, cfg.NIGHT_PAUSE_END_HOUR
    if start == end:
        return False
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


def _client_ids_with_credentials() -> list[int]:
    with database.get_db_session() as session:
        clients = session.scalars(select(Client).where(Client.is_active.is_(True)).order_by(Client.id)).all()
        return [client.id for client in clients if client.has_crm_credentials]


def run_scheduled_sync(
    mode: SyncMode,
    service_factory: Callable[..., SyncService] = SyncService,
) -> dict[str, Any]:
    """Run ``mode`` for every client with CRM credentials, one session per client."""
    summary: dict[str, Any] = {"mode": mode.value, "ok": [], "failed": {}}
    for client_id in _client_ids_with_credentials():
        with database.get_db_session() as session:
            try:
                result = service_factory(db=session).run(client_id, mode=mode, caller=SCHEDULER_CALLER)
            except FunnelboardException as exc:
                summary["failed"][client_id] = str(exc)
                logger.error(
                    "sync.scheduled.client_failed",
                    extra={"event": "sync.scheduled.client_failed", "client_id": client_id, "mode": mode.value, "error": str(exc)},
                )
                continue
        if result.ok:
            summary["ok"].append(client_id)
            logger.info(
                "sync.scheduled.client_done",
                extra={
                    "event": "sync.scheduled.client_done",
                    "client_id": client_id,
                    "mode": mode.value,
                    "count": sum(result.counts.values()),
                },
            )
        else:
            summary["failed"][client_id] = "; ".join(result.errors) or str(result.status_code)
            logger.warning(
                "sync.scheduled.client_errors",
                extra={
                    "event": "sync.scheduled.client_errors",
                    "client_id": client_id,
                    "mode": mode.value,
                    "error": summary["failed"][client_id],
                },
            )
    return summary


@celery_app.task(name="sync.hourly")
def hourly_sync() -> dict[str, Any]:
    if is_night_pause(_now_utc()):
        logger.info("sync.scheduled.night_pause", extra={"event": "sync.scheduled.night_pause"})
        return {"mode": SyncMode.INCREMENTAL.value, "skipped": True}
    return run_scheduled_sync(SyncMode.INCREMENTAL)


@celery_app.task(name="sync.daily_reprocess")
def daily_reprocess_sync() -> dict[str, Any]:
    return run_scheduled_sync(SyncMode.DAILY_REPROCESS)
