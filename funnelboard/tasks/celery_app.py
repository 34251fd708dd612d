"""Celery application bootstrap."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

from funnelboard.core.config import get_config

config = get_config()

celery_app = Celery(
    "funnelboard",
    broker=config.CELERY_BROKER_URL,
    backend=config.CELERY_RESULT_BACKEND,
    include=["funnelboard.tasks.sync_tasks"],
)
celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    beat_schedule={
        "sync-hourly-incremental": {
            "task": "sync.hourly",
            "schedule": crontab(minute=0),
        },
        # 03:00 UTC is past midnight in the report timezone.
        "sync-daily-reprocess": {
            "task": "sync.daily_reprocess",
            "schedule": crontab(minute=0, hour=3),
        },
    },
)

# Local/dev convenience: run tasks synchronously when requested.
if os.getenv("CELERY_TASK_ALWAYS_EAGER", "false").lower() in {"1", "true", "yes", "on"}:
    celery_app.conf.task_always_eager = True
