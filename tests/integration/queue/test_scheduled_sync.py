from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from funnelboard.core.config import get_config
from funnelboard.core.enums import SyncMode
from funnelboard.core.exceptions import ConfigurationError
from funnelboard.services.sync_service import SyncResult
from funnelboard.tasks import sync_tasks
from funnelboard.tasks.celery_app import celery_app


@pytest.mark.parametrize(
    ("utc_hour", "utc_minute", "paused"),
    [
        (2, 0, True),  # 23:00 local
        (0, 30, True),  # 21:30 local
        (8, 59, True),  # 05:59 local
        (9, 0, False),  # 06:00 local
        (15, 0, False),  # 12:00 local
    ],
)
def test_night_pause_uses_report_timezone(utc_hour, utc_minute, paused):
    now = datetime(2024, 3, 15, utc_hour, utc_minute, tzinfo=timezone.utc)
    assert sync_tasks.is_night_pause(now) is paused


def test_night_pause_disabled_when_bounds_match():
    cfg = replace(get_config(), NIGHT_PAUSE_START_HOUR=0, NIGHT_PAUSE_END_HOUR=0)
    assert sync_tasks.is_night_pause(datetime(2024, 3, 15, 2, 0, tzinfo=timezone.utc), cfg) is False


class RecordingService:
    calls: list[tuple[int, SyncMode, bool]] = []

    def __init__(self, db=None) -> None:
        self.db = db

    def run(self, client_id, mode, caller=None):
        RecordingService.calls.append((client_id, mode, caller.bypass_cooldown))
        if client_id == 3:
            raise ConfigurationError("Client has no CRM API key or location id configured.")
        result = SyncResult(client_id=client_id, mode=mode)
        if client_id == 5:
            result.errors.append("CRM fetch: boom")
        return result


def test_run_scheduled_sync_visits_credentialed_clients(session, make_client):
    RecordingService.calls = []
    make_client(1)
    make_client(2, crm_api_key=None)
    make_client(3)
    make_client(4, is_active=False)
    make_client(5)

    summary = sync_tasks.run_scheduled_sync(SyncMode.DAILY_REPROCESS, service_factory=RecordingService)

    assert [call[0] for call in RecordingService.calls] == [1, 3, 5]
    assert all(mode is SyncMode.DAILY_REPROCESS and bypass for _, mode, bypass in RecordingService.calls)
    assert summary["mode"] == "daily_reprocess"
    assert summary["ok"] == [1]
    assert set(summary["failed"]) == {3, 5}
    assert summary["failed"][5] == "CRM fetch: boom"


def test_hourly_task_skips_during_night_pause(monkeypatch):
    monkeypatch.setattr(sync_tasks, "_now_utc", lambda: datetime(2024, 3, 15, 2, 0, tzinfo=timezone.utc))
    monkeypatch.setattr(sync_tasks, "run_scheduled_sync", lambda mode: pytest.fail("should not run"))
    assert sync_tasks.hourly_sync() == {"mode": "incremental_1h", "skipped": True}


def test_hourly_task_runs_incremental_during_the_day(monkeypatch):
    seen = []
    monkeypatch.setattr(sync_tasks, "_now_utc", lambda: datetime(2024, 3, 15, 15, 0, tzinfo=timezone.utc))
    monkeypatch.setattr(sync_tasks, "run_scheduled_sync", lambda mode: seen.append(mode) or {"mode": mode.value})
    assert sync_tasks.hourly_sync() == {"mode": "incremental_1h"}
    assert seen == [SyncMode.INCREMENTAL]


def test_beat_schedule_registers_both_jobs():
    schedule = celery_app.conf.beat_schedule
    assert {entry["task"] for entry in schedule.values()} == {"sync.hourly", "sync.daily_reprocess"}
    assert "sync.hourly" in celery_app.tasks
    assert "sync.daily_reprocess" in celery_app.tasks
