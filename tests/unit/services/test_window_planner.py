from __future__ import annotations

from datetime import datetime, timezone

from funnelboard.core.enums import FilterAxis, SyncMode
from funnelboard.services import window_planner
from funnelboard.services.window_planner import DAY_MS, HOUR_MS, NORMAL_MIN_LOOKBACK_MS, ClientSyncState

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)


def test_incremental_filters_on_update_time_for_last_hour():
    plan = window_planner.plan(SyncMode.INCREMENTAL, now=NOW)
    assert plan.opportunities.axis is FilterAxis.UPDATED
    assert plan.opportunities.since_ms == NOW_MS - HOUR_MS
    assert plan.opportunities.until_ms == NOW_MS
    assert plan.events.touched_since_ms == NOW_MS - HOUR_MS
    assert plan.events.since_ms < plan.events.touched_since_ms
    assert plan.events.until_ms > NOW_MS


def test_daily_reprocess_is_yesterday_in_report_timezone():
    # 02:00 UTC on the 15th is still the 14th in Sao Paulo (UTC-3).
    now = datetime(2024, 3, 15, 2, 0, tzinfo=timezone.utc)
    plan = window_planner.plan(SyncMode.DAILY_REPROCESS, now=now, tz_name="America/Sao_Paulo")
    start = int(datetime(2024, 3, 13, 3, 0, tzinfo=timezone.utc).timestamp() * 1000)
    assert plan.opportunities.axis is FilterAxis.UPDATED
    assert plan.opportunities.since_ms == start
    assert plan.opportunities.until_ms == start + DAY_MS - 1
    assert plan.events.touched_since_ms == start


def test_full_mode_has_no_opportunity_bound():
    plan = window_planner.plan(SyncMode.FULL, now=NOW)
    assert plan.opportunities.unbounded
    assert plan.events.since_ms < NOW_MS < plan.events.until_ms
    assert plan.events.touched_keys is None


def test_normal_mode_reaches_back_to_oldest_of_state_and_floor():
    recent = ClientSyncState(last_opportunity_added_ms=NOW_MS - HOUR_MS, last_event_start_ms=None)
    plan = window_planner.plan(SyncMode.NORMAL, recent, now=NOW)
    assert plan.opportunities.axis is FilterAxis.CREATED
    assert plan.opportunities.since_ms == NOW_MS - NORMAL_MIN_LOOKBACK_MS
    assert plan.events.since_ms == NOW_MS - NORMAL_MIN_LOOKBACK_MS

    old = NOW_MS - 200 * DAY_MS
    plan = window_planner.plan(SyncMode.NORMAL, ClientSyncState(last_opportunity_added_ms=old), now=NOW)
    assert plan.opportunities.since_ms == old
