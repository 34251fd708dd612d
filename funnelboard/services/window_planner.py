"""Time windows and filter axes for each sync mode."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from funnelboard.core.enums import FilterAxis, SyncMode
from funnelboard.services.payload_normalizer import CREATED_AT_KEYS, UPDATED_AT_KEYS

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS
INCREMENTAL_LOOKBACK_MS = HOUR_MS
INCREMENTAL_EVENT_LOOKBACK_MS = 7 * DAY_MS
NORMAL_MIN_LOOKBACK_MS = 90 * DAY_MS
FULL_EVENT_LOOKBACK_MS = 2 * 365 * DAY_MS
FULL_EVENT_LOOKAHEAD_MS = 365 * DAY_MS

# Event payloads have no server-side "updated" filter; daily reprocess
# falls back to creation keys when an event was never updated.
DAILY_EVENT_TOUCH_KEYS = ("dateUpdated", "date_updated", "dateAdded", "createdAt")


@dataclass(frozen=True)
class ClientSyncState:
    """What the store already holds for a client, used by the normal mode."""

    last_opportunity_added_ms: int | None = None
    last_event_start_ms: int | None = None


@dataclass(frozen=True)
class OpportunityFilter:
    axis: FilterAxis | None
    since_ms: int | None
    until_ms: int | None

    @property
    def unbounded(self) -> bool:
        return self.axis is None


@dataclass(frozen=True)
class EventFilter:
    """Fetch window on start time plus an optional in-process touch filter."""

    since_ms: int
    until_ms: int
    touched_keys: tuple[str, ...] | None = None
    touched_since_ms: int | None = None
    touched_until_ms: int | None = None


@dataclass(frozen=True)
class SyncPlan:
    mode: SyncMode
    opportunities: OpportunityFilter
    events: EventFilter


def _ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def yesterday_bounds_ms(now: datetime, tz_name: str) -> tuple[int, int]:
    """Yesterday 00:00:00.000 to 23:59:59.999 in ``tz_name``, as epoch ms."""
    tz = ZoneInfo(tz_name)
    local_today = now.astimezone(tz).date()
    yesterday = local_today - timedelta(days=1)
    start = datetime(yesterday.year, yesterday.month, yesterday.day, tzinfo=tz)
    end = datetime(local_today.year, local_today.month, local_today.day, tzinfo=tz)
    return _ms(start), _ms(end) - 1


def plan(mode: SyncMode, state: ClientSyncState | None = None, now: datetime | None = None, tz_name: str = "America/Sao_Paulo") -> SyncPlan:
    """Compute the opportunity and event windows for one run."""
    state = state or ClientSyncState()
    now = now or datetime.now(timezone.utc)
    now_ms = _ms(now)

    if mode is SyncMode.INCREMENTAL:
        since_ms = now_ms - INCREMENTAL_LOOKBACK_MS
        return SyncPlan(
            mode=mode,
            opportunities=OpportunityFilter(axis=FilterAxis.UPDATED, since_ms=since_ms, until_ms=now_ms),
            events=EventFilter(
                since_ms=now_ms - INCREMENTAL_EVENT_LOOKBACK_MS,
                until_ms=now_ms + DAY_MS,
                touched_keys=UPDATED_AT_KEYS,
                touched_since_ms=since_ms,
                touched_until_ms=now_ms,
            ),
        )

    if mode is SyncMode.DAILY_REPROCESS:
        day_start, day_end = yesterday_bounds_ms(now, tz_name)
        return SyncPlan(
            mode=mode,
            opportunities=OpportunityFilter(axis=FilterAxis.UPDATED, since_ms=day_start, until_ms=day_end),
            events=EventFilter(
                since_ms=day_start - DAY_MS,
                until_ms=day_end + DAY_MS,
                touched_keys=DAILY_EVENT_TOUCH_KEYS,
                touched_since_ms=day_start,
                touched_until_ms=day_end,
            ),
        )

    if mode is SyncMode.FULL:
        return SyncPlan(
            mode=mode,
            opportunities=OpportunityFilter(axis=None, since_ms=None, until_ms=None),
            events=EventFilter(since_ms=now_ms - FULL_EVENT_LOOKBACK_MS, until_ms=now_ms + FULL_EVENT_LOOKAHEAD_MS),
        )

    floor_ms = now_ms - NORMAL_MIN_LOOKBACK_MS
    opp_since = floor_ms if state.last_opportunity_added_ms is None else min(state.last_opportunity_added_ms, floor_ms)
    event_since = floor_ms if state.last_event_start_ms is None else min(state.last_event_start_ms, floor_ms)
    return SyncPlan(
        mode=SyncMode.NORMAL,
        opportunities=OpportunityFilter(axis=FilterAxis.CREATED, since_ms=opp_since, until_ms=now_ms),
        events=EventFilter(since_ms=event_since, until_ms=now_ms + DAY_MS),
    )


def axis_keys(axis: FilterAxis) -> tuple[str, ...]:
    return UPDATED_AT_KEYS if axis is FilterAxis.UPDATED else CREATED_AT_KEYS
