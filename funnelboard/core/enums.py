"""Enums for the funnelboard application."""

from enum import Enum


class SyncMode(Enum):
    """Time-windowing strategy of one reconciler run."""

    INCREMENTAL = "incremental_1h"
    DAILY_REPROCESS = "daily_reprocess"
    FULL = "full"
    NORMAL = "normal"

    @classmethod
    def parse(cls, value: str | None, full_sync: bool = False) -> "SyncMode":
        """Resolve a request value; ``full_sync`` is the legacy full flag."""
        if value is None or not str(value).strip():
            return cls.FULL if full_sync else cls.INCREMENTAL
        raw = str(value).strip().lower()
        if raw in {"incremental", "incremental_1h"}:
            return cls.INCREMENTAL
        for mode in cls:
            if mode.value == raw:
                return mode
        raise ValueError(f"Unknown sync mode: {value}")


class SyncModule(Enum):
    """Collections a reconciler run can touch."""

    PIPELINES = "pipelines"
    CALENDARS = "calendars"
    USERS = "users"
    OPPORTUNITIES = "opportunities"
    CALENDAR_EVENTS = "calendar_events"


DEFAULT_SYNC_MODULES = tuple(module.value for module in SyncModule)


class OpportunityStatus(Enum):
    """CRM opportunity status; only WON recognizes revenue."""

    OPEN = "open"
    WON = "won"
    LOST = "lost"
    ABANDONED = "abandoned"


class FilterAxis(Enum):
    """Timestamp an opportunity window filters on."""

    CREATED = "created"
    UPDATED = "updated"


EVENT_STATUS_SHOWED = "showed"
UNKNOWN_LABEL = "—"
UNASSIGNED_LABEL = "Não atribuído"
