"""Structured logging helpers for sync runs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class SyncLogContext:
    """Context fields attached to every log line of one sync run."""

    client_id: str | None = None
    mode: str | None = None
    run_id: str | None = None


def build_log_event(event: str, context: SyncLogContext, **fields: Any) -> dict[str, Any]:
    """Build the ``extra`` payload for a structured log call."""
    payload: dict[str, Any] = {
        "event": event,
        "client_id": context.client_id,
        "mode": context.mode,
        "run_id": context.run_id,
    }
    payload.update(fields)
    return payload
