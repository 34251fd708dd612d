"""Sync request schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SyncRequest(BaseModel):
    client_id: int | None = Field(default=None, ge=1)
    mode: str | None = Field(default=None, max_length=40)
    modules: list[str] | None = None
    full_sync: bool = False


class AdsSyncRequest(BaseModel):
    client_id: int | None = Field(default=None, ge=1)
    date_start: str | None = Field(default=None, max_length=20)
    date_end: str | None = Field(default=None, max_length=20)
