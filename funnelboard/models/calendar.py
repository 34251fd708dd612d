"""CRM calendar and calendar event models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from funnelboard.models.base import AuditMixin, Base, ClientScopedMixin


class CrmCalendar(Base, AuditMixin, ClientScopedMixin):
    __tablename__ = "crm_calendars"
    __table_args__ = (UniqueConstraint("client_id", "external_id", name="uq_calendar_client_external"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    external_id: Mapped[str] = mapped_column(String(120), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class CalendarEvent(Base, AuditMixin, ClientScopedMixin):
    __tablename__ = "calendar_events"
    __table_args__ = (
        UniqueConstraint("client_id", "external_id", name="uq_event_client_external"),
        Index("idx_event_client_start", "client_id", "start_time"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    external_id: Mapped[str] = mapped_column(String(120), nullable=False)
    calendar_external_id: Mapped[str | None] = mapped_column(String(120))
    title: Mapped[str | None] = mapped_column(String(500))
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str | None] = mapped_column(String(50))
    contact_id: Mapped[str | None] = mapped_column(String(120), index=True)
    assigned_user_id: Mapped[str | None] = mapped_column(String(120))
    notes: Mapped[str | None] = mapped_column(Text)
    source: Mapped[str | None] = mapped_column(String(255))
    date_added: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    date_updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
