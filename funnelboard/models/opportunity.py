"""Opportunity fact model module."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from funnelboard.models.base import AuditMixin, Base, ClientScopedMixin


class Opportunity(Base, AuditMixin, ClientScopedMixin):
    __tablename__ = "opportunities"
    __table_args__ = (
        UniqueConstraint("client_id", "external_id", name="uq_opportunity_client_external"),
        Index("idx_opportunity_client_added", "client_id", "date_added"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    external_id: Mapped[str] = mapped_column(String(120), nullable=False)
    pipeline_external_id: Mapped[str | None] = mapped_column(String(120))
    stage_external_id: Mapped[str | None] = mapped_column(String(120))
    name: Mapped[str | None] = mapped_column(String(500))
    status: Mapped[str | None] = mapped_column(String(50))
    monetary_value: Mapped[float | None] = mapped_column(Float)
    contact_id: Mapped[str | None] = mapped_column(String(120), index=True)
    assigned_to: Mapped[str | None] = mapped_column(String(120))
    source: Mapped[str | None] = mapped_column(String(255))
    date_added: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    date_updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    sale_date_value: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    utm_source: Mapped[str | None] = mapped_column(String(500))
    utm_campaign: Mapped[str | None] = mapped_column(String(500))
    utm_medium: Mapped[str | None] = mapped_column(String(500))
    utm_term: Mapped[str | None] = mapped_column(String(500))
    utm_content: Mapped[str | None] = mapped_column(String(500))
    # Imported custom fields keyed by sanitized column name ("cf_<id>").
    custom_fields: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
