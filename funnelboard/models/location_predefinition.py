"""Per-client field mapping and settings history rows."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from funnelboard.models.base import Base, ClientScopedMixin, utcnow


class LocationPredefinition(Base, ClientScopedMixin):
    __tablename__ = "location_predefinitions"
    __table_args__ = (
        Index("idx_predefinition_client_key", "client_id", "key"),
        Index(
            "uq_predefinition_active_key",
            "client_id",
            "key",
            unique=True,
            sqlite_where=text("active = 1"),
            postgresql_where=text("active IS TRUE"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(120), nullable=False)
    value: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
