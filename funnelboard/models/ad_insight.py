"""Daily ads-platform insight model module."""

from __future__ import annotations

import datetime as dt

from sqlalchemy import Date, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from funnelboard.models.base import AuditMixin, Base, ClientScopedMixin


class AdDailyInsight(Base, AuditMixin, ClientScopedMixin):
    __tablename__ = "ads_daily_insights"
    __table_args__ = (UniqueConstraint("client_id", "date", "ad_id", name="uq_ads_insight_client_date_ad"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    campaign_id: Mapped[str | None] = mapped_column(String(120))
    campaign_name: Mapped[str | None] = mapped_column(String(500))
    adset_id: Mapped[str | None] = mapped_column(String(120))
    adset_name: Mapped[str | None] = mapped_column(String(500))
    ad_id: Mapped[str] = mapped_column(String(120), nullable=False)
    ad_name: Mapped[str | None] = mapped_column(String(500))
    impressions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    clicks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    spend: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
