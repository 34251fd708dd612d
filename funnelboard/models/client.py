"""Client (tenant) model module."""

from __future__ import annotations

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from funnelboard.models.base import AuditMixin, Base


class Client(Base, AuditMixin):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    crm_api_key: Mapped[str | None] = mapped_column(String(512))
    crm_location_id: Mapped[str | None] = mapped_column(String(120))
    ads_access_token: Mapped[str | None] = mapped_column(String(1024))
    ads_account_id: Mapped[str | None] = mapped_column(String(120))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def has_crm_credentials(self) -> bool:
        return bool((self.crm_api_key or "").strip() and (self.crm_location_id or "").strip())

    @property
    def has_ads_credentials(self) -> bool:
        return bool((self.ads_access_token or "").strip() and (self.ads_account_id or "").strip())
