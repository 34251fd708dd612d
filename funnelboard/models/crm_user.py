"""CRM user (opportunity owner) model module."""

from __future__ import annotations

from sqlalchemy import Boolean, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from funnelboard.models.base import AuditMixin, Base, ClientScopedMixin


class CrmUser(Base, AuditMixin, ClientScopedMixin):
    __tablename__ = "crm_users"
    __table_args__ = (UniqueConstraint("client_id", "external_id", name="uq_crm_user_client_external"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    external_id: Mapped[str] = mapped_column(String(120), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255))
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
