"""CRM pipeline and stage reference models."""

from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from funnelboard.models.base import AuditMixin, Base, ClientScopedMixin


class Pipeline(Base, AuditMixin, ClientScopedMixin):
    __tablename__ = "pipelines"
    __table_args__ = (UniqueConstraint("client_id", "external_id", name="uq_pipeline_client_external"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    external_id: Mapped[str] = mapped_column(String(120), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    stages: Mapped[list["PipelineStage"]] = relationship(back_populates="pipeline", order_by="PipelineStage.position")


class PipelineStage(Base, AuditMixin, ClientScopedMixin):
    __tablename__ = "pipeline_stages"
    __table_args__ = (UniqueConstraint("pipeline_id", "external_id", name="uq_stage_pipeline_external"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pipeline_id: Mapped[int] = mapped_column(ForeignKey("pipelines.id", ondelete="CASCADE"), nullable=False, index=True)
    external_id: Mapped[str] = mapped_column(String(120), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    pipeline: Mapped[Pipeline] = relationship(back_populates="stages")
