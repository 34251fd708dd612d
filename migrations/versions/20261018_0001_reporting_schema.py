"""client-scoped CRM and ads reporting schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:01
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _client_column() -> sa.Column:
    return sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("crm_api_key", sa.String(length=512), nullable=True),
        sa.Column("crm_location_id", sa.String(length=120), nullable=True),
        sa.Column("ads_access_token", sa.String(length=1024), nullable=True),
        sa.Column("ads_account_id", sa.String(length=120), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "pipelines",
        sa.Column("id", sa.Integer(), nullable=False),
        _client_column(),
        sa.Column("external_id", sa.String(length=120), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "external_id", name="uq_pipeline_client_external"),
    )
    op.create_index("ix_pipelines_client_id", "pipelines", ["client_id"])

    op.create_table(
        "pipeline_stages",
        sa.Column("id", sa.Integer(), nullable=False),
        _client_column(),
        sa.Column("pipeline_id", sa.Integer(), sa.ForeignKey("pipelines.id", ondelete="CASCADE"), nullable=False),
        sa.Column("external_id", sa.String(length=120), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pipeline_id", "external_id", name="uq_stage_pipeline_external"),
    )
    op.create_index("ix_pipeline_stages_client_id", "pipeline_stages", ["client_id"])
    op.create_index("ix_pipeline_stages_pipeline_id", "pipeline_stages", ["pipeline_id"])

    op.create_table(
        "crm_calendars",
        sa.Column("id", sa.Integer(), nullable=False),
        _client_column(),
        sa.Column("external_id", sa.String(length=120), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "external_id", name="uq_calendar_client_external"),
    )
    op.create_index("ix_crm_calendars_client_id", "crm_calendars", ["client_id"])

    op.create_table(
        "calendar_events",
        sa.Column("id", sa.Integer(), nullable=False),
        _client_column(),
        sa.Column("external_id", sa.String(length=120), nullable=False),
        sa.Column("calendar_external_id", sa.String(length=120), nullable=True),
        sa.Column("title", sa.String(length=500), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=True),
        sa.Column("contact_id", sa.String(length=120), nullable=True),
        sa.Column("assigned_user_id", sa.String(length=120), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=255), nullable=True),
        sa.Column("date_added", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_updated", sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "external_id", name="uq_event_client_external"),
    )
    op.create_index("ix_calendar_events_client_id", "calendar_events", ["client_id"])
    op.create_index("ix_calendar_events_contact_id", "calendar_events", ["contact_id"])
    op.create_index("idx_event_client_start", "calendar_events", ["client_id", "start_time"])

    op.create_table(
        "crm_users",
        sa.Column("id", sa.Integer(), nullable=False),
        _client_column(),
        sa.Column("external_id", sa.String(length=120), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "external_id", name="uq_crm_user_client_external"),
    )
    op.create_index("ix_crm_users_client_id", "crm_users", ["client_id"])

    op.create_table(
        "opportunities",
        sa.Column("id", sa.Integer(), nullable=False),
        _client_column(),
        sa.Column("external_id", sa.String(length=120), nullable=False),
        sa.Column("pipeline_external_id", sa.String(length=120), nullable=True),
        sa.Column("stage_external_id", sa.String(length=120), nullable=True),
        sa.Column("name", sa.String(length=500), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=True),
        sa.Column("monetary_value", sa.Float(), nullable=True),
        sa.Column("contact_id", sa.String(length=120), nullable=True),
        sa.Column("assigned_to", sa.String(length=120), nullable=True),
        sa.Column("source", sa.String(length=255), nullable=True),
        sa.Column("date_added", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_updated", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sale_date_value", sa.DateTime(timezone=True), nullable=True),
        sa.Column("utm_source", sa.String(length=500), nullable=True),
        sa.Column("utm_campaign", sa.String(length=500), nullable=True),
        sa.Column("utm_medium", sa.String(length=500), nullable=True),
        sa.Column("utm_term", sa.String(length=500), nullable=True),
        sa.Column("utm_content", sa.String(length=500), nullable=True),
        sa.Column("custom_fields", sa.JSON(), nullable=False),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "external_id", name="uq_opportunity_client_external"),
    )
    op.create_index("ix_opportunities_client_id", "opportunities", ["client_id"])
    op.create_index("ix_opportunities_contact_id", "opportunities", ["contact_id"])
    op.create_index("idx_opportunity_client_added", "opportunities", ["client_id", "date_added"])

    op.create_table(
        "location_predefinitions",
        sa.Column("id", sa.Integer(), nullable=False),
        _client_column(),
        sa.Column("key", sa.String(length=120), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_location_predefinitions_client_id", "location_predefinitions", ["client_id"])
    op.create_index("idx_predefinition_client_key", "location_predefinitions", ["client_id", "key"])
    op.create_index(
        "uq_predefinition_active_key",
        "location_predefinitions",
        ["client_id", "key"],
        unique=True,
        sqlite_where=sa.text("active = 1"),
        postgresql_where=sa.text("active IS TRUE"),
    )

    op.create_table(
        "ads_daily_insights",
        sa.Column("id", sa.Integer(), nullable=False),
        _client_column(),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("campaign_id", sa.String(length=120), nullable=True),
        sa.Column("campaign_name", sa.String(length=500), nullable=True),
        sa.Column("adset_id", sa.String(length=120), nullable=True),
        sa.Column("adset_name", sa.String(length=500), nullable=True),
        sa.Column("ad_id", sa.String(length=120), nullable=False),
        sa.Column("ad_name", sa.String(length=500), nullable=True),
        sa.Column("impressions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("clicks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("spend", sa.Float(), nullable=False, server_default="0"),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "date", "ad_id", name="uq_ads_insight_client_date_ad"),
    )
    op.create_index("ix_ads_daily_insights_client_id", "ads_daily_insights", ["client_id"])
    op.create_index("ix_ads_daily_insights_date", "ads_daily_insights", ["date"])


def downgrade() -> None:
    op.drop_index("ix_ads_daily_insights_date", table_name="ads_daily_insights")
    op.drop_index("ix_ads_daily_insights_client_id", table_name="ads_daily_insights")
    op.drop_table("ads_daily_insights")

    op.drop_index("uq_predefinition_active_key", table_name="location_predefinitions")
    op.drop_index("idx_predefinition_client_key", table_name="location_predefinitions")
    op.drop_index("ix_location_predefinitions_client_id", table_name="location_predefinitions")
    op.drop_table("location_predefinitions")

    op.drop_index("idx_opportunity_client_added", table_name="opportunities")
    op.drop_index("ix_opportunities_contact_id", table_name="opportunities")
    op.drop_index("ix_opportunities_client_id", table_name="opportunities")
    op.drop_table("opportunities")

    op.drop_index("ix_crm_users_client_id", table_name="crm_users")
    op.drop_table("crm_users")

    op.drop_index("idx_event_client_start", table_name="calendar_events")
    op.drop_index("ix_calendar_events_contact_id", table_name="calendar_events")
    op.drop_index("ix_calendar_events_client_id", table_name="calendar_events")
    op.drop_table("calendar_events")

    op.drop_index("ix_crm_calendars_client_id", table_name="crm_calendars")
    op.drop_table("crm_calendars")

    op.drop_index("ix_pipeline_stages_pipeline_id", table_name="pipeline_stages")
    op.drop_index("ix_pipeline_stages_client_id", table_name="pipeline_stages")
    op.drop_table("pipeline_stages")

    op.drop_index("ix_pipelines_client_id", table_name="pipelines")
    op.drop_table("pipelines")

    op.drop_table("clients")
